"""
VariationService: batch orchestrator.

Chains the stages of one variation batch:
  Step 0: Preparation (layout, target size, pixelated preview)
  Step 1: Placeholders (synchronous, before any network call)
  Step 2: Upload (durable storage for the shared source image)
  Step 3: Analysis (optional, Gemini vision)
  Step 4: Concepts (catalog or Gemini storyline)
  Step 5: Registry population + render hand-off

Rendering itself happens elsewhere; results come back through report_result().
"""

import os
import time
import asyncio
import logging
from typing import Optional

from variations import metrics
from variations import queue as render_tasks
from .analysis import analyze_style
from .clock import BatchClock
from .completion import CompletionHandler
from .concepts import CatalogConceptGenerator, generate_concepts
from .errors import (
    AnalysisError,
    ConceptGenerationError,
    PreparationError,
    RenderError,
    UploadError,
    VariationError,
    full_error_message,
)
from .layout import position_indices, snap_position
from .models import (
    DEFAULT_STYLE,
    AssetStore,
    BatchMode,
    BatchOutcome,
    BatchRequest,
    ConceptGenerator,
    GenerationTask,
    RenderOutcome,
    StyleAnalyzer,
    TaskStatus,
    VariationKind,
)
from .placeholders import (
    BatchLayout,
    PlaceholderBoard,
    create_batch_placeholders,
    parse_slot_id,
    slot_id,
    stage_id,
)
from .preview import create_pixelated_preview, optimal_dimensions
from .registry import GenerationRegistry
from .render_queue import RenderQueue
from .storage import R2AssetStore, ensure_stored, load_source_bytes

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ANALYSIS_ENABLED = os.getenv("VARIATION_ANALYSIS_ENABLED", "true").lower() in ("1", "true", "yes")
IMAGE_MODEL = os.getenv("VARIATION_IMAGE_MODEL", "seedream")
VIDEO_MODEL = os.getenv("VARIATION_VIDEO_MODEL", "sora-2")
VIDEO_DURATION = int(os.getenv("VARIATION_VIDEO_DURATION", "8"))

_STAGE_ERRORS = {
    "preparation": PreparationError,
    "upload": UploadError,
    "analysis": AnalysisError,
    "concepts": ConceptGenerationError,
}


def default_generators() -> dict[VariationKind, ConceptGenerator]:
    from variations.gemini import StorylineConceptGenerator

    return {
        VariationKind.CAMERA_ANGLE: CatalogConceptGenerator(VariationKind.CAMERA_ANGLE),
        VariationKind.DIRECTOR: CatalogConceptGenerator(VariationKind.DIRECTOR),
        VariationKind.B_ROLL: CatalogConceptGenerator(VariationKind.B_ROLL),
        VariationKind.STORYLINE: StorylineConceptGenerator(),
    }


class VariationService:
    """
    Orchestrates variation batches.

    Usage:
        service = VariationService(store, analyzer)

        outcome = await service.start_batch(BatchRequest(source=..., count=4))
        # renderer consumes service.render_queue, then:
        await service.report_result(slot_id, RenderOutcome(final_src=url))
    """

    def __init__(
        self,
        store: Optional[AssetStore] = None,
        analyzer: Optional[StyleAnalyzer] = None,
        generators: Optional[dict[VariationKind, ConceptGenerator]] = None,
        clock: Optional[BatchClock] = None,
        analysis_enabled: bool = ANALYSIS_ENABLED,
        board: Optional[PlaceholderBoard] = None,
        registry: Optional[GenerationRegistry] = None,
        render_queue: Optional[RenderQueue] = None,
        redis_client=None,
        image_model: str = IMAGE_MODEL,
        video_model: str = VIDEO_MODEL,
        video_duration: int = VIDEO_DURATION,
    ):
        if analyzer is None and analysis_enabled:
            from variations.gemini import GeminiStyleAnalyzer

            analyzer = GeminiStyleAnalyzer()

        self.store = store or R2AssetStore()
        self.analyzer = analyzer
        self.generators = generators if generators is not None else default_generators()
        self.clock = clock or BatchClock()
        self.analysis_enabled = analysis_enabled
        self.board = board or PlaceholderBoard()
        self.registry = registry or GenerationRegistry()
        self.render_queue = render_queue or RenderQueue()
        self.redis_client = redis_client
        self.image_model = image_model
        self.video_model = video_model
        self.video_duration = video_duration
        self.completion = CompletionHandler(self.board, self.registry)
        self._background: set[asyncio.Task] = set()

    # ── Entry points ─────────────────────────────────────────────────────

    async def start_batch(self, request: BatchRequest) -> BatchOutcome:
        """Run a batch up to render hand-off. Never raises."""
        timestamp = self.clock.next_timestamp()
        return await self._run(timestamp, request)

    def start_batch_background(self, request: BatchRequest) -> tuple[int, list[str]]:
        """Schedule a batch on the running loop and return its ids immediately."""
        timestamp = self.clock.next_timestamp()
        slot_ids = [slot_id(timestamp, i, request.mode) for i in range(request.count)]
        task = asyncio.create_task(self._run(timestamp, request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return timestamp, slot_ids

    async def report_result(self, slot: str, outcome: RenderOutcome) -> bool:
        """
        Renderer report-back for one slot.

        Only slots awaiting a render are accepted. Reports for stage tasks,
        or for slots no longer in the registry (rolled back, already
        reported, or unknown), are ignored and return False.
        """
        entry = self.registry.get(slot)
        if parse_slot_id(slot) is None or entry is None or entry.status != TaskStatus.GENERATING:
            logger.warning(f"Ignoring render result for {slot}: no render pending")
            return False

        if outcome.succeeded:
            self.completion.complete_slot(slot, outcome.final_src)
            metrics.slot_reported(succeeded=True)
        else:
            await self.completion.fail_slot(slot, RenderError(outcome.error or "Render returned no result"))
            metrics.slot_reported(succeeded=False)
        metrics.set_level("registry.size", len(self.registry))
        return True

    def remove_placeholder(self, placeholder_id: str) -> bool:
        """The user deleted a placeholder from the canvas."""
        self.registry.delete(placeholder_id)
        return self.board.remove(placeholder_id)

    # ── Pipeline ─────────────────────────────────────────────────────────

    async def _run(self, timestamp: int, request: BatchRequest) -> BatchOutcome:
        source = request.source
        mode = request.mode
        slot_ids = [slot_id(timestamp, i, mode) for i in range(request.count)]
        stage = "preparation"
        metrics.batch_started()
        logger.info(
            f"[{timestamp}] Starting {request.count}x {request.kind.value} {mode.value} batch "
            f"for source {source.id}"
        )

        try:
            # ── Step 0: Preparation ──────────────────────────────────────
            started = time.monotonic()
            layout, source_bytes, content_type = await self._prepare(timestamp, request)
            self._record_stage(stage, started)

            # ── Step 1: Placeholders ─────────────────────────────────────
            self.board.add(create_batch_placeholders(layout))

            # ── Step 2: Upload ───────────────────────────────────────────
            stage = "upload"
            started = time.monotonic()
            upload_id = stage_id(timestamp, "upload")
            self.registry.insert_many([
                GenerationTask(slot_id=upload_id, image_url=source.src_ref, status=TaskStatus.UPLOADING),
            ])
            stored_ref = await ensure_stored(self.store, source.src_ref, source_bytes, content_type)
            try:
                signed_url = self.store.resolve(stored_ref)
            except Exception as e:
                raise UploadError(f"Upload failed: could not sign {stored_ref}: {e}") from e
            self._record_stage(stage, started)
            logger.info(f"[{timestamp}] Source stored: {stored_ref}")

            # ── Step 3: Analysis ─────────────────────────────────────────
            stage = "analysis"
            previous = [upload_id]
            style = DEFAULT_STYLE
            if self.analysis_enabled:
                started = time.monotonic()
                analyze_id = stage_id(timestamp, "analyze")
                self.registry.transition(timestamp, remove=previous, add=[
                    GenerationTask(slot_id=analyze_id, image_url=signed_url, status=TaskStatus.ANALYZING),
                ])
                previous = [analyze_id]
                self.board.set_source_overlay(source.id, timestamp, layout.pixelated_preview)
                style = await analyze_style(self.analyzer, signed_url)
                self._record_stage(stage, started)
                logger.info(f"[{timestamp}] Analysis complete")

            # ── Step 4: Concepts ─────────────────────────────────────────
            stage = "concepts"
            started = time.monotonic()
            concept_id = stage_id(
                timestamp, "storyline" if request.kind == VariationKind.STORYLINE else "process"
            )
            self.registry.transition(timestamp, remove=previous, add=[
                GenerationTask(
                    slot_id=concept_id,
                    image_url=signed_url,
                    status=TaskStatus.CREATING_CONCEPTS,
                ),
            ])
            generator = self.generators.get(request.kind)
            if generator is None:
                raise ConceptGenerationError(f"No concept generator for {request.kind.value}")
            concepts = await generate_concepts(generator, request.count, style, request.user_context)
            self._record_stage(stage, started)

            # ── Step 5: Registry + render hand-off ───────────────────────
            by_slot = dict(zip(slot_ids, concepts))
            self.board.update(lambda prev: [
                p.model_copy(update={"metadata": by_slot[p.id].metadata}) if p.id in by_slot else p
                for p in prev
            ])
            self.board.clear_source_overlay(source.id, timestamp)

            tasks = [
                GenerationTask(
                    slot_id=sid,
                    image_url=signed_url,
                    prompt=concept.prompt,
                    target_size=layout.target_size,
                    model=request.model or (self.video_model if mode == BatchMode.VIDEO else self.image_model),
                    status=TaskStatus.GENERATING,
                    media_type=mode,
                    duration=layout.duration,
                )
                for sid, concept in by_slot.items()
            ]
            self.registry.transition(timestamp, remove=[concept_id], add=tasks)
            self.render_queue.enqueue_many(tasks)
            metrics.batch_handed_off(len(tasks))
            metrics.set_level("registry.size", len(self.registry))
            logger.info(f"[{timestamp}] {len(tasks)} render tasks handed off")

        except Exception as e:
            error = e if isinstance(e, VariationError) else _STAGE_ERRORS[stage](full_error_message(e))
            if error is not e:
                error.__cause__ = e
            logger.error(f"[{timestamp}] Batch failed at {stage}: {error}", exc_info=True)
            metrics.batch_failed(timestamp, error.stage, error)
            await self.completion.rollback_batch(timestamp, error, source.id)
            metrics.set_level("registry.size", len(self.registry))
            return BatchOutcome(
                timestamp=timestamp,
                slot_ids=slot_ids,
                error=full_error_message(error),
                error_stage=error.stage,
                failure=error,
            )

        if self.redis_client is not None:
            await self._publish(timestamp, tasks)

        return BatchOutcome(timestamp=timestamp, slot_ids=slot_ids)

    async def _prepare(self, timestamp: int, request: BatchRequest):
        source = request.source
        try:
            indices = position_indices(request.count)
        except ValueError as e:
            raise PreparationError(str(e)) from e
        if source.width <= 0 or source.height <= 0:
            raise PreparationError(
                f"Source image must have positive dimensions, got {source.width}x{source.height}"
            )

        snapped = snap_position(source.x, source.y)
        source_bytes, content_type, preview = None, "image/png", None
        try:
            source_bytes, content_type = await load_source_bytes(source.src_ref)
            preview = await asyncio.to_thread(
                create_pixelated_preview, source_bytes, source.width, source.height
            )
        except Exception as e:
            logger.warning(f"[{timestamp}] Pixelated preview unavailable for {source.id}: {e}")

        layout = BatchLayout(
            timestamp=timestamp,
            source=source,
            snapped_source=(snapped.x, snapped.y),
            position_indices=indices,
            target_size=optimal_dimensions(source.width, source.height),
            pixelated_preview=preview,
            mode=request.mode,
            duration=(request.duration or self.video_duration) if request.mode == BatchMode.VIDEO else None,
        )
        return layout, source_bytes, content_type

    async def _publish(self, timestamp: int, tasks: list[GenerationTask]) -> None:
        # In-process queue and registry already hold the tasks
        try:
            await asyncio.to_thread(render_tasks.publish_render_tasks, self.redis_client, tasks)
        except Exception as e:
            logger.error(f"[{timestamp}] Publishing render tasks to Redis failed: {e}", exc_info=True)
            metrics.publish_failed(timestamp, e)

    @staticmethod
    def _record_stage(stage: str, started: float) -> None:
        metrics.stage_finished(stage, (time.monotonic() - started) * 1000)
