from __future__ import annotations

import asyncio

from conftest import (
    START_TS,
    FakeAnalyzer,
    FakeConceptGenerator,
    FakeStore,
    make_service,
    make_source,
)
from variations import metrics
from variations.pipeline.models import (
    DEFAULT_STYLE,
    BatchMode,
    BatchRequest,
    CameraAngle,
    GenerationTask,
    RenderOutcome,
    Size,
    TaskStatus,
    VariationKind,
)


def _request(**overrides) -> BatchRequest:
    fields = dict(source=make_source(), count=4)
    fields.update(overrides)
    return BatchRequest(**fields)


def test_successful_batch_populates_registry_with_one_task_per_slot() -> None:
    service = make_service()
    outcome = asyncio.run(service.start_batch(_request(user_context="neon")))

    assert outcome.ok
    assert outcome.timestamp == START_TS
    assert outcome.slot_ids == [f"variation-{START_TS}-{i}" for i in range(4)]

    snap = service.registry.snapshot()
    assert sorted(snap) == sorted(outcome.slot_ids)
    for key, task in snap.items():
        assert task.status == TaskStatus.GENERATING
        assert task.prompt
        assert task.image_url == "https://store.test/objects/1.png?signature=abc"
        assert task.target_size == Size(width=3840, height=2160)
        assert task.model == "seedream"
    assert service.render_queue.pending() == 4

    placeholders = service.board.batch(START_TS)
    assert len(placeholders) == 4
    assert all(p.is_loading and p.pixelated_preview for p in placeholders)
    assert placeholders[2].metadata == CameraAngle(camera_angle="angle 2")
    assert service.board.source_overlay("img-1") is None
    stats = metrics.get_snapshot()
    assert stats["batches"]["started"] == stats["batches"]["handed_off"] == 1
    assert stats["slots"]["queued"] == 4
    assert stats["stages"]["upload"]["count"] == 1


def test_stage_entries_progress_in_order() -> None:
    seen = {}
    service = None

    def snapshot(label):
        def capture():
            seen[label] = {k: v.status for k, v in service.registry.snapshot().items()}
            seen[f"{label}.overlay"] = service.board.source_overlay("img-1")
        return capture

    service = make_service(
        store=FakeStore(on_store=snapshot("upload")),
        analyzer=FakeAnalyzer(on_analyze=snapshot("analyze")),
        generator=FakeConceptGenerator(on_generate=snapshot("concepts")),
    )
    asyncio.run(service.start_batch(_request()))

    assert seen["upload"] == {f"variation-{START_TS}-upload": TaskStatus.UPLOADING}
    assert seen["analyze"] == {f"variation-{START_TS}-analyze": TaskStatus.ANALYZING}
    assert seen["analyze.overlay"] is not None
    assert seen["concepts"] == {f"variation-{START_TS}-process": TaskStatus.CREATING_CONCEPTS}


def test_storyline_concept_stage_key() -> None:
    seen = {}
    service = None

    def capture():
        seen.update(service.registry.snapshot())

    service = make_service(generator=FakeConceptGenerator(on_generate=capture))
    asyncio.run(service.start_batch(_request(kind=VariationKind.STORYLINE)))
    assert list(seen) == [f"variation-{START_TS}-storyline"]


def test_placeholders_exist_before_upload() -> None:
    seen = []
    service = None

    def capture():
        seen.extend(p.id for p in service.board.snapshot())

    service = make_service(store=FakeStore(on_store=capture))
    asyncio.run(service.start_batch(_request(count=8)))
    assert seen == [f"variation-{START_TS}-{i}" for i in range(8)]


def test_upload_failure_rolls_back_every_slot() -> None:
    service = make_service(store=FakeStore(fail=RuntimeError("storage quota exceeded")))
    outcome = asyncio.run(service.start_batch(_request()))

    assert not outcome.ok
    assert outcome.error_stage == "upload"
    assert "storage quota exceeded" in outcome.error
    assert len(service.registry) == 0
    assert service.render_queue.pending() == 0

    placeholders = service.board.batch(START_TS)
    assert len(placeholders) == 4
    for p in placeholders:
        assert not p.is_loading
        assert p.error_info.startswith("Upload Failed: ")
        assert p.src.startswith("data:image/png;base64,")
        assert p.pixelated_preview == p.src
    stats = metrics.get_snapshot()
    assert stats["batches"]["failed"] == {"upload": 1}
    assert stats["batches"]["handed_off"] == 0
    assert stats["recent_failures"][-1]["stage"] == "upload"


def test_analysis_failure_rolls_back_and_clears_source_overlay() -> None:
    service = make_service(analyzer=FakeAnalyzer(fail=RuntimeError("vision model unavailable")))
    outcome = asyncio.run(service.start_batch(_request()))

    assert outcome.error_stage == "analysis"
    assert len(service.registry) == 0
    assert service.board.source_overlay("img-1") is None
    assert all(p.error_info.startswith("Analysis Failed: ") for p in service.board.batch(START_TS))


def test_analysis_disabled_uses_default_style() -> None:
    analyzer = FakeAnalyzer()
    generator = FakeConceptGenerator()
    service = make_service(analyzer=analyzer, generator=generator, analysis_enabled=False)
    outcome = asyncio.run(service.start_batch(_request()))

    assert outcome.ok
    assert analyzer.calls == []
    assert generator.calls[0][1] == DEFAULT_STYLE


def test_concept_count_mismatch_is_batch_fatal() -> None:
    service = make_service(generator=FakeConceptGenerator(short_by=1))
    outcome = asyncio.run(service.start_batch(_request()))

    assert outcome.error_stage == "concepts"
    assert len(service.registry) == 0
    assert all(not p.is_loading for p in service.board.batch(START_TS))


def test_unsupported_count_fails_preparation_without_placeholders() -> None:
    service = make_service()
    request = _request().model_copy(update={"count": 6})
    outcome = asyncio.run(service.start_batch(request))

    assert outcome.error_stage == "preparation"
    assert len(service.board) == 0


def test_unreadable_source_still_creates_placeholders() -> None:
    service = make_service()
    source = make_source(src_ref="store://objects/already.png")
    # Stored refs skip upload; an unfetchable preview source is non-fatal
    outcome = asyncio.run(service.start_batch(_request(source=source)))

    assert outcome.ok
    assert all(p.pixelated_preview is None for p in service.board.batch(START_TS))


def test_overlapping_batches_are_independent() -> None:
    service = make_service()

    async def run_both():
        return await asyncio.gather(
            service.start_batch(_request()),
            service.start_batch(_request(source=make_source(id="img-2", x=1000))),
        )

    first, second = asyncio.run(run_both())

    assert first.timestamp != second.timestamp
    assert len(service.board) == 8
    assert len(service.registry) == 8

    plan = {
        first.timestamp: [True, False, True, True],
        second.timestamp: [False, True, True, False],
    }

    def outcome_for(sid, ok):
        if ok:
            return RenderOutcome(final_src=f"https://cdn.test/{sid}.png")
        return RenderOutcome(error="Content flagged by moderation")

    async def report_interleaved(indices):
        for i in indices:
            for batch in (first, second):
                sid = batch.slot_ids[i]
                assert await service.report_result(sid, outcome_for(sid, plan[batch.timestamp][i]))

    asyncio.run(report_interleaved([0, 1]))
    for batch in (first, second):
        assert [p.is_loading for p in service.board.batch(batch.timestamp)] == [False, False, True, True]
        assert sorted(service.registry.batch_entries(batch.timestamp)) == batch.slot_ids[2:]

    asyncio.run(report_interleaved([2, 3]))
    assert len(service.registry) == 0
    for batch in (first, second):
        placeholders = service.board.batch(batch.timestamp)
        assert len(placeholders) == 4
        for p, ok in zip(placeholders, plan[batch.timestamp]):
            assert not p.is_loading
            if ok:
                assert p.final_src == f"https://cdn.test/{p.id}.png"
                assert p.error_info is None
            else:
                assert p.final_src == ""
                assert p.error_info.startswith("Content Blocked: ")
        assert service.registry.status_of(batch.timestamp) is None


def test_running_eight_after_four_adds_a_new_batch() -> None:
    service = make_service()
    first = asyncio.run(service.start_batch(_request(count=4)))

    async def complete_first():
        for sid in first.slot_ids:
            await service.report_result(sid, RenderOutcome(final_src=f"https://cdn.test/{sid}.png"))

    asyncio.run(complete_first())
    completed = service.board.batch(first.timestamp)

    second = asyncio.run(service.start_batch(_request(count=8)))

    assert second.timestamp > first.timestamp
    assert service.board.batch(first.timestamp) == completed
    for p in completed:
        assert p.final_src == f"https://cdn.test/{p.id}.png"
        assert not p.is_loading

    fresh = service.board.batch(second.timestamp)
    assert len(fresh) == 8
    assert len({(p.x, p.y) for p in fresh}) == 8
    assert all(p.is_loading for p in fresh)
    assert sorted(service.registry.snapshot()) == sorted(second.slot_ids)


def test_shared_source_overlay_outlives_the_faster_batch() -> None:
    class GatedAnalyzer:
        def __init__(self):
            self.entered = asyncio.Event()
            self.release = asyncio.Event()
            self.calls = 0

        async def analyze(self, signed_url):
            self.calls += 1
            if self.calls == 1:
                self.entered.set()
                await self.release.wait()
            return DEFAULT_STYLE

    async def run():
        analyzer = GatedAnalyzer()
        service = make_service(analyzer=analyzer)
        slow = asyncio.create_task(service.start_batch(_request()))
        await asyncio.wait_for(analyzer.entered.wait(), timeout=5)

        fast = await service.start_batch(_request(source=make_source(y=900)))
        assert fast.ok
        assert service.board.source_overlay("img-1") is not None

        analyzer.release.set()
        assert (await slow).ok
        assert service.board.source_overlay("img-1") is None

    asyncio.run(run())


def test_video_batch_uses_video_ids_and_defaults() -> None:
    service = make_service()
    outcome = asyncio.run(service.start_batch(_request(mode=BatchMode.VIDEO)))

    assert outcome.slot_ids[0] == f"sora-video-{START_TS}-0"
    for p in service.board.batch(START_TS):
        assert p.src == ""
        assert p.duration == 8
        assert p.media_type == BatchMode.VIDEO
    for task in service.registry.snapshot().values():
        assert task.model == "sora-2"
        assert task.media_type == BatchMode.VIDEO
        assert task.duration == 8


def test_report_for_unknown_slot_is_ignored() -> None:
    service = make_service()
    assert asyncio.run(service.report_result("variation-1-0", RenderOutcome(final_src="x"))) is False


def test_background_start_returns_ids_immediately() -> None:
    service = make_service()

    async def run():
        timestamp, slot_ids = service.start_batch_background(_request())
        assert len(service.registry) == 0
        await asyncio.gather(*service._background)
        return timestamp, slot_ids

    timestamp, slot_ids = asyncio.run(run())
    assert timestamp == START_TS
    assert sorted(service.registry.snapshot()) == sorted(slot_ids)


def test_report_for_stage_entry_is_ignored() -> None:
    service = make_service()
    upload = f"variation-{START_TS}-upload"
    service.registry.insert_many([GenerationTask(slot_id=upload, status=TaskStatus.UPLOADING)])

    accepted = asyncio.run(service.report_result(upload, RenderOutcome(final_src="https://cdn.test/x.png")))

    assert accepted is False
    assert service.registry.get(upload).status == TaskStatus.UPLOADING
