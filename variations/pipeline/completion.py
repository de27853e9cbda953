"""
Completion and error handling for placeholders.

Success and slot-scoped failure touch exactly one placeholder and one
registry entry. A batch-fatal failure rolls back every slot of the batch
and every registry entry it owns.
"""

import asyncio
import logging
from typing import Optional

from .errors import full_error_message, short_error_message
from .models import Placeholder
from .placeholders import PlaceholderBoard
from .preview import create_error_overlay
from .registry import GenerationRegistry

logger = logging.getLogger(__name__)


def error_info(error: object) -> str:
    return f"{short_error_message(error)}: {full_error_message(error)}"


async def _overlay_for(placeholder: Placeholder) -> str:
    source = placeholder.pixelated_preview or (
        placeholder.src if placeholder.src.startswith("data:") else None
    )
    return await asyncio.to_thread(
        create_error_overlay, source, placeholder.width, placeholder.height
    )


class CompletionHandler:
    def __init__(self, board: PlaceholderBoard, registry: GenerationRegistry):
        self.board = board
        self.registry = registry

    def complete_slot(self, slot_id: str, final_src: str) -> Optional[Placeholder]:
        updated = self.board.replace(
            slot_id,
            final_src=final_src,
            src=final_src,
            is_loading=False,
            error_info=None,
        )
        self.registry.delete(slot_id)
        if updated is None:
            logger.warning(f"Completed slot {slot_id} has no placeholder (removed by user?)")
        else:
            logger.info(f"Slot {slot_id} completed")
        return updated

    async def fail_slot(self, slot_id: str, error: object) -> Optional[Placeholder]:
        self.registry.delete(slot_id)
        placeholder = self.board.get(slot_id)
        if placeholder is None:
            logger.warning(f"Failed slot {slot_id} has no placeholder (removed by user?)")
            return None

        overlay = await _overlay_for(placeholder)
        updated = self.board.replace(
            slot_id,
            error_info=error_info(error),
            is_loading=False,
            src=overlay,
            pixelated_preview=overlay,
        )
        logger.warning(f"Slot {slot_id} failed: {full_error_message(error)}")
        return updated

    async def rollback_batch(
        self,
        timestamp: int,
        error: object,
        source_image_id: Optional[str] = None,
    ) -> list[Placeholder]:
        """Mark every slot of the batch as errored and drop its registry entries."""
        self.registry.delete_batch(timestamp)
        if source_image_id:
            self.board.clear_source_overlay(source_image_id, timestamp)

        # Error state lands in one swap; overlays are patched in once rendered
        info = error_info(error)
        slots = self.board.batch(timestamp)
        ids = {p.id for p in slots}
        self.board.update(lambda prev: [
            p.model_copy(update={"error_info": info, "is_loading": False}) if p.id in ids else p
            for p in prev
        ])

        overlays = await asyncio.gather(*(_overlay_for(p) for p in slots))
        by_id = dict(zip((p.id for p in slots), overlays))
        self.board.update(lambda prev: [
            p.model_copy(update={"src": by_id[p.id], "pixelated_preview": by_id[p.id]})
            if p.id in by_id else p
            for p in prev
        ])
        logger.warning(f"Batch {timestamp} rolled back ({len(slots)} slots): {full_error_message(error)}")
        return self.board.batch(timestamp)
