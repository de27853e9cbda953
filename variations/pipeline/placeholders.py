"""
Placeholder creation and the placeholder board.

Placeholders are created synchronously, before any network call, so every
slot of a batch is visible immediately. The board only ever swaps whole
snapshots: updates read the current tuple and produce a new one.
"""

import re
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from .layout import calculate_balanced_position, snap_position
from .models import (
    BatchMode,
    NoMetadata,
    Placeholder,
    Size,
    SourceImage,
)

logger = logging.getLogger(__name__)

IMAGE_SLOT_PREFIX = "variation"
VIDEO_SLOT_PREFIX = "sora-video"

_SLOT_ID_RE = re.compile(r"^(variation|sora-video)-(\d+)-(\d+)$")


# ── Identifiers ──────────────────────────────────────────────────────────────

def slot_id(timestamp: int, index: int, mode: BatchMode = BatchMode.IMAGE) -> str:
    prefix = VIDEO_SLOT_PREFIX if mode == BatchMode.VIDEO else IMAGE_SLOT_PREFIX
    return f"{prefix}-{timestamp}-{index}"


def stage_id(timestamp: int, stage_name: str) -> str:
    """Shared, non-slot task id, e.g. variation-<ts>-upload."""
    return f"variation-{timestamp}-{stage_name}"


def parse_slot_id(placeholder_id: str) -> Optional[tuple[int, int]]:
    """(timestamp, index) for a slot id, None for anything else."""
    match = _SLOT_ID_RE.match(placeholder_id)
    if not match:
        return None
    return int(match.group(2)), int(match.group(3))


def batch_timestamp(key: str) -> Optional[int]:
    """Batch timestamp embedded in a slot id or a stage task id."""
    for prefix in (IMAGE_SLOT_PREFIX, VIDEO_SLOT_PREFIX):
        head = f"{prefix}-"
        if key.startswith(head):
            stamp = key[len(head):].split("-", 1)[0]
            if stamp.isdigit():
                return int(stamp)
    return None


def belongs_to_batch(key: str, timestamp: int) -> bool:
    return batch_timestamp(key) == timestamp


# ── Factory ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BatchLayout:
    """Data shared by every placeholder of one batch."""

    timestamp: int
    source: SourceImage
    snapped_source: tuple[float, float]
    position_indices: tuple[int, ...]
    target_size: Size
    pixelated_preview: Optional[str] = None
    mode: BatchMode = BatchMode.IMAGE
    duration: Optional[int] = None


def create_placeholder(layout: BatchLayout, variation_index: int, metadata=None) -> Placeholder:
    source = layout.source
    sx, sy = layout.snapped_source
    position = calculate_balanced_position(
        sx,
        sy,
        layout.position_indices[variation_index],
        source.width,
        source.height,
    )

    if layout.mode == BatchMode.VIDEO:
        position = snap_position(position.x, position.y)
        return Placeholder(
            id=slot_id(layout.timestamp, variation_index, BatchMode.VIDEO),
            x=position.x,
            y=position.y,
            width=source.width,
            height=source.height,
            is_loading=True,
            src="",
            pixelated_preview=layout.pixelated_preview,
            media_type=BatchMode.VIDEO,
            duration=layout.duration,
            source_image_id=source.id,
            metadata=metadata or NoMetadata(),
        )

    return Placeholder(
        id=slot_id(layout.timestamp, variation_index),
        x=position.x,
        y=position.y,
        width=source.width,
        height=source.height,
        is_loading=True,
        src=source.src_ref,
        pixelated_preview=layout.pixelated_preview,
        natural_width=layout.target_size.width,
        natural_height=layout.target_size.height,
        source_image_id=source.id,
        metadata=metadata or NoMetadata(),
    )


def make_placeholder_factory(layout: BatchLayout) -> Callable[..., Placeholder]:
    """Bind the batch layout so callers only pass (variation_index, metadata)."""

    def factory(variation_index: int, metadata=None) -> Placeholder:
        return create_placeholder(layout, variation_index, metadata)

    return factory


def create_batch_placeholders(layout: BatchLayout, metadata: Iterable = ()) -> list[Placeholder]:
    factory = make_placeholder_factory(layout)
    meta = list(metadata)
    return [
        factory(index, meta[index] if index < len(meta) else None)
        for index in range(len(layout.position_indices))
    ]


# ── Board ────────────────────────────────────────────────────────────────────

class PlaceholderBoard:
    """Snapshot store for placeholders and source-image analysis overlays."""

    def __init__(self, placeholders: Iterable[Placeholder] = ()):
        self._placeholders: tuple[Placeholder, ...] = tuple(placeholders)
        self._source_overlays: Mapping[tuple[str, int], str] = MappingProxyType({})

    def snapshot(self) -> tuple[Placeholder, ...]:
        return self._placeholders

    def __len__(self) -> int:
        return len(self._placeholders)

    def get(self, placeholder_id: str) -> Optional[Placeholder]:
        for item in self._placeholders:
            if item.id == placeholder_id:
                return item
        return None

    def batch(self, timestamp: int) -> list[Placeholder]:
        return [p for p in self._placeholders if belongs_to_batch(p.id, timestamp)]

    def update(self, fn: Callable[[tuple[Placeholder, ...]], Iterable[Placeholder]]) -> tuple[Placeholder, ...]:
        self._placeholders = tuple(fn(self._placeholders))
        return self._placeholders

    def add(self, items: Iterable[Placeholder]) -> None:
        new_items = tuple(items)
        existing = {p.id for p in self._placeholders}
        clashes = [p.id for p in new_items if p.id in existing]
        if clashes:
            raise ValueError(f"Placeholder ids already on the board: {clashes}")
        self.update(lambda prev: prev + new_items)

    def replace(self, placeholder_id: str, **changes) -> Optional[Placeholder]:
        """Copy-on-write update of a single placeholder."""
        updated: list[Placeholder] = []

        def apply(prev):
            out = []
            for item in prev:
                if item.id == placeholder_id:
                    item = item.model_copy(update=changes)
                    updated.append(item)
                out.append(item)
            return out

        self.update(apply)
        return updated[0] if updated else None

    def remove(self, placeholder_id: str) -> bool:
        before = len(self._placeholders)
        self.update(lambda prev: [p for p in prev if p.id != placeholder_id])
        return len(self._placeholders) < before

    # ── Source overlays ──────────────────────────────────────────────────
    # Keyed by (source image id, batch timestamp): batches sharing a source
    # each hold their own overlay until they clear it.

    def set_source_overlay(self, source_image_id: str, timestamp: int, preview: Optional[str]) -> None:
        if not preview:
            return
        overlays = dict(self._source_overlays)
        overlays[(source_image_id, timestamp)] = preview
        self._source_overlays = MappingProxyType(overlays)

    def clear_source_overlay(self, source_image_id: str, timestamp: int) -> None:
        if (source_image_id, timestamp) not in self._source_overlays:
            return
        overlays = dict(self._source_overlays)
        overlays.pop((source_image_id, timestamp), None)
        self._source_overlays = MappingProxyType(overlays)

    def source_overlay(self, source_image_id: str) -> Optional[str]:
        """Overlay of the newest batch still analyzing this source, if any."""
        stamps = [ts for sid, ts in self._source_overlays if sid == source_image_id]
        if not stamps:
            return None
        return self._source_overlays[(source_image_id, max(stamps))]
