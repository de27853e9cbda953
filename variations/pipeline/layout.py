"""
Balanced layout for variation slots around a source image.

Slot table (clockwise from top):
  0 top          1 top-right     2 right       3 bottom-right
  4 bottom       5 bottom-left   6 left        7 top-left
  8 top (outer)  9 right (outer) 10 bottom (outer) 11 left (outer)

  ┌────┬────┬────┐
  │ 7  │ 0  │ 1  │
  ├────┼────┼────┤
  │ 6  │ SRC│ 2  │
  ├────┼────┼────┤
  │ 5  │ 4  │ 3  │
  └────┴────┴────┘
"""

import os
from typing import Optional

from .models import Offset

# ── Config ───────────────────────────────────────────────────────────────────

GRID_SIZE = int(os.getenv("CANVAS_GRID_SIZE", "20"))

FOUR_VARIATION_POSITIONS = (0, 2, 4, 6)
EIGHT_VARIATION_POSITIONS = tuple(range(8))
TWELVE_VARIATION_POSITIONS = tuple(range(12))


def position_indices(count: int) -> tuple[int, ...]:
    """Slot-index assignment for a batch of `count` variations."""
    if count == 4:
        return FOUR_VARIATION_POSITIONS
    if count == 8:
        return EIGHT_VARIATION_POSITIONS
    if count == 12:
        return TWELVE_VARIATION_POSITIONS
    raise ValueError(f"Unsupported variation count: {count}")


def calculate_balanced_position(
    source_x: float,
    source_y: float,
    slot_index: int,
    source_width: float,
    source_height: float,
    variation_width: Optional[float] = None,
    variation_height: Optional[float] = None,
) -> Offset:
    """
    Offset of a variation placed at `slot_index` around the source.

    Indices outside 0-11 fall back to the source position.
    """
    vw = source_width if variation_width is None else variation_width
    vh = source_height if variation_height is None else variation_height
    x, y, w, h = source_x, source_y, source_width, source_height

    table = {
        0: (x, y - vh),
        1: (x + w, y - vh),
        2: (x + w, y),
        3: (x + w, y + h),
        4: (x, y + h),
        5: (x - vw, y + h),
        6: (x - vw, y),
        7: (x - vw, y - vh),
        8: (x + w / 2 - vw / 2, y - vh * 2),
        9: (x + w * 2, y + h / 2 - vh / 2),
        10: (x + w / 2 - vw / 2, y + h * 2),
        11: (x - vw * 2, y + h / 2 - vh / 2),
    }
    px, py = table.get(slot_index, (x, y))
    return Offset(x=px, y=py)


def batch_offsets(
    source_x: float,
    source_y: float,
    source_width: float,
    source_height: float,
    count: int,
) -> list[Offset]:
    """Offsets for every slot of a batch, in slot order."""
    return [
        calculate_balanced_position(source_x, source_y, index, source_width, source_height)
        for index in position_indices(count)
    ]


# ── Grid snapping ────────────────────────────────────────────────────────────

def snap_to_grid(value: float, grid_size: int = GRID_SIZE) -> float:
    if grid_size <= 0:
        return value
    return round(value / grid_size) * grid_size


def snap_position(x: float, y: float, grid_size: int = GRID_SIZE) -> Offset:
    return Offset(x=snap_to_grid(x, grid_size), y=snap_to_grid(y, grid_size))
