"""
Concept stage: one prompt + metadata per slot.

Camera angle, director and b-roll concepts come from the local catalogs.
Storyline concepts come from Gemini (see variations.gemini).
"""

import logging
import random
from typing import Optional

from variations import catalog
from .errors import ConceptGenerationError
from .models import (
    BRoll,
    CameraAngle,
    Concept,
    ConceptGenerator,
    Director,
    StyleDescriptor,
    VariationKind,
)

logger = logging.getLogger(__name__)


# ── Time progression (storyline) ─────────────────────────────────────────────

def calculate_time_progression(index: int, base_minutes: int = 1) -> int:
    """Minutes elapsed for storyline beat `index`: 1, 5, 25, 125, ..."""
    return base_minutes * 5 ** index


def format_time_label(minutes: int) -> str:
    """+1min, +2h5m, +1d, +54d6h."""
    if minutes < 60:
        return f"+{minutes}min"
    if minutes < 1440:
        hours, mins = divmod(minutes, 60)
        return f"+{hours}h{mins}m" if mins else f"+{hours}h"
    days = minutes // 1440
    hours = (minutes % 1440) // 60
    return f"+{days}d{hours}h" if hours else f"+{days}d"


def time_progression_sequence(count: int) -> list[tuple[int, str]]:
    """[(minutes, label), ...] for the first `count` storyline beats."""
    return [
        (calculate_time_progression(i), format_time_label(calculate_time_progression(i)))
        for i in range(count)
    ]


# ── Catalog generator ────────────────────────────────────────────────────────

def with_style_lock(prompt: str, style: StyleDescriptor) -> str:
    lock = style.style_lock_prompt.strip()
    return f"{lock} {prompt}" if lock and prompt.strip() else prompt


class CatalogConceptGenerator:
    """ConceptGenerator for the catalog-backed kinds."""

    def __init__(self, kind: VariationKind, rng: Optional[random.Random] = None):
        if kind == VariationKind.STORYLINE:
            raise ValueError("Storyline concepts are not catalog-backed")
        self.kind = kind
        self.rng = rng

    async def generate(
        self,
        count: int,
        style: StyleDescriptor,
        user_context: Optional[str] = None,
    ) -> list[Concept]:
        if self.kind == VariationKind.CAMERA_ANGLE:
            angles = catalog.select_random_items(catalog.CAMERA_ANGLES, count, self.rng)
            return [
                Concept(
                    prompt=with_style_lock(catalog.build_camera_prompt(angle, user_context), style),
                    metadata=CameraAngle(camera_angle=angle),
                )
                for angle in angles
            ]

        if self.kind == VariationKind.DIRECTOR:
            names = catalog.select_random_items(catalog.DIRECTORS, count, self.rng)
            return [
                Concept(
                    prompt=with_style_lock(catalog.build_director_prompt(name, user_context), style),
                    metadata=Director(director_name=name),
                )
                for name in names
            ]

        entries = catalog.select_random_items(catalog.B_ROLL, count, self.rng)
        return [
            Concept(
                prompt=with_style_lock(catalog.build_broll_prompt(directive, style, user_context), style),
                metadata=BRoll(tag=tag),
            )
            for tag, directive in entries
        ]


# ── Stage ────────────────────────────────────────────────────────────────────

async def generate_concepts(
    generator: ConceptGenerator,
    count: int,
    style: StyleDescriptor,
    user_context: Optional[str] = None,
) -> list[Concept]:
    """Run the generator and check the result maps 1:1 onto the slots."""
    try:
        concepts = await generator.generate(count, style, user_context)
    except ConceptGenerationError:
        raise
    except Exception as e:
        raise ConceptGenerationError(
            f"Concept generation failed: {e}",
            status_code=getattr(e, "status_code", None),
        ) from e

    concepts = list(concepts or [])
    if len(concepts) != count:
        raise ConceptGenerationError(
            f"Concept generation returned {len(concepts)} concepts, expected {count}"
        )
    empty = [i for i, c in enumerate(concepts) if not c.prompt.strip()]
    if empty:
        raise ConceptGenerationError(f"Concept generation returned empty prompts for slots {empty}")

    logger.info(f"Generated {count} concepts")
    return concepts
