from __future__ import annotations

import asyncio
import random

import pytest

from conftest import FakeConceptGenerator
from variations import catalog
from variations.pipeline.concepts import (
    CatalogConceptGenerator,
    calculate_time_progression,
    format_time_label,
    generate_concepts,
    time_progression_sequence,
)
from variations.pipeline.errors import ConceptGenerationError
from variations.pipeline.models import (
    BRoll,
    CameraAngle,
    Concept,
    DEFAULT_STYLE,
    Director,
    StyleDescriptor,
    VariationKind,
)


def test_time_progression_is_exponential() -> None:
    assert [calculate_time_progression(i) for i in range(5)] == [1, 5, 25, 125, 625]


@pytest.mark.parametrize(
    "minutes,label",
    [(1, "+1min"), (59, "+59min"), (60, "+1h"), (125, "+2h5m"), (625, "+10h25m"), (1440, "+1d"), (78125, "+54d6h")],
)
def test_format_time_label(minutes: int, label: str) -> None:
    assert format_time_label(minutes) == label


def test_time_progression_sequence() -> None:
    assert time_progression_sequence(3) == [(1, "+1min"), (5, "+5min"), (25, "+25min")]


def test_select_random_items_unique_within_catalog() -> None:
    picked = catalog.select_random_items(catalog.DIRECTORS, 12, random.Random(1))
    assert len(picked) == 12
    assert len(set(picked)) == 12


def test_select_random_items_cycles_beyond_catalog() -> None:
    picked = catalog.select_random_items(catalog.CAMERA_ANGLES, 12, random.Random(1))
    assert len(picked) == 12
    assert set(picked) == set(catalog.CAMERA_ANGLES)
    assert picked[:8] == picked[8:] + picked[4:8]
    assert catalog.select_random_items(catalog.CAMERA_ANGLES, 0) == []


def test_camera_concepts_carry_angle_and_context() -> None:
    gen = CatalogConceptGenerator(VariationKind.CAMERA_ANGLE, rng=random.Random(3))
    concepts = asyncio.run(gen.generate(4, DEFAULT_STYLE, "rainy street"))

    assert len(concepts) == 4
    for concept in concepts:
        assert isinstance(concept.metadata, CameraAngle)
        assert concept.prompt == f"Apply this camera angle: {concept.metadata.camera_angle} Context: rainy street"


def test_director_concepts_prefix_style_lock() -> None:
    style = StyleDescriptor(style_lock_prompt="Shot on grainy 16mm.")
    gen = CatalogConceptGenerator(VariationKind.DIRECTOR, rng=random.Random(3))
    concepts = asyncio.run(gen.generate(4, style))

    for concept in concepts:
        assert isinstance(concept.metadata, Director)
        assert concept.prompt == (
            "Shot on grainy 16mm. Make it look as though it were shot by a film director "
            f"or cinematographer: {concept.metadata.director_name}."
        )


def test_broll_concepts_use_style_analysis() -> None:
    style = StyleDescriptor.model_validate({
        "colorPalette": {"dominant": ["teal", "amber"]},
        "lighting": {"quality": "hard", "direction": "low side light", "atmosphere": ["haze"]},
        "narrativeTone": {"primaryMood": "tense"},
    })
    gen = CatalogConceptGenerator(VariationKind.B_ROLL, rng=random.Random(3))
    concepts = asyncio.run(gen.generate(8, style))

    tags = {c.metadata.tag for c in concepts}
    assert len(tags) == 8
    assert all(isinstance(c.metadata, BRoll) for c in concepts)
    prompt = concepts[0].prompt
    assert prompt.startswith("INSTRUCTIONS:\n- Create a B-ROLL shot: ")
    assert "- Color Palette: teal, amber" in prompt
    assert "- Lighting: hard lighting with low side light" in prompt
    assert "- Mood: tense" in prompt
    assert "- Atmospheric Qualities: haze" in prompt


def test_storyline_is_not_catalog_backed() -> None:
    with pytest.raises(ValueError):
        CatalogConceptGenerator(VariationKind.STORYLINE)


def test_generate_concepts_requires_one_per_slot() -> None:
    with pytest.raises(ConceptGenerationError):
        asyncio.run(generate_concepts(FakeConceptGenerator(short_by=1), 4, DEFAULT_STYLE))


def test_generate_concepts_rejects_empty_prompts() -> None:
    class Blank:
        async def generate(self, count, style, user_context=None):
            return [Concept(prompt="  ") for _ in range(count)]

    with pytest.raises(ConceptGenerationError):
        asyncio.run(generate_concepts(Blank(), 4, DEFAULT_STYLE))


def test_generate_concepts_wraps_collaborator_errors() -> None:
    with pytest.raises(ConceptGenerationError) as exc:
        asyncio.run(generate_concepts(FakeConceptGenerator(fail=RuntimeError("quota")), 4, DEFAULT_STYLE))
    assert "quota" in str(exc.value)
