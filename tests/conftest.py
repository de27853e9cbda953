from __future__ import annotations

import base64
from io import BytesIO
from typing import Optional

import pytest
from PIL import Image

from variations import metrics
from variations.pipeline.clock import SequenceClock
from variations.pipeline.models import (
    Concept,
    CameraAngle,
    SourceImage,
    StyleDescriptor,
    VariationKind,
)
from variations.pipeline.orchestrator import VariationService

START_TS = 1_700_000_000_000
STORE_BASE = "https://store.test/objects"


def png_bytes(width: int = 40, height: int = 20, color=(30, 120, 200)) -> bytes:
    output = BytesIO()
    Image.new("RGB", (width, height), color).save(output, format="PNG")
    return output.getvalue()


def png_data_url(width: int = 40, height: int = 20) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(width, height)).decode()


class FakeStore:
    def __init__(self, fail: Optional[Exception] = None, on_store=None):
        self.fail = fail
        self.on_store = on_store
        self.stored: list[tuple[bytes, str]] = []

    def is_stored(self, ref: str) -> bool:
        return ref.startswith(STORE_BASE) or ref.startswith("store://")

    async def store(self, data: bytes, content_type: str = "image/png") -> str:
        if self.on_store:
            self.on_store()
        if self.fail:
            raise self.fail
        self.stored.append((data, content_type))
        return f"{STORE_BASE}/{len(self.stored)}.png"

    def resolve(self, ref: str) -> str:
        return f"{ref}?signature=abc"


class FakeAnalyzer:
    def __init__(self, style: Optional[StyleDescriptor] = None, fail: Optional[Exception] = None, on_analyze=None):
        self.style = style or StyleDescriptor(style_lock_prompt="Moody teal film look.")
        self.fail = fail
        self.on_analyze = on_analyze
        self.calls: list[str] = []

    async def analyze(self, signed_url: str) -> StyleDescriptor:
        self.calls.append(signed_url)
        if self.on_analyze:
            self.on_analyze()
        if self.fail:
            raise self.fail
        return self.style


class FakeConceptGenerator:
    def __init__(self, fail: Optional[Exception] = None, short_by: int = 0, on_generate=None):
        self.fail = fail
        self.short_by = short_by
        self.on_generate = on_generate
        self.calls: list[tuple[int, StyleDescriptor, Optional[str]]] = []

    async def generate(self, count, style, user_context=None):
        self.calls.append((count, style, user_context))
        if self.on_generate:
            self.on_generate()
        if self.fail:
            raise self.fail
        return [
            Concept(prompt=f"angle {i}", metadata=CameraAngle(camera_angle=f"angle {i}"))
            for i in range(count - self.short_by)
        ]


def make_source(**overrides) -> SourceImage:
    fields = dict(id="img-1", x=100, y=100, width=200, height=100, src_ref=png_data_url())
    fields.update(overrides)
    return SourceImage(**fields)


def make_service(
    store=None,
    analyzer=None,
    generator=None,
    analysis_enabled: bool = True,
    **kwargs,
) -> VariationService:
    generator = generator or FakeConceptGenerator()
    return VariationService(
        store=store or FakeStore(),
        analyzer=analyzer or FakeAnalyzer(),
        generators={kind: generator for kind in VariationKind},
        clock=SequenceClock(start=START_TS),
        analysis_enabled=analysis_enabled,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def source() -> SourceImage:
    return make_source()
