"""
Pydantic models and enums for the variation generation pipeline.
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


SUPPORTED_COUNTS = (4, 8, 12)


# ── Enums ────────────────────────────────────────────────────────────────────

class BatchMode(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class VariationKind(str, Enum):
    CAMERA_ANGLE = "camera_angle"
    DIRECTOR = "director"
    STORYLINE = "storyline"
    B_ROLL = "b_roll"


class TaskStatus(str, Enum):
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    CREATING_CONCEPTS = "creating-concepts"
    GENERATING = "generating"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    TaskStatus.UPLOADING,
    TaskStatus.ANALYZING,
    TaskStatus.CREATING_CONCEPTS,
    TaskStatus.GENERATING,
]


# ── Geometry ─────────────────────────────────────────────────────────────────

class Offset(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class Size(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int


class SourceImage(BaseModel):
    """The reference image a batch is derived from. Owned by the canvas."""
    model_config = ConfigDict(frozen=True)

    id: str
    x: float
    y: float
    width: float
    height: float
    src_ref: str


# ── Variation Metadata (tagged union) ────────────────────────────────────────

class CameraAngle(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["camera_angle"] = "camera_angle"
    camera_angle: str


class Director(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["director"] = "director"
    director_name: str


class Storyline(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["storyline"] = "storyline"
    time_label: str
    narrative_note: str = ""


class BRoll(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["b_roll"] = "b_roll"
    tag: str


class NoMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"


VariationMetadata = Annotated[
    Union[CameraAngle, Director, Storyline, BRoll, NoMetadata],
    Field(discriminator="kind"),
]


# ── Placeholder ──────────────────────────────────────────────────────────────

class Placeholder(BaseModel):
    """Visible canvas element standing in for one slot of a batch."""
    model_config = ConfigDict(frozen=True)

    id: str
    x: float
    y: float
    width: float
    height: float
    is_loading: bool = True
    src: str = ""
    pixelated_preview: Optional[str] = None
    final_src: str = ""
    error_info: Optional[str] = None
    natural_width: Optional[int] = None
    natural_height: Optional[int] = None
    media_type: BatchMode = BatchMode.IMAGE
    duration: Optional[int] = None
    source_image_id: Optional[str] = None
    metadata: VariationMetadata = Field(default_factory=NoMetadata)


# ── Generation Task ──────────────────────────────────────────────────────────

class GenerationTask(BaseModel):
    """One entry of the generation registry."""
    model_config = ConfigDict(frozen=True)

    slot_id: str
    image_url: str = ""
    prompt: str = ""
    target_size: Optional[Size] = None
    model: Optional[str] = None
    status: TaskStatus
    media_type: BatchMode = BatchMode.IMAGE
    duration: Optional[int] = None


# ── Style Descriptor ─────────────────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SubjectAnalysis(_CamelModel):
    type: str = "scene"
    description: str = ""
    context: str = ""


class ColorPalette(_CamelModel):
    dominant: list[str] = Field(default_factory=list)
    grading: str = "natural"
    mood: str = ""
    saturation: str = "balanced"
    temperature: str = "neutral"


class LightingAnalysis(_CamelModel):
    quality: str = "natural"
    direction: str = "soft frontal light"
    mood: str = ""
    atmosphere: list[str] = Field(default_factory=lambda: ["clear"])


class VisualStyle(_CamelModel):
    aesthetic: list[str] = Field(default_factory=lambda: ["cinematic"])
    composition: str = "balanced"
    depth: str = "layered"
    film_grain: str = "subtle"
    post_processing: list[str] = Field(default_factory=list)


class NarrativeTone(_CamelModel):
    primary_mood: str = "neutral"
    energy: str = "calm"
    cinematographer: str = ""
    director: str = ""


class StyleDescriptor(_CamelModel):
    """Structured style/mood analysis of a source image."""

    subject: SubjectAnalysis = Field(default_factory=SubjectAnalysis)
    color_palette: ColorPalette = Field(default_factory=ColorPalette)
    lighting: LightingAnalysis = Field(default_factory=LightingAnalysis)
    visual_style: VisualStyle = Field(default_factory=VisualStyle)
    narrative_tone: NarrativeTone = Field(default_factory=NarrativeTone)
    style_lock_prompt: str = ""


DEFAULT_STYLE = StyleDescriptor()


# ── Concepts ─────────────────────────────────────────────────────────────────

class Concept(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    metadata: VariationMetadata = Field(default_factory=NoMetadata)


# ── Requests / Outcomes ──────────────────────────────────────────────────────

class BatchRequest(BaseModel):
    """A user-initiated variation request."""
    source: SourceImage
    count: int = 4
    mode: BatchMode = BatchMode.IMAGE
    kind: VariationKind = VariationKind.CAMERA_ANGLE
    user_context: Optional[str] = None
    model: Optional[str] = None
    duration: Optional[int] = None

    @field_validator("count")
    @classmethod
    def _check_count(cls, value: int) -> int:
        if value not in SUPPORTED_COUNTS:
            raise ValueError(f"count must be one of {SUPPORTED_COUNTS}, got {value}")
        return value


class RenderOutcome(BaseModel):
    """What the renderer reports back for one slot."""
    final_src: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.final_src) and not self.error


class BatchOutcome(BaseModel):
    """Success or typed failure of one batch, as seen by the caller."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    timestamp: int
    slot_ids: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    error_stage: Optional[str] = None
    failure: Optional[Exception] = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Collaborator Protocols ───────────────────────────────────────────────────

class AssetStore(Protocol):
    def is_stored(self, ref: str) -> bool: ...

    async def store(self, data: bytes, content_type: str = "image/png") -> str: ...

    def resolve(self, ref: str) -> str: ...


class StyleAnalyzer(Protocol):
    async def analyze(self, signed_url: str) -> StyleDescriptor: ...


class ConceptGenerator(Protocol):
    async def generate(
        self,
        count: int,
        style: StyleDescriptor,
        user_context: Optional[str] = None,
    ) -> list[Concept]: ...
