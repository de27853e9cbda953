"""
Typed errors for the variation pipeline.

Batch-fatal: PreparationError, UploadError, AnalysisError, ConceptGenerationError.
Slot-scoped: RenderError.
"""

from typing import Optional


class VariationError(Exception):
    """Base class for every error the pipeline reports to its caller."""

    stage = "variation"
    batch_fatal = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class PreparationError(VariationError):
    stage = "preparation"


class UploadError(VariationError):
    stage = "upload"


class AnalysisError(VariationError):
    stage = "analysis"


class ConceptGenerationError(VariationError):
    stage = "concepts"


class RenderError(VariationError):
    stage = "render"
    batch_fatal = False


class RegistryError(ValueError):
    """Raised when a registry write would break a batch invariant."""


# ── Short labels for canvas display ──────────────────────────────────────────

_SHORT_LABELS = [
    (("content moderation", "content flagged", "content checker"), "Content Blocked"),
    (("network", "fetch failed", "connection"), "Network Error"),
    (("timeout", "timed out"), "Timeout"),
    (("rate limit", "too many requests", "429"), "Rate Limited"),
    (("upload", "storage"), "Upload Failed"),
    (("analysis", "analyze"), "Analysis Failed"),
]


def short_error_message(error: object) -> str:
    """Condense a technical error into a label that fits on a placeholder."""
    text = str(error).lower()
    for needles, label in _SHORT_LABELS:
        if any(needle in text for needle in needles):
            return label
    return "Generation Failed"


def full_error_message(error: object) -> str:
    message = str(error).strip()
    return message or type(error).__name__
