"""
Variation Pipeline

Orchestration for one variation batch:
  Placeholders → Upload → Analysis (optional) → Concepts → Registry + render hand-off
  Renderer results → Completion / error overlays
"""

from .orchestrator import VariationService
from .routes import variation_router
from .models import BatchMode, TaskStatus, VariationKind

__all__ = [
    "VariationService",
    "variation_router",
    "BatchMode",
    "TaskStatus",
    "VariationKind",
]
