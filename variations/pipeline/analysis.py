"""
Analysis stage: structured style description of the shared source image.
"""

import logging

from .errors import AnalysisError
from .models import StyleAnalyzer, StyleDescriptor

logger = logging.getLogger(__name__)


async def analyze_style(analyzer: StyleAnalyzer, signed_url: str) -> StyleDescriptor:
    try:
        style = await analyzer.analyze(signed_url)
    except AnalysisError:
        raise
    except Exception as e:
        raise AnalysisError(
            f"Image analysis failed: {e}",
            status_code=getattr(e, "status_code", None),
        ) from e

    if not isinstance(style, StyleDescriptor):
        raise AnalysisError(f"Image analysis returned {type(style).__name__}, expected StyleDescriptor")
    return style
