"""Style extraction, aggregation and profile services."""

from writing_style.services.style_extraction import FeatureExtractor, StyleExtractor
from writing_style.services.writing_style_service import WritingStyleService

__all__ = ["FeatureExtractor", "StyleExtractor", "WritingStyleService"]
