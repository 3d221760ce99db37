"""Models package for the writing style engine."""

from writing_style.models.style import (
    CATEGORICAL_METRICS,
    CONTINUOUS_METRICS,
    COUNT_METRICS,
    FeatureVector,
    StyleMatrix,
    StyleProfile,
    WelfordState,
)

__all__ = [
    "CATEGORICAL_METRICS",
    "CONTINUOUS_METRICS",
    "COUNT_METRICS",
    "FeatureVector",
    "StyleMatrix",
    "StyleProfile",
    "WelfordState",
]
