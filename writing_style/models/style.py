"""Writing style feature vector and style matrix models.

A ``FeatureVector`` is one email's extraction result: a closed, fully
populated record of 52 metrics in three kinds (continuous, count,
categorical).  A ``StyleMatrix`` holds the running sufficient statistics of
every vector folded in for one connection, and a ``StyleProfile`` is the
persisted row wrapping it.
"""

import logging
import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationInfo, model_validator

from writing_style.core.config import settings
from writing_style.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Continuous metric → documented (lower, upper) range; None means unbounded.
CONTINUOUS_METRIC_RANGES: dict[str, tuple[float | None, float | None]] = {
    # structural averages
    "average_sentence_length": (0.0, None),
    "average_lines_per_paragraph": (0.0, None),
    "average_word_length": (0.0, None),
    # vocabulary & diversity
    "type_token_ratio": (0.0, 1.0),
    "moving_average_ttr": (0.0, None),
    "hapax_proportion": (0.0, 1.0),
    "shannon_entropy": (0.0, None),
    "lexical_density": (0.0, 1.0),
    "contraction_rate": (0.0, None),
    # syntax & grammar
    "subordination_ratio": (0.0, 1.0),
    "passive_voice_rate": (0.0, None),
    "modal_verb_rate": (0.0, None),
    "parse_tree_depth_mean": (0.0, None),
    # punctuation & symbols (per 1000 tokens unless noted)
    "commas_per_sentence": (0.0, None),
    "exclamation_per_thousand_words": (0.0, None),
    "question_mark_rate": (0.0, None),
    "ellipsis_rate": (0.0, None),
    "parentheses_rate": (0.0, None),
    "emoji_rate": (0.0, None),
    # tone
    "sentiment_polarity": (-1.0, 1.0),
    "sentiment_subjectivity": (0.0, 1.0),
    "formality_score": (0.0, 100.0),
    "hedge_rate": (0.0, None),
    "certainty_rate": (0.0, None),
    # readability & flow
    "flesch_reading_ease": (None, None),
    "gunning_fog_index": (None, None),
    "smog_index": (None, None),
    "average_forward_references": (0.0, None),
    "cohesion_index": (0.0, 1.0),
    # persona markers
    "first_person_singular_rate": (0.0, None),
    "first_person_plural_rate": (0.0, None),
    "second_person_rate": (0.0, None),
    "self_reference_ratio": (0.0, 1.0),
    "empathy_phrase_rate": (0.0, None),
    "humor_marker_rate": (0.0, None),
    # formatting habits
    "markup_bold_rate": (0.0, None),
    "markup_italic_rate": (0.0, None),
    "hyperlink_rate": (0.0, None),
    "code_block_rate": (0.0, None),
    # rhetorical devices
    "rhetorical_question_rate": (0.0, None),
    "analogy_rate": (0.0, None),
    "imperative_sentence_rate": (0.0, None),
    "expletive_opening_rate": (0.0, None),
    "parallelism_rate": (0.0, None),
}

CONTINUOUS_METRICS: tuple[str, ...] = tuple(CONTINUOUS_METRIC_RANGES)

COUNT_METRICS: tuple[str, ...] = (
    "greeting_present",
    "sign_off_present",
    "token_total",
    "char_total",
    "paragraphs",
    "bullet_list_present",
)

# Count metrics that are presence flags stored as 0/1
FLAG_METRICS: frozenset[str] = frozenset(
    {"greeting_present", "sign_off_present", "bullet_list_present"}
)

CATEGORICAL_METRICS: tuple[str, ...] = (
    "greeting_form",
    "sign_off_form",
)

ALL_METRICS: tuple[str, ...] = CATEGORICAL_METRICS + COUNT_METRICS + CONTINUOUS_METRICS


def _out_of_range(name: str, value: float, clamp: bool, bounded: float) -> float:
    if not clamp:
        raise ValidationError(
            f"{name}={value} is outside its documented range",
            field=name,
            details={"value": value},
        )
    logger.debug("Clamping %s from %s to %s", name, value, bounded)
    return bounded


def _as_finite_number(name: str, value: Any) -> float | None:
    """Read ``value`` as a float; None leaves the type error to pydantic."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except OverflowError as e:
        raise ValueError(f"{name} is too large to be a metric value") from e
    except ValueError:
        return None
    if not math.isfinite(number):
        raise ValueError(f"{name} must be a finite number")
    return number


def _normalize_continuous(name: str, value: Any, clamp: bool) -> Any:
    number = _as_finite_number(name, value)
    if number is None:
        return value

    lower, upper = CONTINUOUS_METRIC_RANGES[name]
    if lower is not None and number < lower:
        return _out_of_range(name, number, clamp, lower)
    if upper is not None and number > upper:
        return _out_of_range(name, number, clamp, upper)
    return number


def _normalize_count(name: str, value: Any, clamp: bool) -> Any:
    if isinstance(value, bool):
        return int(value)
    number = _as_finite_number(name, value)
    if number is None:
        return value

    count = int(round(number))
    upper = 1 if name in FLAG_METRICS else None
    if count < 0:
        return int(_out_of_range(name, count, clamp, 0))
    if upper is not None and count > upper:
        return int(_out_of_range(name, count, clamp, upper))
    return count


def _normalize_categorical(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip().lower()
    return value


class FeatureVector(BaseModel):
    """Style metrics extracted from a single email body.

    The field set is closed: unknown keys are rejected and every field is
    required.  Absent signals are neutral defaults (0, 0.0 or ""), never
    omissions.  Numeric values outside their documented range are clamped
    at this boundary unless clamping is disabled, in which case
    ``ValidationError`` is raised.  Pass ``context={"clamp": bool}`` to
    ``model_validate`` to override ``STYLE_CLAMP_OUT_OF_RANGE``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    # greeting / sign-off
    greeting_form: str
    sign_off_form: str
    greeting_present: int
    sign_off_present: int

    # simple totals & flags
    token_total: int
    char_total: int
    paragraphs: int
    bullet_list_present: int

    # structural averages
    average_sentence_length: float  # words per sentence
    average_lines_per_paragraph: float
    average_word_length: float  # characters per word

    # vocabulary & diversity
    type_token_ratio: float
    moving_average_ttr: float
    hapax_proportion: float
    shannon_entropy: float
    lexical_density: float
    contraction_rate: float

    # syntax & grammar
    subordination_ratio: float
    passive_voice_rate: float
    modal_verb_rate: float
    parse_tree_depth_mean: float

    # punctuation & symbols
    commas_per_sentence: float
    exclamation_per_thousand_words: float
    question_mark_rate: float
    ellipsis_rate: float
    parentheses_rate: float
    emoji_rate: float  # emoji per 1000 tokens

    # tone
    sentiment_polarity: float  # -1 negative to 1 positive
    sentiment_subjectivity: float
    formality_score: float  # 0 casual to 100 formal
    hedge_rate: float
    certainty_rate: float

    # readability & flow
    flesch_reading_ease: float
    gunning_fog_index: float
    smog_index: float
    average_forward_references: float
    cohesion_index: float

    # persona markers
    first_person_singular_rate: float
    first_person_plural_rate: float
    second_person_rate: float
    self_reference_ratio: float
    empathy_phrase_rate: float
    humor_marker_rate: float

    # formatting habits
    markup_bold_rate: float
    markup_italic_rate: float
    hyperlink_rate: float
    code_block_rate: float

    # rhetorical devices
    rhetorical_question_rate: float
    analogy_rate: float
    imperative_sentence_rate: float
    expletive_opening_rate: float
    parallelism_rate: float

    @model_validator(mode="before")
    @classmethod
    def normalize_values(cls, data: Any, info: ValidationInfo) -> Any:
        """Clamp numeric metrics and normalize categorical strings."""
        if not isinstance(data, dict):
            return data

        clamp = settings.STYLE_CLAMP_OUT_OF_RANGE
        if info.context and "clamp" in info.context:
            clamp = bool(info.context["clamp"])

        normalized = dict(data)
        for name, value in data.items():
            if name in CONTINUOUS_METRIC_RANGES:
                normalized[name] = _normalize_continuous(name, value, clamp)
            elif name in COUNT_METRICS:
                normalized[name] = _normalize_count(name, value, clamp)
            elif name in CATEGORICAL_METRICS:
                normalized[name] = _normalize_categorical(value)
        return normalized


class WelfordState(BaseModel):
    """Sufficient statistics of one continuous metric.

    ``m2 / count`` is the population variance; it is left to consumers.
    """

    model_config = ConfigDict(frozen=True)

    count: int
    mean: float
    m2: float


class StyleMatrix(BaseModel):
    """Running aggregate of all feature vectors folded in for one connection."""

    continuous: dict[str, WelfordState]
    counts: dict[str, int]
    categorical: dict[str, dict[str, int]]

    @model_validator(mode="after")
    def check_schema(self) -> "StyleMatrix":
        """Enforce the fixed key set and lockstep Welford counts."""
        for kind, actual, expected in (
            ("continuous", self.continuous, CONTINUOUS_METRICS),
            ("count", self.counts, COUNT_METRICS),
            ("categorical", self.categorical, CATEGORICAL_METRICS),
        ):
            if set(actual) != set(expected):
                missing = sorted(set(expected) - set(actual))
                unknown = sorted(set(actual) - set(expected))
                raise ValidationError(
                    f"Style matrix {kind} metrics do not match the schema",
                    details={"missing": missing, "unknown": unknown},
                )

        counts = {state.count for state in self.continuous.values()}
        if len(counts) != 1:
            raise ValidationError(
                "Style matrix continuous metrics are out of lockstep",
                details={"counts": sorted(counts)},
            )
        return self

    @property
    def num_messages(self) -> int:
        """Number of feature vectors folded into this matrix."""
        return next(iter(self.continuous.values())).count

    def __getitem__(self, name: str) -> WelfordState | int | dict[str, int]:
        if name in self.continuous:
            return self.continuous[name]
        if name in self.counts:
            return self.counts[name]
        if name in self.categorical:
            return self.categorical[name]
        raise KeyError(name)

    def to_style_dict(self) -> dict[str, Any]:
        """Flatten into the persisted JSON shape, keyed by metric name."""
        style: dict[str, Any] = {}
        for name in CONTINUOUS_METRICS:
            style[name] = self.continuous[name].model_dump()
        for name in COUNT_METRICS:
            style[name] = self.counts[name]
        for name in CATEGORICAL_METRICS:
            style[name] = dict(self.categorical[name])
        return style

    @classmethod
    def from_style_dict(cls, style: dict[str, Any]) -> "StyleMatrix":
        """Rebuild a matrix from its persisted JSON shape.

        Raises:
            ValidationError: If the key set differs from the metric schema.
        """
        unknown = sorted(set(style) - set(ALL_METRICS))
        missing = sorted(set(ALL_METRICS) - set(style))
        if unknown or missing:
            raise ValidationError(
                "Persisted style matrix does not match the metric schema",
                details={"missing": missing, "unknown": unknown},
            )
        return cls(
            continuous={name: style[name] for name in CONTINUOUS_METRICS},
            counts={name: style[name] for name in COUNT_METRICS},
            categorical={name: style[name] for name in CATEGORICAL_METRICS},
        )


class StyleProfile(BaseModel):
    """A connection's style matrix together with its message count.

    ``is_transient`` marks read-time profiles synthesized from a fallback
    email; they are never written to the store.
    """

    connection_id: str
    num_messages: int
    style: StyleMatrix
    is_transient: bool = False
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def check_message_count(self) -> "StyleProfile":
        """num_messages must match the Welford counts of the matrix."""
        if self.num_messages != self.style.num_messages:
            raise ValidationError(
                "num_messages does not match the style matrix counts",
                field="num_messages",
                details={
                    "num_messages": self.num_messages,
                    "matrix_count": self.style.num_messages,
                },
            )
        return self

    def to_row(self) -> dict[str, Any]:
        """Row payload for the style matrix table."""
        return {
            "connection_id": self.connection_id,
            "num_messages": self.num_messages,
            "style": self.style.to_style_dict(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StyleProfile":
        """Build a profile from a style matrix table row."""
        return cls(
            connection_id=row["connection_id"],
            num_messages=int(row["num_messages"]),
            style=StyleMatrix.from_style_dict(row.get("style") or {}),
            updated_at=row.get("updated_at"),
        )
