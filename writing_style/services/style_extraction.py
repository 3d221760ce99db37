"""LLM-backed style metric extraction.

Turns one plain-text email body into a validated ``FeatureVector``.  The
model is asked for a single minified JSON object; responses that do not
parse go through a best-effort repair pipeline before the model is asked
again, up to ``STYLE_EXTRACTION_MAX_ATTEMPTS`` calls in total.
"""

import json
import logging
import re
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from writing_style.core.config import settings
from writing_style.core.exceptions import ExtractionError, ExternalServiceError, ValidationError
from writing_style.core.llm import LLMClient
from writing_style.models.style import (
    CATEGORICAL_METRICS,
    CONTINUOUS_METRIC_RANGES,
    COUNT_METRICS,
    FLAG_METRICS,
    FeatureVector,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class FeatureExtractor(Protocol):
    """Anything that can turn an email body into a feature vector."""

    async def extract(self, email_body: str) -> FeatureVector:
        """Extract style metrics from a non-empty email body."""
        ...


def _describe_range(lower: float | None, upper: float | None) -> str:
    if lower is None and upper is None:
        return "any number"
    if upper is None:
        return f">= {lower:g}"
    return f"{lower:g} to {upper:g}"


def _metric_lines() -> str:
    lines = [f'  "{name}": string, lower-cased, "" if absent' for name in CATEGORICAL_METRICS]
    for name in COUNT_METRICS:
        kind = "int 0 or 1" if name in FLAG_METRICS else "int >= 0"
        lines.append(f'  "{name}": {kind}')
    for name, (lower, upper) in CONTINUOUS_METRIC_RANGES.items():
        lines.append(f'  "{name}": float, {_describe_range(lower, upper)}')
    return "\n".join(lines)


_EXTRACTION_PROMPT = """You are a deterministic tool that distills writing-style metrics \
from a single email.

Treat the entire user message as one email body. Compute every metric below and reply \
with one minified JSON object containing exactly these {count} keys:
{{
{metrics}
}}

Guidelines:
- greeting_form: the opening line before the first break, lower-cased; \
greeting_present = 1 if non-empty.
- sign_off_form: the last non-blank line before the signature name, lower-cased; \
sign_off_present = 1 if non-empty.
- bullet_list_present: 1 if any line starts with a bullet or a numeral plus ".".
- Rates are per 1000 tokens unless the name says otherwise.
- When a metric is absent use a neutral default: "" for strings, 0 for ints, 0.0 for floats.

Return ONLY the JSON object: no commentary, no code fences, no extra keys, \
no NaN or null values. The first character must be {{ and the last must be }}.""".format(
    count=len(CATEGORICAL_METRICS) + len(COUNT_METRICS) + len(CONTINUOUS_METRIC_RANGES),
    metrics=_metric_lines(),
)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})


def _as_object(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    return value


def _close_open_structures(text: str) -> str:
    """Append whatever quotes/brackets are needed to close ``text``."""
    stack: list[str] = []
    in_string = False
    escape_next = False
    for ch in text:
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()

    closed = text + '"' if in_string else text
    closed = closed.rstrip().rstrip(",")
    return closed + "".join(reversed(stack))


def _repair_structure(text: str) -> str:
    """Fix common near-valid JSON defects in an LLM response."""
    candidate = text.strip()

    fence_match = _FENCE_PATTERN.search(candidate)
    if fence_match:
        candidate = fence_match.group(1).strip()

    start = candidate.find("{")
    if start == -1:
        raise ValueError("No JSON object found in response")
    candidate = candidate[start:]

    end = candidate.rfind("}")
    if end != -1 and candidate[end + 1 :].strip() and not candidate[end + 1 :].strip().startswith(","):
        # Drop trailing prose after the object
        candidate = candidate[: end + 1]

    candidate = candidate.translate(_SMART_QUOTES)
    candidate = _TRAILING_COMMA_PATTERN.sub(r"\1", candidate)
    return _TRAILING_COMMA_PATTERN.sub(r"\1", _close_open_structures(candidate))


def _truncate_to_last_close(text: str) -> str:
    """Cut ``text`` after its last complete closing brace/bracket."""
    start = text.find("{")
    if start == -1:
        raise ValueError("No JSON object found in response")

    last_close = -1
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "}]":
            last_close = i

    if last_close == -1:
        raise ValueError("No complete closing brace or bracket in response")
    truncated = text[start : last_close + 1]
    return _TRAILING_COMMA_PATTERN.sub(r"\1", _close_open_structures(truncated))


def parse_style_response(text: str) -> dict[str, Any]:
    """Parse an extractor response into a JSON object.

    Tries, in order:
    1. Strict ``json.loads`` of the whole response
    2. Structural repair (code fences, surrounding prose, smart quotes,
       trailing commas, unclosed strings/braces)
    3. Truncation after the last complete closing brace/bracket

    Args:
        text: Raw LLM response.

    Returns:
        The parsed JSON object.

    Raises:
        ValueError: If no strategy yields a JSON object.
    """
    # Strategy 1: strict parse
    try:
        return _as_object(json.loads(text.strip()))
    except ValueError:
        pass

    # Strategy 2: structural repair
    try:
        result = _as_object(json.loads(_repair_structure(text)))
        logger.debug("Style response parsed after structural repair")
        return result
    except ValueError:
        pass

    # Strategy 3: truncate to the last complete closer
    try:
        result = _as_object(json.loads(_truncate_to_last_close(text)))
        logger.debug("Style response parsed after truncation")
        return result
    except ValueError:
        pass

    raise ValueError(f"Could not extract a JSON object from response: {text[:200]}...")


class StyleExtractor:
    """Extracts a ``FeatureVector`` from an email body with an LLM."""

    def __init__(self, llm: LLMClient | None = None, max_attempts: int | None = None) -> None:
        """Initialize the extractor.

        Args:
            llm: LLM client; a default ``LLMClient`` is created when omitted.
            max_attempts: LLM calls allowed per extraction; defaults to
                ``STYLE_EXTRACTION_MAX_ATTEMPTS``.
        """
        self.llm = llm or LLMClient()
        self.max_attempts = max_attempts or settings.STYLE_EXTRACTION_MAX_ATTEMPTS

    async def extract(self, email_body: str) -> FeatureVector:
        """Extract style metrics from one email body.

        Args:
            email_body: Plain-text email body.

        Returns:
            A complete, range-checked feature vector.

        Raises:
            ExtractionError: If the body is blank, or no attempt produced a
                schema-complete result.
            ExternalServiceError: If the LLM could not be reached.
        """
        body = email_body.strip()
        if not body:
            raise ExtractionError("email body is empty")

        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.llm.generate_response(
                    messages=[{"role": "user", "content": body}],
                    system_prompt=_EXTRACTION_PROMPT,
                    max_tokens=settings.STYLE_EXTRACTION_MAX_TOKENS,
                    temperature=0.0,
                )
            except Exception as e:
                logger.exception("Style extraction LLM call failed")
                raise ExternalServiceError("style_extraction_llm", f"LLM call failed: {e}") from e

            try:
                data = parse_style_response(response)
                return FeatureVector.model_validate(data)
            except (ValueError, PydanticValidationError, ValidationError) as e:
                last_error = e
                logger.warning(
                    "Style extraction attempt %d/%d returned unusable output: %s",
                    attempt,
                    self.max_attempts,
                    e,
                )

        raise ExtractionError(str(last_error), attempts=self.max_attempts)
