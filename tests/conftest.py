"""Shared fixtures for writing style engine tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from writing_style.core.exceptions import ExtractionError, TransactionConflictError
from writing_style.models.style import (
    CATEGORICAL_METRICS,
    CONTINUOUS_METRICS,
    COUNT_METRICS,
    FeatureVector,
    StyleProfile,
)
from writing_style.services.writing_style_service import WritingStyleService


def neutral_feature_values() -> dict[str, Any]:
    """Every metric at its neutral default."""
    values: dict[str, Any] = {name: "" for name in CATEGORICAL_METRICS}
    values.update({name: 0 for name in COUNT_METRICS})
    values.update({name: 0.0 for name in CONTINUOUS_METRICS})
    return values


class InMemoryStyleProfileStore:
    """Dict-backed store with the same version-checked write semantics.

    ``get`` yields to the event loop so concurrent read-merge-write units
    interleave the way they would against a real database.
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.get_calls = 0
        self.write_calls = 0
        self.conflicts = 0
        self._writes_stamped = 0

    def _stamp(self, profile: StyleProfile) -> StyleProfile:
        self._writes_stamped += 1
        written_at = datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=self._writes_stamped)
        self.rows[profile.connection_id] = profile.to_row() | {"updated_at": written_at}
        return profile.model_copy(update={"updated_at": written_at})

    async def get(self, connection_id: str) -> StyleProfile | None:
        self.get_calls += 1
        row = self.rows.get(connection_id)
        await asyncio.sleep(0)
        return StyleProfile.from_row(row) if row else None

    async def insert(self, profile: StyleProfile) -> StyleProfile:
        self.write_calls += 1
        if profile.connection_id in self.rows:
            self.conflicts += 1
            raise TransactionConflictError(profile.connection_id)
        return self._stamp(profile)

    async def compare_and_swap(
        self,
        profile: StyleProfile,
        expected_num_messages: int,
        expected_updated_at: datetime | None = None,
    ) -> StyleProfile:
        self.write_calls += 1
        row = self.rows.get(profile.connection_id)
        if (
            row is None
            or row["num_messages"] != expected_num_messages
            or (expected_updated_at is not None and row["updated_at"] != expected_updated_at)
        ):
            self.conflicts += 1
            raise TransactionConflictError(profile.connection_id)
        return self._stamp(profile)

    async def delete(self, connection_id: str) -> bool:
        return self.rows.pop(connection_id, None) is not None


class FakeExtractor:
    """Extractor double returning queued or body-keyed feature vectors."""

    def __init__(self) -> None:
        self.by_body: dict[str, FeatureVector] = {}
        self.default: FeatureVector = FeatureVector.model_validate(neutral_feature_values())
        self.calls: list[str] = []

    async def extract(self, email_body: str) -> FeatureVector:
        self.calls.append(email_body)
        if not email_body.strip():
            raise ExtractionError("email body is empty")
        return self.by_body.get(email_body, self.default)


@pytest.fixture
def make_vector() -> Callable[..., FeatureVector]:
    """Factory for feature vectors: neutral defaults plus overrides."""

    def _make(**overrides: Any) -> FeatureVector:
        values = neutral_feature_values()
        values.update(overrides)
        return FeatureVector.model_validate(values)

    return _make


@pytest.fixture
def store() -> InMemoryStyleProfileStore:
    """Empty in-memory style profile store."""
    return InMemoryStyleProfileStore()


@pytest.fixture
def extractor() -> FakeExtractor:
    """Extractor double."""
    return FakeExtractor()


@pytest.fixture
def service(store: InMemoryStyleProfileStore, extractor: FakeExtractor) -> WritingStyleService:
    """WritingStyleService over the in-memory store, without retry pauses."""
    return WritingStyleService(store, extractor, top_k=12, max_retries=1, retry_delay=0.0)
