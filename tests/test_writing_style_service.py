"""Tests for WritingStyleService: profile updates, concurrency and lookup."""

import asyncio
import logging
import random
import statistics
from collections.abc import Callable
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from writing_style.core.exceptions import (
    DatabaseError,
    ExtractionError,
    TransactionConflictError,
)
from writing_style.models.style import FeatureVector, StyleProfile
from writing_style.services.writing_style_service import (
    WritingStyleService,
    is_retryable_conflict,
)

from conftest import FakeExtractor, InMemoryStyleProfileStore

CONNECTION_ID = "conn-7f3a"


async def _seed(service: WritingStyleService, count: int) -> None:
    for index in range(count):
        await service.update_profile(CONNECTION_ID, f"seed email {index}")


def test_is_retryable_conflict() -> None:
    assert is_retryable_conflict(TransactionConflictError(CONNECTION_ID))
    assert not is_retryable_conflict(DatabaseError())
    assert not is_retryable_conflict(ExtractionError("bad output"))


def test_defaults_come_from_settings(
    store: InMemoryStyleProfileStore, extractor: FakeExtractor
) -> None:
    service = WritingStyleService(store, extractor)
    assert service.top_k == 12
    assert service.max_retries == 1


# ---------------------------------------------------------------------------
# update_profile
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_and_second_email_fold_into_running_mean(
    service: WritingStyleService,
    extractor: FakeExtractor,
    store: InMemoryStyleProfileStore,
    make_vector: Callable[..., FeatureVector],
) -> None:
    extractor.by_body["first"] = make_vector(average_sentence_length=10.0)
    extractor.by_body["second"] = make_vector(average_sentence_length=20.0)

    first = await service.update_profile(CONNECTION_ID, "first")
    assert first.num_messages == 1
    assert store.rows[CONNECTION_ID]["style"]["average_sentence_length"] == {
        "count": 1,
        "mean": 10.0,
        "m2": 0.0,
    }

    second = await service.update_profile(CONNECTION_ID, "second")
    assert second.num_messages == 2
    state = store.rows[CONNECTION_ID]["style"]["average_sentence_length"]
    assert state["mean"] == pytest.approx(15.0)
    assert state["m2"] == pytest.approx(50.0)
    assert store.rows[CONNECTION_ID]["num_messages"] == 2


@pytest.mark.asyncio
async def test_greeting_frequencies_accumulate(
    service: WritingStyleService,
    extractor: FakeExtractor,
    store: InMemoryStyleProfileStore,
    make_vector: Callable[..., FeatureVector],
) -> None:
    extractor.by_body["hi"] = make_vector(greeting_form="hi")
    extractor.by_body["hello"] = make_vector(greeting_form="hello")

    for body in ["hi", "hi", "hi", "hello"]:
        await service.update_profile(CONNECTION_ID, body)

    assert store.rows[CONNECTION_ID]["style"]["greeting_form"] == {"hi": 3, "hello": 1}


@pytest.mark.asyncio
async def test_connections_are_kept_apart(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    await service.update_profile("conn-a", "one")
    await service.update_profile("conn-a", "two")
    await service.update_profile("conn-b", "three")

    assert store.rows["conn-a"]["num_messages"] == 2
    assert store.rows["conn-b"]["num_messages"] == 1


@pytest.mark.asyncio
async def test_mean_matches_batch_over_many_emails(
    service: WritingStyleService,
    extractor: FakeExtractor,
    store: InMemoryStyleProfileStore,
    make_vector: Callable[..., FeatureVector],
) -> None:
    rng = random.Random(99)
    lengths = [rng.uniform(4, 35) for _ in range(25)]
    for index, length in enumerate(lengths):
        extractor.by_body[f"email {index}"] = make_vector(average_sentence_length=length)

    for index in range(len(lengths)):
        await service.update_profile(CONNECTION_ID, f"email {index}")

    state = store.rows[CONNECTION_ID]["style"]["average_sentence_length"]
    assert store.rows[CONNECTION_ID]["num_messages"] == len(lengths)
    assert state["mean"] == pytest.approx(statistics.fmean(lengths))
    assert state["m2"] / state["count"] == pytest.approx(statistics.pvariance(lengths))


@pytest.mark.asyncio
async def test_extraction_error_persists_nothing(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    with pytest.raises(ExtractionError):
        await service.update_profile(CONNECTION_ID, "   ")

    assert store.rows == {}
    assert store.get_calls == 0


@pytest.mark.asyncio
async def test_database_error_is_not_retried(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    store.insert = AsyncMock(side_effect=DatabaseError("connection reset"))  # type: ignore[method-assign]

    with pytest.raises(DatabaseError):
        await service.update_profile(CONNECTION_ID, "hello")

    assert store.get_calls == 1
    store.insert.assert_awaited_once()


@pytest.mark.asyncio
async def test_persistent_conflict_gives_up_after_one_retry(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    store.insert = AsyncMock(  # type: ignore[method-assign]
        side_effect=TransactionConflictError(CONNECTION_ID)
    )

    with pytest.raises(TransactionConflictError):
        await service.update_profile(CONNECTION_ID, "hello")

    assert store.get_calls == 2
    assert store.insert.await_count == 2


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_first_writes_do_not_lose_an_update(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    results = await asyncio.gather(
        service.update_profile(CONNECTION_ID, "a"),
        service.update_profile(CONNECTION_ID, "b"),
    )

    assert sorted(profile.num_messages for profile in results) == [1, 2]
    assert store.rows[CONNECTION_ID]["num_messages"] == 2
    assert store.conflicts == 1


@pytest.mark.asyncio
async def test_two_concurrent_updates_both_apply(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    await _seed(service, 3)

    await asyncio.gather(
        service.update_profile(CONNECTION_ID, "a"),
        service.update_profile(CONNECTION_ID, "b"),
    )

    row = store.rows[CONNECTION_ID]
    assert row["num_messages"] == 5
    assert row["style"]["average_sentence_length"]["count"] == 5
    assert store.conflicts == 1


@pytest.mark.asyncio
async def test_third_concurrent_writer_fails_after_its_retry(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    await _seed(service, 2)

    results = await asyncio.gather(
        service.update_profile(CONNECTION_ID, "a"),
        service.update_profile(CONNECTION_ID, "b"),
        service.update_profile(CONNECTION_ID, "c"),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(failures) == 1
    assert isinstance(failures[0], TransactionConflictError)
    # Committed exactly the two successful updates, never more.
    assert store.rows[CONNECTION_ID]["num_messages"] == 4


@pytest.mark.asyncio
async def test_row_rebuilt_to_same_count_is_a_conflict(
    service: WritingStyleService,
    extractor: FakeExtractor,
    store: InMemoryStyleProfileStore,
    make_vector: Callable[..., FeatureVector],
) -> None:
    """A reset and re-seed between read and write must not be overwritten."""
    await _seed(service, 2)
    rebuilt = dict(store.rows[CONNECTION_ID], updated_at=datetime(2027, 3, 1, tzinfo=UTC))
    read_row = store.get

    async def read_then_rebuild(connection_id: str) -> StyleProfile | None:
        profile = await read_row(connection_id)
        if store.get_calls == 3:
            store.rows[connection_id] = rebuilt
        return profile

    store.get = read_then_rebuild  # type: ignore[method-assign]
    extractor.by_body["late"] = make_vector(token_total=9)

    profile = await service.update_profile(CONNECTION_ID, "late")

    assert store.conflicts == 1
    assert store.get_calls == 4
    assert profile.num_messages == 3
    assert store.rows[CONNECTION_ID]["num_messages"] == 3
    assert store.rows[CONNECTION_ID]["updated_at"] != rebuilt["updated_at"]


@pytest.mark.asyncio
async def test_failing_connection_does_not_block_others(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    read_row = store.get

    async def read_or_fail(connection_id: str) -> StyleProfile | None:
        if connection_id == "conn-broken":
            raise DatabaseError("Failed to read style matrix: timeout")
        return await read_row(connection_id)

    store.get = read_or_fail  # type: ignore[method-assign]

    for _ in range(10):
        with pytest.raises(DatabaseError):
            await service.update_profile("conn-broken", "hello")

    profile = await service.update_profile(CONNECTION_ID, "hello")

    assert profile.num_messages == 1
    assert "conn-broken" not in store.rows


# ---------------------------------------------------------------------------
# get_profile
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_profile_without_data_returns_none(
    service: WritingStyleService, extractor: FakeExtractor
) -> None:
    assert await service.get_profile(CONNECTION_ID) is None
    assert await service.get_profile(CONNECTION_ID, fallback_body="  ") is None
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_get_profile_fallback_is_transient(
    service: WritingStyleService,
    extractor: FakeExtractor,
    store: InMemoryStyleProfileStore,
    make_vector: Callable[..., FeatureVector],
) -> None:
    extractor.by_body["Hey team, quick update."] = make_vector(greeting_form="hey team")

    profile = await service.get_profile(CONNECTION_ID, fallback_body="Hey team, quick update.")

    assert profile is not None
    assert profile.is_transient
    assert profile.num_messages == 1
    assert profile.style["greeting_form"] == {"hey team": 1}
    assert store.rows == {}
    assert store.write_calls == 0
    assert await service.get_profile(CONNECTION_ID) is None


@pytest.mark.asyncio
async def test_get_profile_prefers_stored_profile(
    service: WritingStyleService, extractor: FakeExtractor
) -> None:
    await _seed(service, 2)
    extractor.calls.clear()

    first = await service.get_profile(CONNECTION_ID, fallback_body="ignored")
    second = await service.get_profile(CONNECTION_ID, fallback_body="ignored")

    assert first is not None
    assert not first.is_transient
    assert first.num_messages == 2
    assert first == second
    assert extractor.calls == []


# ---------------------------------------------------------------------------
# schedule_profile_update
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_scheduled_update_is_applied(
    service: WritingStyleService, store: InMemoryStyleProfileStore
) -> None:
    task = service.schedule_profile_update(CONNECTION_ID, "Thanks, see you soon.")

    profile = await task
    await asyncio.sleep(0)

    assert profile.num_messages == 1
    assert store.rows[CONNECTION_ID]["num_messages"] == 1
    assert not service._pending


@pytest.mark.asyncio
async def test_scheduled_update_failure_is_logged(
    service: WritingStyleService,
    store: InMemoryStyleProfileStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    with caplog.at_level(logging.WARNING, logger="writing_style.services.writing_style_service"):
        task = service.schedule_profile_update(CONNECTION_ID, "")
        with pytest.raises(ExtractionError):
            await task
        await asyncio.sleep(0)

    assert "Style profile update failed for connection conn-7f3a" in caplog.text
    assert store.rows == {}
    assert not service._pending
