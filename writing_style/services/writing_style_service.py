"""Writing style profile service.

Keeps one running style matrix per mail connection.  Every outgoing email
is run through the style extractor and folded into the connection's
matrix with a read-merge-write unit that is safe under concurrent writers
for the same connection; different connections never contend.

Composition reads the profile through ``get_profile``; a missing profile
is reported as ``None`` and callers fall back to a generic style.
"""

import asyncio
import logging

from writing_style.core.config import settings
from writing_style.core.exceptions import TransactionConflictError
from writing_style.core.resilience import run_with_retry
from writing_style.db.style_store import StyleProfileStore
from writing_style.models.style import FeatureVector, StyleProfile
from writing_style.services.style_aggregation import (
    bootstrap_style_matrix,
    merge_style_matrix,
)
from writing_style.services.style_extraction import FeatureExtractor

logger = logging.getLogger(__name__)


def is_retryable_conflict(exc: BaseException) -> bool:
    """Only write collisions on the same row are worth re-running."""
    return isinstance(exc, TransactionConflictError)


class WritingStyleService:
    """Builds and serves per-connection writing style profiles."""

    def __init__(
        self,
        store: StyleProfileStore,
        extractor: FeatureExtractor,
        *,
        top_k: int | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Persistence for style profiles.
            extractor: Turns email bodies into feature vectors.
            top_k: Categorical frequency map bound; defaults to ``STYLE_TOP_K``.
            max_retries: Re-runs of a conflicting merge; defaults to
                ``STYLE_MERGE_MAX_RETRIES``.
            retry_delay: Max pause before a re-run; defaults to
                ``STYLE_MERGE_RETRY_DELAY_SECONDS``.
        """
        self.store = store
        self.extractor = extractor
        self.top_k = top_k if top_k is not None else settings.STYLE_TOP_K
        self.max_retries = (
            max_retries if max_retries is not None else settings.STYLE_MERGE_MAX_RETRIES
        )
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.STYLE_MERGE_RETRY_DELAY_SECONDS
        )
        self._pending: set[asyncio.Task[StyleProfile]] = set()

    async def update_profile(self, connection_id: str, email_body: str) -> StyleProfile:
        """Fold one sent email into the connection's style profile.

        Args:
            connection_id: The mail connection that sent the email.
            email_body: Plain-text body of the sent email.

        Returns:
            The committed profile.

        Raises:
            ExtractionError: If style metrics could not be extracted.
            TransactionConflictError: If the merge collided twice in a row.
            DatabaseError: If the store failed.
        """
        vector = await self.extractor.extract(email_body)
        return await self.apply_feature_vector(connection_id, vector)

    async def apply_feature_vector(
        self, connection_id: str, vector: FeatureVector
    ) -> StyleProfile:
        """Atomically merge an extracted feature vector into the stored profile.

        The read-merge-write unit is re-run from a fresh read when a
        concurrent writer got there first, at most ``max_retries`` times.
        """
        return await run_with_retry(
            lambda: self._merge_once(connection_id, vector),
            is_retryable=is_retryable_conflict,
            max_retries=self.max_retries,
            delay=self.retry_delay,
            operation_name=f"style merge for {connection_id}",
        )

    async def _merge_once(self, connection_id: str, vector: FeatureVector) -> StyleProfile:
        existing = await self.store.get(connection_id)

        if existing is None:
            profile = StyleProfile(
                connection_id=connection_id,
                num_messages=1,
                style=bootstrap_style_matrix(vector),
            )
            profile = await self.store.insert(profile)
            logger.info(
                "Created style matrix",
                extra={"connection_id": connection_id, "num_messages": 1},
            )
            return profile

        profile = StyleProfile(
            connection_id=connection_id,
            num_messages=existing.num_messages + 1,
            style=merge_style_matrix(existing.style, vector, self.top_k),
        )
        profile = await self.store.compare_and_swap(
            profile,
            expected_num_messages=existing.num_messages,
            expected_updated_at=existing.updated_at,
        )
        logger.debug(
            "Updated style matrix",
            extra={"connection_id": connection_id, "num_messages": profile.num_messages},
        )
        return profile

    async def get_profile(
        self, connection_id: str, fallback_body: str | None = None
    ) -> StyleProfile | None:
        """Get the style profile to condition composition on.

        Args:
            connection_id: The mail connection composing the draft.
            fallback_body: Optional email text used to synthesize a one-off
                profile when nothing is stored yet.

        Returns:
            The stored profile; otherwise a transient profile built from
            ``fallback_body`` (never persisted); otherwise None, meaning
            there is not enough data and a generic style should be used.
        """
        profile = await self.store.get(connection_id)
        if profile is not None:
            return profile

        if not fallback_body or not fallback_body.strip():
            return None

        vector = await self.extractor.extract(fallback_body)
        logger.debug(
            "Synthesized transient style profile",
            extra={"connection_id": connection_id},
        )
        return StyleProfile(
            connection_id=connection_id,
            num_messages=1,
            style=bootstrap_style_matrix(vector),
            is_transient=True,
        )

    def schedule_profile_update(
        self, connection_id: str, email_body: str
    ) -> asyncio.Task[StyleProfile]:
        """Fire-and-forget ``update_profile`` for the email-sending path.

        Failures are logged and never propagate to the caller.  Must be
        called from a running event loop.
        """
        task = asyncio.create_task(self.update_profile(connection_id, email_body))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_update_done(connection_id, t))
        return task

    def _on_update_done(self, connection_id: str, task: "asyncio.Task[StyleProfile]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning(
                "Style profile update cancelled", extra={"connection_id": connection_id}
            )
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Style profile update failed for connection %s: %s",
                connection_id,
                exc,
                exc_info=exc,
            )
