"""Persistence for per-connection style matrices.

One row per connection in the ``writing_style_matrix`` table::

    connection_id  text primary key
    num_messages   integer not null
    style          jsonb not null
    updated_at     timestamptz

PostgREST exposes no row locks, so writers use optimistic concurrency:
an insert collides on the primary key, and an update only applies when
``num_messages`` and ``updated_at`` still hold the values that were read.
Either collision raises ``TransactionConflictError`` and the caller re-runs
its read-merge-write unit.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Protocol, cast, runtime_checkable

from supabase import Client

from writing_style.core.config import settings
from writing_style.core.exceptions import DatabaseError, TransactionConflictError
from writing_style.db.supabase import SupabaseClient
from writing_style.models.style import StyleProfile

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION_MARKERS = ("23505", "duplicate key")


@runtime_checkable
class StyleProfileStore(Protocol):
    """Keyed store of style profiles with version-checked writes."""

    async def get(self, connection_id: str) -> StyleProfile | None:
        """Point lookup by connection id."""
        ...

    async def insert(self, profile: StyleProfile) -> StyleProfile:
        """Create the first row; raises TransactionConflictError if it exists."""
        ...

    async def compare_and_swap(
        self,
        profile: StyleProfile,
        expected_num_messages: int,
        expected_updated_at: datetime | None = None,
    ) -> StyleProfile:
        """Replace the row only if it is still the version that was read."""
        ...

    async def delete(self, connection_id: str) -> bool:
        """Remove a connection's row; returns whether one existed."""
        ...


class SupabaseStyleProfileStore:
    """Style profile store backed by a Supabase table."""

    def __init__(self, client: Client | None = None, table: str | None = None) -> None:
        """Initialize the store.

        Args:
            client: Supabase client; the shared singleton is used when omitted.
            table: Table name; defaults to ``STYLE_MATRIX_TABLE``.
        """
        self._db = client or SupabaseClient.get_client()
        self._table = table or settings.STYLE_MATRIX_TABLE

    def _execute(
        self,
        query: Any,
        action: str,
        connection_id: str,
        *,
        conflict_on_duplicate: bool = False,
    ) -> Any:
        """Execute a built query, mapping failures to engine errors."""
        try:
            return query.execute()
        except Exception as e:
            if conflict_on_duplicate and any(m in str(e) for m in _UNIQUE_VIOLATION_MARKERS):
                raise TransactionConflictError(connection_id) from e
            logger.exception(
                "Style matrix %s failed", action, extra={"connection_id": connection_id}
            )
            raise DatabaseError(f"Failed to {action} style matrix: {e}") from e

    async def get(self, connection_id: str) -> StyleProfile | None:
        """Fetch the persisted profile for a connection.

        Returns:
            The stored profile, or None if the connection has none yet.

        Raises:
            DatabaseError: If the query fails.
        """
        result = self._execute(
            self._db.table(self._table)
            .select("connection_id, num_messages, style, updated_at")
            .eq("connection_id", connection_id)
            .maybe_single(),
            "fetch",
            connection_id,
        )
        if result and result.data:
            return StyleProfile.from_row(cast(dict[str, Any], result.data))
        return None

    async def insert(self, profile: StyleProfile) -> StyleProfile:
        """Insert the first style matrix row for a connection.

        Returns:
            ``profile`` stamped with the written ``updated_at``.

        Raises:
            TransactionConflictError: If a concurrent writer created the row first.
            DatabaseError: If the insert fails for any other reason.
        """
        written_at = datetime.now(UTC)
        row = profile.to_row() | {"updated_at": written_at.isoformat()}
        self._execute(
            self._db.table(self._table).insert(row),
            "insert",
            profile.connection_id,
            conflict_on_duplicate=True,
        )
        return profile.model_copy(update={"updated_at": written_at})

    async def compare_and_swap(
        self,
        profile: StyleProfile,
        expected_num_messages: int,
        expected_updated_at: datetime | None = None,
    ) -> StyleProfile:
        """Update a row only if nobody else has written it since it was read.

        ``updated_at`` is matched as well as ``num_messages`` so a row that was
        deleted and rebuilt to the same count is not mistaken for the one read.

        Args:
            profile: The successor profile to write.
            expected_num_messages: ``num_messages`` observed when the row was read.
            expected_updated_at: ``updated_at`` observed when the row was read;
                rows written without a timestamp are matched on count only.

        Raises:
            TransactionConflictError: If no row matched the expected version.
            DatabaseError: If the update fails.
        """
        written_at = datetime.now(UTC)
        query = (
            self._db.table(self._table)
            .update(
                {
                    "num_messages": profile.num_messages,
                    "style": profile.style.to_style_dict(),
                    "updated_at": written_at.isoformat(),
                }
            )
            .eq("connection_id", profile.connection_id)
            .eq("num_messages", expected_num_messages)
        )
        if expected_updated_at is not None:
            query = query.eq("updated_at", expected_updated_at.isoformat())

        response = self._execute(query, "update", profile.connection_id)
        if not response.data:
            raise TransactionConflictError(
                profile.connection_id,
                f"Style matrix for connection '{profile.connection_id}' changed "
                f"since it was read at num_messages={expected_num_messages}",
            )
        return profile.model_copy(update={"updated_at": written_at})

    async def delete(self, connection_id: str) -> bool:
        """Delete a connection's style matrix row.

        Raises:
            DatabaseError: If the delete fails.
        """
        response = self._execute(
            self._db.table(self._table).delete().eq("connection_id", connection_id),
            "delete",
            connection_id,
        )
        return bool(response.data)
