"""Seed a connection's style matrix from a file of sample emails.

Folds sample emails one at a time into a connection's writing style
matrix, so composition can be exercised against a known style.

Usage:
    seed-style-matrix --connection-id <id> --emails-file styles/friendly.json --size 20
    seed-style-matrix --connection-id <id> --reset
    seed-style-matrix --connection-id <id> --reset --emails-file styles/concise.json

The emails file is a JSON array of strings or of objects with a "body" key.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from writing_style.core.config import settings
from writing_style.core.exceptions import StyleEngineException
from writing_style.core.logging_config import configure_logging
from writing_style.core.resilience import RETRYABLE_EXCEPTIONS, retry_on, run_with_retry
from writing_style.db.style_store import StyleProfileStore, SupabaseStyleProfileStore
from writing_style.services.style_extraction import StyleExtractor
from writing_style.services.writing_style_service import WritingStyleService

logger = logging.getLogger(__name__)

SEED_MAX_RETRIES = 5
SEED_RETRY_DELAY_SECONDS = 1.0
SEED_MAX_RETRY_DELAY_SECONDS = 60.0


def load_email_bodies(path: Path) -> list[str]:
    """Read sample email bodies from a JSON file.

    Raises:
        ValueError: If the file is not a JSON array of strings / {"body": ...} objects.
    """
    data: Any = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array")

    bodies: list[str] = []
    for item in data:
        body = item.get("body") if isinstance(item, dict) else item
        if not isinstance(body, str):
            raise ValueError(f"{path} contains an entry without a string body")
        if body.strip():
            bodies.append(body)
    return bodies


async def run_seeder(
    service: WritingStyleService,
    connection_id: str,
    bodies: list[str],
    size: int,
) -> int:
    """Fold up to ``size`` email bodies into a connection, one at a time.

    Returns:
        Number of emails folded in.
    """
    sample = bodies[:size]
    logger.warning(
        "Seeding style matrix for connection %s based on %d mock emails",
        connection_id,
        len(sample),
    )

    is_retryable = retry_on(StyleEngineException, *RETRYABLE_EXCEPTIONS)
    for index, body in enumerate(sample):
        logger.info("Seeding email %d", index)
        await run_with_retry(
            lambda body=body: service.update_profile(connection_id, body),
            is_retryable=is_retryable,
            max_retries=SEED_MAX_RETRIES,
            delay=SEED_RETRY_DELAY_SECONDS,
            backoff_factor=2.0,
            max_delay=SEED_MAX_RETRY_DELAY_SECONDS,
            operation_name=f"seeding email {index}",
        )

    logger.warning("Seeded style matrix for connection %s", connection_id)
    return len(sample)


async def run_reset(store: StyleProfileStore, connection_id: str) -> bool:
    """Delete a connection's style matrix."""
    deleted = await store.delete(connection_id)
    logger.warning(
        "Reset style matrix for connection %s (%s)",
        connection_id,
        "deleted" if deleted else "nothing stored",
    )
    return deleted


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        description="Seed a connection's writing style matrix from sample emails"
    )
    parser.add_argument(
        "--connection-id",
        type=str,
        required=True,
        help="Connection ID whose style matrix to seed",
    )
    parser.add_argument(
        "--emails-file",
        type=Path,
        default=None,
        help="JSON file of sample emails to fold in",
    )
    parser.add_argument(
        "--size",
        type=int,
        default=10,
        help="Number of sample emails to fold in (default: 10)",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete the connection's style matrix before seeding",
    )
    return parser


async def _main(args: argparse.Namespace) -> None:
    store = SupabaseStyleProfileStore()

    if args.reset:
        await run_reset(store, args.connection_id)

    if args.emails_file is None:
        return

    service = WritingStyleService(store, StyleExtractor())
    bodies = load_email_bodies(args.emails_file)
    await run_seeder(service, args.connection_id, bodies, args.size)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.emails_file is None and not args.reset:
        parser.error("one of --emails-file or --reset is required")
    if args.size < 1:
        parser.error("--size must be at least 1")

    configure_logging()

    try:
        settings.validate_startup()
    except ValueError as e:
        logger.error("%s", e)
        sys.exit(1)

    asyncio.run(_main(args))


if __name__ == "__main__":
    main()
