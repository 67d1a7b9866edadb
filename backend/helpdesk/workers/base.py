"""Base worker utilities for RQ tasks."""

import asyncio
import uuid

import structlog
from sqlalchemy.orm import Session

from helpdesk.database import get_sync_session  # noqa: F401  re-exported for job modules

logger = structlog.get_logger()


def run_async(coro):
    """Run an async coroutine from sync RQ worker context."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def parse_id(value) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def load(session: Session, model, row_id):
    """Load a row by (string) id, or None when the id is malformed or the row is gone."""
    parsed = parse_id(row_id)
    return session.get(model, parsed) if parsed else None
