"""@mention extraction and resolution to organization users."""

import re
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.models.message import MessageMention
from helpdesk.models.user import User

# "@alice", "@j.doe", "@Jane Doe". Not the middle of an email address.
MENTION_PATTERN = re.compile(
    r"(?<![\w.@])@([A-Z][a-zA-Z'-]*(?:[ \t]+[A-Z][a-zA-Z'-]*)*|\w[\w.\-]*)"
)


def extract_mentions(body: str | None) -> list[str]:
    """Unique mention handles in order of first appearance (case-insensitive)."""
    if not body:
        return []
    seen: set[str] = set()
    handles: list[str] = []
    for match in MENTION_PATTERN.finditer(body):
        handle = match.group(1).rstrip(".-'")
        key = handle.lower()
        if handle and key not in seen:
            seen.add(key)
            handles.append(handle)
    return handles


def _candidates(handle: str) -> list[str]:
    """A multi-word handle may have swallowed following capitalized words; try longest first."""
    words = handle.split()
    return [" ".join(words[:n]).lower() for n in range(len(words), 0, -1)]


def match_users(users: list[User], handles: list[str]) -> list[User]:
    """Map handles onto users by full name, email local part, or unambiguous first name.

    Each user appears at most once however often, or however spelled, they were mentioned.
    """
    by_key: dict[str, User] = {}
    first_names: dict[str, list[User]] = {}
    for user in users:
        by_key.setdefault(user.name.lower(), user)
        by_key.setdefault(user.email.split("@", 1)[0].lower(), user)
        first = user.name.split()[0].lower() if user.name.split() else ""
        if first:
            first_names.setdefault(first, []).append(user)

    matched: dict[uuid.UUID, User] = {}
    for handle in handles:
        for candidate in _candidates(handle):
            user = by_key.get(candidate)
            if user is None and len(first_names.get(candidate, [])) == 1:
                user = first_names[candidate][0]
            if user is not None:
                matched.setdefault(user.id, user)
                break
    return list(matched.values())


def resolve_mentions(session: Session, organization_id: uuid.UUID, handles: list[str]) -> list[User]:
    if not handles:
        return []
    users = session.execute(
        select(User).where(User.organization_id == organization_id, User.is_active == True)  # noqa: E712
    ).scalars().all()
    return match_users(list(users), handles)


def record_mentions(session: Session, message_id: uuid.UUID, users: list[User]) -> list[MessageMention]:
    """Add a mention row per user not already recorded for the message. The caller commits."""
    existing = set(session.execute(
        select(MessageMention.user_id).where(MessageMention.message_id == message_id)
    ).scalars().all())
    rows = [MessageMention(message_id=message_id, user_id=user.id) for user in users if user.id not in existing]
    session.add_all(rows)
    return rows
