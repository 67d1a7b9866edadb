"""Email threading headers so notifications land in the customer's conversation.

Gmail threads on In-Reply-To/References plus the subject, Outlook on
Thread-Topic and the first 22 bytes of Thread-Index.
"""

import base64
import hashlib
import re
import secrets
import time
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

_REPLY_PREFIX = re.compile(r"^(?:(?:re|fwd?|aw|sv)\s*:\s*)+", re.IGNORECASE)
_TICKET_NUMBER = re.compile(r"\[?([A-Z]{2,10}[-_][A-Z0-9]{4,12})\]?", re.IGNORECASE)


@dataclass(frozen=True)
class ThreadHeaders:
    message_id: str | None = None
    in_reply_to: str | None = None
    references: str | None = None
    thread_topic: str | None = None
    thread_index: str | None = None

    @classmethod
    def empty(cls) -> "ThreadHeaders":
        return cls()


def clean_message_id(message_id: str | None) -> str:
    return (message_id or "").strip().strip("<>").strip()


def format_message_id(message_id: str | None) -> str | None:
    cleaned = clean_message_id(message_id)
    return f"<{cleaned}>" if cleaned else None


def base_subject(subject: str | None) -> str:
    """Subject without any leading Re:/Fwd: prefixes."""
    return _REPLY_PREFIX.sub("", subject or "").strip()


def ensure_ticket_number(subject: str, ticket_number: str | None) -> str:
    if not ticket_number or ticket_number in subject:
        return subject
    return f"[{ticket_number}] {subject}"


def reply_subject(ticket) -> str:
    return "Re: " + ensure_ticket_number(base_subject(ticket.subject), ticket.ticket_number)


def extract_ticket_number(subject: str | None) -> str | None:
    match = _TICKET_NUMBER.search(subject or "")
    return match.group(1).upper() if match else None


class EmailThreadingService:
    def notification_headers(self, ticket, channel) -> ThreadHeaders:
        original = format_message_id(ticket.email_original_message_id)

        references: list[str] = [original] if original else []
        for message in ticket.messages:
            formatted = format_message_id(message.email_message_id)
            if formatted and formatted not in references:
                references.append(formatted)

        return ThreadHeaders(
            message_id=self.notification_message_id(ticket, channel),
            in_reply_to=original,
            references=" ".join(references) or None,
            thread_topic=base_subject(ticket.subject),
            thread_index=self.thread_index(ticket),
        )

    def notification_message_id(self, ticket, channel) -> str:
        token = f"{int(time.time())}{secrets.token_hex(4)}"
        return f"<ticket-{ticket.id}-notif-{token}@{channel.domain}>"

    def thread_index(self, ticket) -> str:
        """The customer's own Thread-Index when known, else a stable one per conversation."""
        if ticket.email_thread_index:
            return ticket.email_thread_index

        if ticket.email_thread_id or ticket.email_original_message_id:
            seed = f"{ticket.email_thread_id or ''}|{clean_message_id(ticket.email_original_message_id)}"
        else:
            seed = f"ticket-{ticket.id}"
        # 6 header bytes + 16 byte GUID, the part Outlook compares
        header = hashlib.md5(f"thread-header-{seed}".encode()).digest()[:6]
        guid = hashlib.md5(f"ticket-thread-{seed}".encode()).digest()
        logger.debug("thread_index_generated", ticket_id=str(ticket.id))
        return base64.b64encode(header + guid).decode()
