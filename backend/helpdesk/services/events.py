"""Domain events and the explicit operation context passed through dispatch."""

import enum
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


class EventKind(str, enum.Enum):
    TICKET_CREATED = "ticket.created"
    TICKET_STATUS_CHANGED = "ticket.status_changed"
    TICKET_PRIORITY_CHANGED = "ticket.priority_changed"
    TICKET_ASSIGNED = "ticket.assigned"
    TICKET_SLA_CHANGED = "ticket.sla_changed"
    MESSAGE_CREATED = "message.created"
    REPLY_RECEIVED = "message.reply_received"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def values(cls) -> list[str]:
        return [kind.value for kind in cls]


_LABELS = {
    EventKind.TICKET_CREATED: "Ticket created",
    EventKind.TICKET_STATUS_CHANGED: "Status changed",
    EventKind.TICKET_PRIORITY_CHANGED: "Priority changed",
    EventKind.TICKET_ASSIGNED: "Ticket assigned",
    EventKind.TICKET_SLA_CHANGED: "SLA changed",
    EventKind.MESSAGE_CREATED: "New message",
    EventKind.REPLY_RECEIVED: "Customer reply received",
}


@dataclass(frozen=True)
class OperationContext:
    """Who is acting, and for which organization.

    Passed explicitly into every service, transition and dispatch entry point.
    Queue jobs rebuild it from ids, so there is no ambient request state.
    """

    organization_id: uuid.UUID
    actor_user_id: uuid.UUID | None = None


@dataclass(frozen=True)
class DomainEvent:
    kind: EventKind
    organization_id: uuid.UUID
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))
