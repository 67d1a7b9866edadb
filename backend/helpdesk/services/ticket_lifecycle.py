"""Ticket and message lifecycle as pure state transitions.

Nothing in here touches the database or the network. Each step takes an
immutable ``TicketState`` snapshot plus the organization's reference data
and returns a ``Transition``: the new snapshot and the list of effects the
service layer applies after persisting it once.
"""

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Callable, Mapping

from helpdesk.models.message import MessageType
from helpdesk.services.events import EventKind, OperationContext
from helpdesk.services.mentions import extract_mentions


@dataclass(frozen=True)
class TicketState:
    """The mutable, lifecycle-relevant fields of a ticket."""

    ticket_number: str | None = None
    contact_id: uuid.UUID | None = None
    status_id: uuid.UUID | None = None
    priority_id: uuid.UUID | None = None
    assigned_to_id: uuid.UUID | None = None
    sla_id: uuid.UUID | None = None
    department_id: uuid.UUID | None = None
    folder_id: uuid.UUID | None = None
    first_response_at: datetime | None = None
    resolved_at: datetime | None = None
    sla_first_response_due_at: datetime | None = None
    sla_resolution_due_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_ticket(cls, ticket) -> "TicketState":
        return cls(**{f.name: getattr(ticket, f.name) for f in fields(cls)})

    def apply_to(self, ticket) -> None:
        for f in fields(self):
            if getattr(ticket, f.name) != getattr(self, f.name):
                setattr(ticket, f.name, getattr(self, f.name))


@dataclass(frozen=True)
class StatusRef:
    name: str
    is_closed: bool = False


@dataclass(frozen=True)
class SlaTerms:
    name: str
    first_response_hours: int | None = None
    resolution_hours: int | None = None


@dataclass(frozen=True)
class TicketCatalog:
    """Organization reference data the transitions read from."""

    default_status_id: uuid.UUID | None = None
    default_priority_id: uuid.UUID | None = None
    default_sla_id: uuid.UUID | None = None
    solved_folder_id: uuid.UUID | None = None
    statuses: Mapping[uuid.UUID, StatusRef] = field(default_factory=dict)
    priorities: Mapping[uuid.UUID, str] = field(default_factory=dict)
    slas: Mapping[uuid.UUID, SlaTerms] = field(default_factory=dict)
    members: Mapping[uuid.UUID, str] = field(default_factory=dict)

    def status_name(self, status_id):
        ref = self.statuses.get(status_id) if status_id else None
        return ref.name if ref else None

    def is_closed(self, status_id) -> bool:
        ref = self.statuses.get(status_id) if status_id else None
        return bool(ref and ref.is_closed)

    def priority_name(self, priority_id):
        return self.priorities.get(priority_id) if priority_id else None

    def sla_name(self, sla_id):
        terms = self.slas.get(sla_id) if sla_id else None
        return terms.name if terms else None

    def member_name(self, user_id):
        return self.members.get(user_id) if user_id else None


# Effects


@dataclass(frozen=True)
class LogActivity:
    type: str
    properties: Mapping | None = None
    user_id: uuid.UUID | None = None  # Falls back to the acting user


@dataclass(frozen=True)
class NotifyTicketCreated:
    pass


@dataclass(frozen=True)
class NotifyAssignee:
    user_id: uuid.UUID
    assigned_by_id: uuid.UUID | None = None


@dataclass(frozen=True)
class NotifyNewMessage:
    message_id: uuid.UUID


@dataclass(frozen=True)
class NotifyMentions:
    message_id: uuid.UUID
    handles: tuple[str, ...]


@dataclass(frozen=True)
class DispatchEvent:
    kind: EventKind
    previous_id: uuid.UUID | None = None
    current_id: uuid.UUID | None = None


Effect = LogActivity | NotifyTicketCreated | NotifyAssignee | NotifyNewMessage | NotifyMentions | DispatchEvent


@dataclass(frozen=True)
class Transition:
    state: TicketState
    effects: tuple = ()

    def __post_init__(self):
        # Activity rows are written before anything is enqueued
        ordered = sorted(self.effects, key=lambda e: 0 if isinstance(e, LogActivity) else 1)
        object.__setattr__(self, "effects", tuple(ordered))

    @property
    def activities(self) -> list[LogActivity]:
        return [e for e in self.effects if isinstance(e, LogActivity)]


@dataclass(frozen=True)
class MessageFacts:
    message_id: uuid.UUID
    type: str
    is_from_contact: bool
    user_id: uuid.UUID | None = None
    body: str | None = None

    @property
    def is_reply(self) -> bool:
        return self.type == MessageType.REPLY.value

    @property
    def activity_type(self) -> str:
        if self.type == MessageType.REPLY.value:
            return "customer_reply" if self.is_from_contact else "agent_reply"
        return MessageType(self.type).value


def _with_sla_due_dates(state: TicketState, catalog: TicketCatalog, now: datetime) -> TicketState:
    terms = catalog.slas.get(state.sla_id) if state.sla_id else None
    if terms is None:
        return state
    base = state.created_at or now
    changes = {}
    if terms.first_response_hours and state.first_response_at is None:
        changes["sla_first_response_due_at"] = base + timedelta(hours=terms.first_response_hours)
    if terms.resolution_hours:
        changes["sla_resolution_due_at"] = base + timedelta(hours=terms.resolution_hours)
    return replace(state, **changes) if changes else state


def prepare_new_ticket(
    state: TicketState,
    catalog: TicketCatalog,
    contact_sla_id: uuid.UUID | None,
    next_number: Callable[[], str | None],
    now: datetime,
) -> TicketState:
    """Fill creation defaults that are still missing.

    Idempotent: calling it on its own result returns an equal state and
    does not draw another ticket number.
    """
    changes = {}
    if state.created_at is None:
        changes["created_at"] = now
    if not state.ticket_number:
        number = next_number()
        if number:
            changes["ticket_number"] = number
    if state.status_id is None and catalog.default_status_id:
        changes["status_id"] = catalog.default_status_id
    if state.priority_id is None and catalog.default_priority_id:
        changes["priority_id"] = catalog.default_priority_id
    if state.sla_id is None:
        sla_id = contact_sla_id or catalog.default_sla_id
        if sla_id:
            changes["sla_id"] = sla_id

    prepared = replace(state, **changes) if changes else state
    return _with_sla_due_dates(prepared, catalog, now)


def ticket_created_effects() -> tuple:
    return (LogActivity("created"), NotifyTicketCreated())


def apply_ticket_update(
    before: TicketState,
    after: TicketState,
    catalog: TicketCatalog,
    ctx: OperationContext,
    now: datetime,
) -> Transition:
    """Watch status, priority, assignee and SLA. Each fires only when it changed."""
    state = after
    effects: list = []

    if before.status_id != after.status_id:
        effects.append(LogActivity("status_changed", {
            "old": catalog.status_name(before.status_id),
            "new": catalog.status_name(after.status_id),
        }))
        if catalog.is_closed(after.status_id) and before.resolved_at is None:
            state = replace(state, resolved_at=now)
            if catalog.solved_folder_id:
                state = replace(state, folder_id=catalog.solved_folder_id)

    if before.priority_id != after.priority_id:
        effects.append(LogActivity("priority_changed", {
            "old": catalog.priority_name(before.priority_id),
            "new": catalog.priority_name(after.priority_id),
        }))

    if before.assigned_to_id != after.assigned_to_id:
        effects.append(LogActivity("assigned", {
            "old": catalog.member_name(before.assigned_to_id),
            "new": catalog.member_name(after.assigned_to_id),
        }))
        if after.assigned_to_id:
            effects.append(NotifyAssignee(after.assigned_to_id, ctx.actor_user_id))

    if before.sla_id != after.sla_id:
        state = _with_sla_due_dates(state, catalog, now)
        effects.append(LogActivity("sla_changed", {
            "old": catalog.sla_name(before.sla_id),
            "new": catalog.sla_name(after.sla_id),
        }))

    return Transition(state, tuple(effects))


def webhook_events_for_update(before: TicketState, after: TicketState) -> list[DispatchEvent]:
    watched = (
        ("status_id", EventKind.TICKET_STATUS_CHANGED),
        ("priority_id", EventKind.TICKET_PRIORITY_CHANGED),
        ("assigned_to_id", EventKind.TICKET_ASSIGNED),
        ("sla_id", EventKind.TICKET_SLA_CHANGED),
    )
    return [
        DispatchEvent(kind, getattr(before, name), getattr(after, name))
        for name, kind in watched
        if getattr(before, name) != getattr(after, name)
    ]


def apply_message_created(
    state: TicketState,
    message: MessageFacts,
    catalog: TicketCatalog,
    now: datetime,
) -> Transition:
    changes = {}

    if message.is_reply and not message.is_from_contact and state.first_response_at is None:
        changes["first_response_at"] = now

    if message.is_reply:
        if state.folder_id is not None:
            changes["folder_id"] = None
        if catalog.is_closed(state.status_id) and catalog.default_status_id:
            changes["status_id"] = catalog.default_status_id
            changes["resolved_at"] = None

    effects: list = [
        LogActivity(
            "message_added",
            {"type": message.activity_type, "message_id": str(message.message_id)},
            user_id=message.user_id,
        ),
        NotifyNewMessage(message.message_id),
    ]

    if not message.is_from_contact and message.user_id:
        handles = extract_mentions(message.body)
        if handles:
            effects.append(NotifyMentions(message.message_id, tuple(handles)))

    effects.append(DispatchEvent(EventKind.MESSAGE_CREATED, current_id=message.message_id))
    if message.is_from_contact and message.is_reply:
        effects.append(DispatchEvent(EventKind.REPLY_RECEIVED, current_id=message.message_id))

    return Transition(replace(state, **changes) if changes else state, tuple(effects))
