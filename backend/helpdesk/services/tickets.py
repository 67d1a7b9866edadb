"""Ticket service - applies lifecycle transitions and their effects.

Each entry point persists the ticket, its activity rows and (for
messages) the new message in one commit, then applies the remaining
effects. Enqueue and dispatch effects are best-effort: a failing one is
logged and never undoes or blocks the write that triggered it.
"""

import uuid
from dataclasses import fields, replace
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpdesk.database import utcnow
from helpdesk.models.message import Message, MessageType
from helpdesk.models.organization import OrganizationSettings
from helpdesk.models.ticket import Priority, Sla, Status, Ticket, TicketActivity, TicketFolder
from helpdesk.models.user import Contact, User
from helpdesk.services.events import EventKind, OperationContext
from helpdesk.services.mentions import record_mentions, resolve_mentions
from helpdesk.services.queue import JobQueue
from helpdesk.services.ticket_lifecycle import (
    DispatchEvent,
    LogActivity,
    MessageFacts,
    NotifyAssignee,
    NotifyMentions,
    NotifyNewMessage,
    NotifyTicketCreated,
    SlaTerms,
    StatusRef,
    TicketCatalog,
    TicketState,
    Transition,
    apply_message_created,
    apply_ticket_update,
    prepare_new_ticket,
    ticket_created_effects,
    webhook_events_for_update,
)
from helpdesk.services.webhook_dispatcher import WebhookDispatcher

logger = structlog.get_logger()

STATE_FIELDS = {f.name for f in fields(TicketState)}
# Plain attributes an update may touch without going through the lifecycle
PLAIN_FIELDS = {"subject", "cc_recipients", "email_channel_id", "messaging_channel_id"}

# Reference rows loaded for the old/new sides of a change event
CHANGE_MODELS = {
    EventKind.TICKET_STATUS_CHANGED: (Status, "ticket_status_changed"),
    EventKind.TICKET_PRIORITY_CHANGED: (Priority, "ticket_priority_changed"),
    EventKind.TICKET_ASSIGNED: (User, "ticket_assigned"),
    EventKind.TICKET_SLA_CHANGED: (Sla, "ticket_sla_changed"),
}


def format_ticket_number(fmt: str, prefix: str, number: int, now: datetime) -> str:
    """Expand {prefix}, {number}, {yyyy}, {yy}, {mm} and {dd}."""
    tokens = {
        "{prefix}": prefix,
        "{number}": f"{number:05d}",
        "{yyyy}": f"{now.year:04d}",
        "{yy}": f"{now.year % 100:02d}",
        "{mm}": f"{now.month:02d}",
        "{dd}": f"{now.day:02d}",
    }
    result = fmt or "{prefix}-{number}"
    for token, value in tokens.items():
        result = result.replace(token, value)
    return result


class TicketService:
    def __init__(self, session: Session, queue: JobQueue, dispatcher: WebhookDispatcher | None = None):
        self.session = session
        self.queue = queue
        self.dispatcher = dispatcher or WebhookDispatcher(session, queue)

    # Reference data

    def load_catalog(self, organization_id: uuid.UUID) -> TicketCatalog:
        statuses = self.session.execute(
            select(Status).where(Status.organization_id == organization_id).order_by(Status.sort_order)
        ).scalars().all()
        priorities = self.session.execute(
            select(Priority).where(Priority.organization_id == organization_id)
        ).scalars().all()
        slas = self.session.execute(
            select(Sla).where(Sla.organization_id == organization_id)
        ).scalars().all()
        members = self.session.execute(
            select(User).where(User.organization_id == organization_id)
        ).scalars().all()
        solved = self.session.execute(
            select(TicketFolder).where(
                TicketFolder.organization_id == organization_id,
                TicketFolder.system_type == "solved",
            )
        ).scalars().first()

        return TicketCatalog(
            default_status_id=next((s.id for s in statuses if s.is_default), None),
            default_priority_id=next((p.id for p in priorities if p.is_default), None),
            default_sla_id=next((s.id for s in slas if s.is_default), None),
            solved_folder_id=solved.id if solved else None,
            statuses={s.id: StatusRef(s.name, bool(s.is_closed)) for s in statuses},
            priorities={p.id: p.name for p in priorities},
            slas={s.id: SlaTerms(s.name, s.first_response_hours, s.resolution_hours) for s in slas},
            members={u.id: u.name for u in members},
        )

    def next_ticket_number(self, organization_id: uuid.UUID, now: datetime) -> str:
        """Draw the next number. The settings row stays locked until the ticket commits."""
        org_settings = self.session.execute(
            select(OrganizationSettings)
            .where(OrganizationSettings.organization_id == organization_id)
            .with_for_update()
        ).scalar_one_or_none()
        if org_settings is None:
            org_settings = OrganizationSettings(organization_id=organization_id, next_ticket_number=1)
            self.session.add(org_settings)

        number = org_settings.next_ticket_number or 1
        org_settings.next_ticket_number = number + 1
        return format_ticket_number(
            org_settings.ticket_number_format, org_settings.ticket_prefix or "TKT", number, now,
        )

    # Entry points

    def create_ticket(self, ctx: OperationContext, subject: str, **attributes) -> Ticket:
        now = utcnow()
        ticket = Ticket(organization_id=ctx.organization_id, subject=subject, **attributes)
        catalog = self.load_catalog(ctx.organization_id)

        contact_sla_id = None
        if ticket.contact_id:
            contact = self.session.get(Contact, ticket.contact_id)
            contact_sla_id = contact.sla_id if contact else None

        state = prepare_new_ticket(
            TicketState.from_ticket(ticket), catalog, contact_sla_id,
            lambda: self.next_ticket_number(ctx.organization_id, now), now,
        )
        state.apply_to(ticket)
        self.session.add(ticket)
        self.session.flush()

        transition = Transition(
            state, ticket_created_effects() + (DispatchEvent(EventKind.TICKET_CREATED, current_id=ticket.id),),
        )
        self._log_activities(ctx, ticket, transition.activities)
        self.session.commit()

        logger.info("ticket_created", ticket_id=str(ticket.id), ticket_number=ticket.ticket_number,
                    organization_id=str(ctx.organization_id))
        self.apply_effects(ctx, ticket, transition.effects)
        return ticket

    def update_ticket(self, ctx: OperationContext, ticket: Ticket, **changes) -> Ticket:
        unknown = set(changes) - STATE_FIELDS - PLAIN_FIELDS
        if unknown:
            raise ValueError(f"Cannot update ticket fields: {', '.join(sorted(unknown))}")

        for name in PLAIN_FIELDS & set(changes):
            setattr(ticket, name, changes[name])

        before = TicketState.from_ticket(ticket)
        after = replace(before, **{k: v for k, v in changes.items() if k in STATE_FIELDS})
        transition = apply_ticket_update(before, after, self.load_catalog(ticket.organization_id), ctx, utcnow())

        transition.state.apply_to(ticket)
        self._log_activities(ctx, ticket, transition.activities)
        self.session.commit()

        self.apply_effects(ctx, ticket, transition.effects)
        self.apply_effects(ctx, ticket, webhook_events_for_update(before, transition.state))
        return ticket

    def add_message(
        self,
        ctx: OperationContext,
        ticket: Ticket,
        body: str,
        *,
        type: str = MessageType.REPLY.value,
        is_from_contact: bool = False,
        user_id: uuid.UUID | None = None,
        contact_id: uuid.UUID | None = None,
        **attributes,
    ) -> Message:
        if not is_from_contact and user_id is None:
            user_id = ctx.actor_user_id
        if is_from_contact and contact_id is None:
            contact_id = ticket.contact_id

        message = Message(
            ticket=ticket,
            organization_id=ticket.organization_id,
            type=MessageType(type).value,
            is_from_contact=is_from_contact,
            user_id=None if is_from_contact else user_id,
            contact_id=contact_id if is_from_contact else None,
            body=body or "",
            **attributes,
        )
        self.session.add(message)
        self.session.flush()

        facts = MessageFacts(message.id, message.type, message.is_from_contact, message.user_id, message.body)
        transition = apply_message_created(
            TicketState.from_ticket(ticket), facts, self.load_catalog(ticket.organization_id), utcnow(),
        )
        transition.state.apply_to(ticket)
        # The author is recorded as is: contact replies have no acting user
        self._log_activities(ctx, ticket, transition.activities, actor_fallback=False)
        self.session.commit()

        self.apply_effects(ctx, ticket, transition.effects)
        return message

    # Effects

    def _log_activities(
        self, ctx: OperationContext, ticket: Ticket, activities: list[LogActivity], actor_fallback: bool = True,
    ) -> None:
        for activity in activities:
            user_id = activity.user_id
            if user_id is None and actor_fallback:
                user_id = ctx.actor_user_id
            self.session.add(TicketActivity(
                ticket_id=ticket.id,
                user_id=user_id,
                type=activity.type,
                properties=dict(activity.properties) if activity.properties else None,
            ))

    def apply_effects(self, ctx: OperationContext, ticket: Ticket, effects) -> None:
        for effect in effects:
            if isinstance(effect, LogActivity):
                continue  # Persisted with the ticket
            try:
                self._apply(ctx, ticket, effect)
            except Exception as e:
                logger.error("ticket_effect_failed", effect=effect.__class__.__name__,
                             ticket_id=str(ticket.id), error=str(e))

    def _apply(self, ctx: OperationContext, ticket: Ticket, effect) -> None:
        if isinstance(effect, NotifyTicketCreated):
            self.queue.notification("send_ticket_created_notifications", str(ticket.id))
        elif isinstance(effect, NotifyAssignee):
            self.queue.notification(
                "send_assignment_notification", str(ticket.id),
                str(effect.assigned_by_id) if effect.assigned_by_id else None,
            )
        elif isinstance(effect, NotifyNewMessage):
            self.queue.notification("send_message_notifications", str(effect.message_id))
        elif isinstance(effect, NotifyMentions):
            users = resolve_mentions(self.session, ticket.organization_id, list(effect.handles))
            if users:
                try:
                    record_mentions(self.session, effect.message_id, users)
                    self.session.commit()
                except SQLAlchemyError as e:
                    self.session.rollback()
                    logger.error("message_mentions_record_failed", message_id=str(effect.message_id), error=str(e))
                self.queue.notification(
                    "send_mention_notifications", str(effect.message_id), [str(u.id) for u in users],
                )
        elif isinstance(effect, DispatchEvent):
            self._dispatch(ticket, effect)

    def _dispatch(self, ticket: Ticket, event: DispatchEvent) -> int:
        if event.kind is EventKind.TICKET_CREATED:
            return self.dispatcher.ticket_created(ticket)
        if event.kind in (EventKind.MESSAGE_CREATED, EventKind.REPLY_RECEIVED):
            message = self.session.get(Message, event.current_id)
            if message is None:
                return 0
            if event.kind is EventKind.MESSAGE_CREATED:
                return self.dispatcher.message_created(message)
            return self.dispatcher.reply_received(message)

        model, operation = CHANGE_MODELS[event.kind]
        old = self.session.get(model, event.previous_id) if event.previous_id else None
        new = self.session.get(model, event.current_id) if event.current_id else None
        return getattr(self.dispatcher, operation)(ticket, old, new)
