"""HTML bodies for ticket notification emails."""

from html import escape

from helpdesk.config import settings


def _e(value) -> str:
    return escape(str(value)) if value is not None else ""


def _name(obj, fallback: str = "") -> str:
    return _e(getattr(obj, "name", None) or fallback)


def _button(url: str | None, label: str, color: str) -> str:
    if not url:
        return ""
    return (
        f'<p style="margin:24px 0"><a href="{_e(url)}" style="background:{_e(color)};color:#ffffff;'
        f'padding:10px 18px;border-radius:6px;text-decoration:none;display:inline-block">{_e(label)}</a></p>'
    )


def _quote(text: str | None) -> str:
    if not text:
        return ""
    body = _e(text).replace("\n", "<br>")
    return f'<blockquote style="border-left:3px solid #e5e7eb;margin:16px 0;padding:8px 16px;color:#374151">{body}</blockquote>'


def _message_body(message) -> str:
    if message is None:
        return ""
    if message.body_html:
        return message.body_html
    return _e(message.body).replace("\n", "<br>")


def _new_ticket(ctx: dict) -> str:
    ticket = ctx["ticket"]
    contact = ctx.get("contact")
    sender = _name(contact, getattr(contact, "email", None) or "a contact")
    return (
        f"<p>Hi {_name(ctx.get('user'))},</p>"
        f"<p>A new ticket <strong>{_e(ticket.ticket_number)}</strong> was created by {sender}.</p>"
        f"{_quote(ctx.get('preview'))}"
        f"{_button(ctx.get('action_url'), 'View ticket', ctx['primary_color'])}"
    )


def _ticket_received(ctx: dict) -> str:
    ticket = ctx["ticket"]
    return (
        f"<p>Hi {_name(ctx.get('contact'), 'there')},</p>"
        f"<p>We received your request <strong>{_e(ticket.subject)}</strong> and will get back to you as soon as possible.</p>"
        f"<p>Your ticket number is <strong>{_e(ticket.ticket_number)}</strong>. "
        f"Reply to this email to add information to your ticket.</p>"
    )


def _contact_reply(ctx: dict) -> str:
    ticket = ctx["ticket"]
    return (
        f"<p>Hi {_name(ctx.get('user'))},</p>"
        f"<p>{_name(ticket.contact, 'The contact')} replied on <strong>{_e(ticket.ticket_number)}</strong>.</p>"
        f"{_quote(ctx.get('preview'))}"
        f"{_button(ctx.get('action_url'), 'View reply', ctx['primary_color'])}"
    )


def _agent_reply(ctx: dict) -> str:
    return f"<div>{_message_body(ctx.get('message'))}</div>"


def _internal_note(ctx: dict) -> str:
    ticket = ctx["ticket"]
    message = ctx.get("message")
    return (
        f"<p>Hi {_name(ctx.get('user'))},</p>"
        f"<p>{_name(ctx.get('author'), 'A colleague')} added an internal note on "
        f"<strong>{_e(ticket.ticket_number)}</strong>.</p>"
        f"{_quote(message.body if message else None)}"
        f"{_button(ctx.get('action_url'), 'View note', ctx['primary_color'])}"
    )


def _assigned(ctx: dict) -> str:
    ticket = ctx["ticket"]
    by = ctx.get("assigned_by")
    by_text = f" by {_name(by)}" if by else ""
    return (
        f"<p>Hi {_name(ctx.get('user'))},</p>"
        f"<p>Ticket <strong>{_e(ticket.ticket_number)}</strong> ({_e(ticket.subject)}) was assigned to you{by_text}.</p>"
        f"{_button(ctx.get('action_url'), 'View ticket', ctx['primary_color'])}"
    )


def _mention(ctx: dict) -> str:
    ticket = ctx["ticket"]
    message = ctx.get("message")
    return (
        f"<p>Hi {_name(ctx.get('user'))},</p>"
        f"<p>{_name(ctx.get('mentioned_by'), 'Someone')} mentioned you on "
        f"<strong>{_e(ticket.ticket_number)}</strong>.</p>"
        f"{_quote(message.body if message else None)}"
        f"{_button(ctx.get('action_url'), 'View message', ctx['primary_color'])}"
    )


def _sla_warning(ctx: dict) -> str:
    ticket = ctx["ticket"]
    deadline = ctx.get("deadline")
    deadline_text = f" (due {deadline.strftime('%Y-%m-%d %H:%M')} UTC)" if deadline else ""
    return (
        f"<p>Hi {_name(ctx.get('user'))},</p>"
        f"<p>The {_e(ctx.get('label'))} deadline for <strong>{_e(ticket.ticket_number)}</strong> "
        f"({_e(ticket.subject)}) is in {_e(ctx.get('time_remaining'))}{deadline_text}.</p>"
        f"{_button(ctx.get('action_url'), 'View ticket', ctx['primary_color'])}"
    )


VIEWS = {
    "new-ticket-internal": _new_ticket,
    "ticket-received": _ticket_received,
    "contact-reply-internal": _contact_reply,
    "agent-reply": _agent_reply,
    "internal-note": _internal_note,
    "assigned": _assigned,
    "mention": _mention,
    "sla-breach-warning": _sla_warning,
}


def _layout(content: str, ctx: dict) -> str:
    color = ctx["primary_color"]
    logo = ctx.get("email_logo_path")
    header = (
        f'<img src="{_e(logo)}" alt="{_e(ctx.get("brand_name"))}" style="max-height:40px">'
        if logo else f'<strong style="color:{_e(color)}">{_e(ctx.get("brand_name"))}</strong>'
    )
    ticket = ctx["ticket"]
    return (
        "<!DOCTYPE html><html><body style=\"font-family:Arial,sans-serif;background:#f9fafb;margin:0;padding:24px\">"
        "<div style=\"max-width:600px;margin:0 auto;background:#ffffff;border-radius:8px;padding:24px\">"
        f"<div style=\"border-bottom:2px solid {_e(color)};padding-bottom:12px;margin-bottom:16px\">{header}</div>"
        f"{content}"
        f"<p style=\"color:#9ca3af;font-size:12px;margin-top:32px\">Ticket {_e(ticket.ticket_number)}</p>"
        "</div></body></html>"
    )


def render(view: str, context: dict) -> str:
    """Render a notification view. The context needs ``ticket`` and ``primary_color``."""
    try:
        body = VIEWS[view]
    except KeyError:
        raise ValueError(f"Unknown email view: {view}")
    context = {"brand_name": settings.brand_name, **context}
    return _layout(body(context), context)
