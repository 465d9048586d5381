from __future__ import annotations

import logging

from sqlalchemy import or_

from app.core.errors import InvalidPayload, NotFound
from app.core.extensions import db
from app.core.models import Discussion, User, utcnow
from app.core.permissions import Operation, authorize
from app.core.realtime import broadcast, discussion_channel, user_channel
from app.core.utils import fetch, require_text, unit_of_work

logger = logging.getLogger(__name__)

MESSAGE_SENT = "message.sent"


def send_message(actor: User, recipient_id: int, content: str) -> Discussion:
    authorize(actor, Operation.DISCUSSION_SEND)
    recipient = fetch(User, recipient_id, "Recipient")
    authorize(actor, Operation.DISCUSSION_SEND, recipient)
    if recipient.company_id != actor.company_id:
        raise NotFound("Recipient not found", id=recipient_id)
    if recipient.id == actor.id:
        raise InvalidPayload("You cannot message yourself", field="recipient_id")
    text = require_text({"content": content}, "content", max_length=10_000)

    with unit_of_work():
        discussion = Discussion(sender_id=actor.id, recipient_id=recipient.id, content=text)
        db.session.add(discussion)

    payload = discussion.to_dict()
    broadcast(discussion_channel(discussion.id), MESSAGE_SENT, payload)
    broadcast(user_channel(recipient.id), MESSAGE_SENT, payload)
    logger.info("Discussion discussion_id=%s from user_id=%s to user_id=%s", discussion.id, actor.id, recipient.id)
    return discussion


def list_discussions(actor: User) -> list[Discussion]:
    authorize(actor, Operation.DISCUSSION_LIST)
    return (
        Discussion.query.filter(or_(Discussion.sender_id == actor.id, Discussion.recipient_id == actor.id))
        .order_by(Discussion.created_at.desc(), Discussion.id.desc())
        .all()
    )


def discussion_by_id(actor: User, discussion_id: int) -> Discussion:
    authorize(actor, Operation.DISCUSSION_LIST)
    discussion = fetch(Discussion, discussion_id, "Discussion")
    if not discussion.involves(actor.id):
        raise NotFound("Discussion not found", id=discussion_id)
    return discussion


def mark_read(actor: User, discussion_id: int) -> Discussion:
    authorize(actor, Operation.DISCUSSION_READ)
    discussion = fetch(Discussion, discussion_id, "Discussion")
    # Only the recipient reads a message; the sender gets a no-op.
    if not discussion.involves(actor.id):
        raise NotFound("Discussion not found", id=discussion_id)
    if discussion.recipient_id == actor.id and discussion.read_at is None:
        with unit_of_work():
            discussion.read_at = utcnow()
    return discussion
