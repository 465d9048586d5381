from __future__ import annotations

import logging

import pytest

from app.core.errors import InvalidPayload, NotFound, RoleForbidden, TenantMismatch
from app.core.models import Role
from app.core.realtime import can_subscribe, discussion_channel, user_channel
from app.core.side_effects import dispatch_side_effect
from app.forms.dashboard import admin_dashboard, collaborator_dashboard
from app.forms.discussions import discussion_by_id, list_discussions, mark_read, send_message
from app.forms.identity import message_recipients
from app.forms.submissions import create_submission, submit_submission, validate_submission


def test_send_message_publishes_on_both_channels(demo, bus):
    discussion = send_message(demo.admin, demo.technician.id, "  Please visit site 4  ")
    assert discussion.content == "Please visit site 4"

    on_discussion = bus.on_channel(discussion_channel(discussion.id))
    on_user = bus.on_channel(user_channel(demo.technician.id))
    assert [event.event_name for event in on_discussion] == ["message.sent"]
    assert on_user[-1].payload["id"] == discussion.id
    assert on_user[-1].payload["sender"] == {"id": demo.admin.id, "name": demo.admin.name}


def test_discussion_rules(demo, make_company, make_user):
    other = make_company(name="Vandelay")
    outsider = make_user(other, Role.TECHNICIAN, name="Art")
    with pytest.raises(TenantMismatch):
        send_message(demo.admin, outsider.id, "hello")
    with pytest.raises(NotFound):
        send_message(demo.admin, demo.root.id, "hello")
    with pytest.raises(InvalidPayload):
        send_message(demo.admin, demo.admin.id, "note to self")
    with pytest.raises(InvalidPayload):
        send_message(demo.admin, demo.validator.id, "   ")
    with pytest.raises(RoleForbidden):
        send_message(demo.root, demo.admin.id, "hello")

    discussion = send_message(demo.validator, demo.technician.id, "Looks good")
    assert [item.id for item in list_discussions(demo.technician)] == [discussion.id]
    assert list_discussions(demo.admin) == []
    with pytest.raises(NotFound):
        discussion_by_id(demo.admin, discussion.id)

    mark_read(demo.validator, discussion.id)
    assert discussion.read_at is None
    mark_read(demo.technician, discussion.id)
    assert discussion.read_at is not None

    assert {user.id for user in message_recipients(demo.technician)} == {demo.admin.id, demo.validator.id}


def test_channel_authorization(demo):
    discussion = send_message(demo.validator, demo.technician.id, "Ping")
    assert can_subscribe(demo.technician, user_channel(demo.technician.id))
    assert not can_subscribe(demo.validator, user_channel(demo.technician.id))
    assert can_subscribe(demo.validator, discussion_channel(discussion.id))
    assert can_subscribe(demo.technician, discussion_channel(discussion.id))
    assert not can_subscribe(demo.admin, discussion_channel(discussion.id))
    assert not can_subscribe(demo.admin, discussion_channel(424242))
    assert not can_subscribe(demo.admin, "presence-lobby")


def test_side_effect_failures_are_logged_not_raised(app, caplog):
    def explode():
        raise RuntimeError("mail server down")

    with caplog.at_level(logging.ERROR, logger="app.core.side_effects"):
        dispatch_side_effect("explode", explode)
    assert "Side effect explode failed" in caplog.text


def test_dashboards(demo):
    submission = create_submission(demo.technician, demo.template.id, {"site": "A", "visited_on": "2026-10-03", "risk": "low"})
    submit_submission(demo.technician, submission.id)

    stats = admin_dashboard(demo.admin)
    assert stats["collaborators"] == {"total": 2, "active": 2}
    assert stats["templates"] == {"total": 1, "active": 1}
    assert stats["abonnement"]["forms_to_create"] == 9
    assert stats["submissions_by_status"]["submitted"] == 1

    validator_stats = collaborator_dashboard(demo.validator)
    assert validator_stats["pending_validation"] == 1
    assert validator_stats["decided"] == 0

    validate_submission(demo.validator, submission.id)
    technician_stats = collaborator_dashboard(demo.technician)
    assert technician_stats["assignments"] == {"active": 1, "completed": 0}
    assert technician_stats["submissions_by_status"] == {"draft": 0, "submitted": 0, "validated": 1, "refused": 0}
    assert "pending_validation" not in technician_stats
    assert collaborator_dashboard(demo.validator)["decided"] == 1
