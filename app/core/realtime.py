"""Realtime publish/subscribe contract.

Two private channel families exist:

* ``private-user.<user_id>``: only that user may subscribe.
* ``private-discussion.<discussion_id>``: only the discussion's sender or
  recipient may subscribe.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from threading import Lock

from flask import current_app

from app.core.extensions import db
from app.core.models import Discussion
from app.core.side_effects import dispatch_side_effect

logger = logging.getLogger(__name__)

EXTENSION_KEY = "realtime"

USER_CHANNEL_RE = re.compile(r"^private-user\.(\d+)$")
DISCUSSION_CHANNEL_RE = re.compile(r"^private-discussion\.(\d+)$")


def user_channel(user_id: int) -> str:
    return f"private-user.{user_id}"


def discussion_channel(discussion_id: int) -> str:
    return f"private-discussion.{discussion_id}"


def can_subscribe(user, channel_name: str) -> bool:
    match = USER_CHANNEL_RE.match(channel_name or "")
    if match:
        return int(match.group(1)) == user.id
    match = DISCUSSION_CHANNEL_RE.match(channel_name or "")
    if match:
        discussion = db.session.get(Discussion, int(match.group(1)))
        return discussion is not None and discussion.involves(user.id)
    return False


class RealtimeBus:
    def publish(self, channel: str, event_name: str, payload: dict) -> None:
        raise NotImplementedError

    def authorize_channel(self, user, channel_name: str) -> bool:
        return can_subscribe(user, channel_name)


@dataclass
class PublishedEvent:
    channel: str
    event_name: str
    payload: dict


@dataclass
class InMemoryRealtimeBus(RealtimeBus):
    events: list[PublishedEvent] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def publish(self, channel: str, event_name: str, payload: dict) -> None:
        with self._lock:
            self.events.append(PublishedEvent(channel, event_name, payload))
        logger.debug("Published %s on %s", event_name, channel)

    def on_channel(self, channel: str) -> list[PublishedEvent]:
        return [event for event in self.events if event.channel == channel]


def realtime_bus() -> RealtimeBus:
    return current_app.extensions[EXTENSION_KEY]


def broadcast(channel: str, event_name: str, payload: dict) -> None:
    bus = realtime_bus()
    dispatch_side_effect(f"broadcast:{event_name}", bus.publish, channel, event_name, payload)
