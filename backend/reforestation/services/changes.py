"""Post-commit change events and the sinks that receive them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

logger = logging.getLogger(__name__)

# purpose: fire-and-forget hand-off of committed mutations to audit and notification collaborators
# status: active


@dataclass(frozen=True)
class ChangeEvent:
    action: str
    target_type: str
    target_uid: str
    actor_id: int | None
    project_id: int | None = None
    changed_fields: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)
    notify_user_ids: tuple[int, ...] = ()
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ChangeSink(Protocol):
    def record_change(self, event: ChangeEvent) -> None: ...


class NullChangeSink:
    """Sink that discards events."""

    def record_change(self, event: ChangeEvent) -> None:
        return None


class RecordingChangeSink:
    """Sink that keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[ChangeEvent] = []

    def record_change(self, event: ChangeEvent) -> None:
        self.events.append(event)


class CompositeChangeSink:
    """Fan an event out to several sinks, isolating each one's failure."""

    def __init__(self, sinks: Iterable[ChangeSink]) -> None:
        self.sinks = list(sinks)

    def record_change(self, event: ChangeEvent) -> None:
        for sink in self.sinks:
            emit_change(sink, event)


class NotificationDispatcher:
    """Queue a notification task for every user named on the event."""

    def record_change(self, event: ChangeEvent) -> None:
        if not event.notify_user_ids:
            return
        from ..tasks import enqueue_change_notification

        for user_id in event.notify_user_ids:
            enqueue_change_notification(
                user_id,
                action=event.action,
                target_uid=event.target_uid,
                details=event.details,
            )


def emit_change(sink: ChangeSink | None, event: ChangeEvent) -> None:
    """Deliver ``event`` to ``sink``; failures are logged and swallowed."""

    if sink is None:
        return
    try:
        sink.record_change(event)
    except Exception:
        logger.exception(
            "change sink %s failed for %s on %s",
            type(sink).__name__,
            event.action,
            event.target_uid,
        )
