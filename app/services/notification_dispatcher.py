from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)
__all__ = [
    'LogNotificationDispatcher',
    'NotificationDispatcher',
    'ScheduleChangeEvent',
    'ScheduleEventType',
    'get_notification_dispatcher',
    'notify_schedule_change',
    'set_notification_dispatcher',
]


class ScheduleEventType(str, Enum):
    SCHEDULE_CREATED = 'SCHEDULE_CREATED'
    SCHEDULE_UPDATED = 'SCHEDULE_UPDATED'
    SESSIONS_ADDED = 'SESSIONS_ADDED'
    SESSION_UPDATED = 'SESSION_UPDATED'
    EXCEPTION_APPLIED = 'EXCEPTION_APPLIED'
    MAKEUP_CREATED = 'MAKEUP_CREATED'
    LEAVE_APPROVED = 'LEAVE_APPROVED'
    COURSE_DROPPED = 'COURSE_DROPPED'


class ScheduleChangeEvent(BaseModel):
    event_type: str
    schedule_id: int
    entity_type: str
    entity_id: int | None = None
    actor_id: int | None = None
    description: str
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationDispatcher:
    def dispatch(self, event: ScheduleChangeEvent) -> None:
        raise NotImplementedError


class LogNotificationDispatcher(NotificationDispatcher):
    def dispatch(self, event: ScheduleChangeEvent) -> None:
        logger.info(
            'schedule_change event=%s schedule_id=%s entity=%s:%s actor_id=%s description=%s',
            event.event_type,
            event.schedule_id,
            event.entity_type,
            event.entity_id,
            event.actor_id,
            event.description,
        )


_dispatcher: NotificationDispatcher = LogNotificationDispatcher()


def set_notification_dispatcher(dispatcher: NotificationDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_notification_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def notify_schedule_change(
    event_type: ScheduleEventType | str,
    *,
    schedule_id: int,
    entity_type: str,
    entity_id: int | None = None,
    actor_id: int | None = None,
    description: str,
    payload: dict[str, Any] | None = None,
) -> bool:
    """Hand a change description to the dispatcher; returns False when delivery failed.

    Called after the scheduling change has been committed, so a failing
    dispatcher is logged and otherwise ignored.
    """
    event = ScheduleChangeEvent(
        event_type=event_type.value if isinstance(event_type, ScheduleEventType) else str(event_type),
        schedule_id=schedule_id,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        description=description,
        payload=payload or {},
    )
    try:
        _dispatcher.dispatch(event)
    except Exception:
        logger.exception('schedule_change_dispatch_failed event=%s schedule_id=%s', event.event_type, schedule_id)
        return False
    return True
