"""Notification and audit collaborators.

The engine never sends email or writes audit rows itself. It hands
events to sinks through an ``EventDispatcher`` which runs each delivery
as a background task: a failing sink is logged and otherwise ignored, so
it can never unwind an authorization or activation that already happened.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .hierarchy.models import EntityType, Profile, ProfileStatus, utcnow

logger = logging.getLogger(__name__)


class AuditEvent(BaseModel):
    """Structured audit record for every admission and status change."""

    model_config = ConfigDict(frozen=True)

    actor: str
    action: str
    entity_type: EntityType
    entity_id: str
    old_status: Optional[ProfileStatus] = None
    new_status: Optional[ProfileStatus] = None
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationSink(ABC):
    """Delivers invitation and welcome messages."""

    @abstractmethod
    async def send_invitation(
        self,
        profile: Profile,
        token: str,
        expiry: datetime,
        *,
        email: str | None = None,
    ) -> None: ...

    @abstractmethod
    async def send_welcome(self, profile: Profile) -> None: ...


class AuditSink(ABC):
    """Receives audit events."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None: ...


class LoggingNotificationSink(NotificationSink):
    """Default sink: logs the notification instead of sending it."""

    async def send_invitation(
        self,
        profile: Profile,
        token: str,
        expiry: datetime,
        *,
        email: str | None = None,
    ) -> None:
        # The token itself is never logged
        logger.info(
            "Invitation for profile %s (%s) expires %s",
            profile.id,
            profile.level.value,
            expiry.isoformat(),
            extra={"email": email or ""},
        )

    async def send_welcome(self, profile: Profile) -> None:
        logger.info("Welcome for profile %s", profile.id)


class LoggingAuditSink(AuditSink):
    """Default sink: writes audit events to the ``tieraccess.audit`` logger."""

    def __init__(self, logger_name: str = "tieraccess.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    async def record(self, event: AuditEvent) -> None:
        self._logger.info(
            "%s %s %s/%s %s -> %s",
            event.actor,
            event.action,
            event.entity_type.value,
            event.entity_id,
            event.old_status.value if event.old_status else "-",
            event.new_status.value if event.new_status else "-",
        )


class EventDispatcher:
    """Fire-and-forget delivery to notification and audit sinks.

    Deliveries are scheduled on the running loop and tracked so that
    ``drain()`` can wait for them (tests, graceful shutdown). Failures are
    logged and never retried.
    """

    def __init__(
        self,
        notifications: NotificationSink | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.notifications = notifications or LoggingNotificationSink()
        self.audit = audit or LoggingAuditSink()
        self._pending: set[asyncio.Task] = set()

    def _spawn(self, what: str, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(self._guard(what, coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _guard(what: str, coro: Awaitable[None]) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning("%s delivery failed: %s", what, e)

    def send_invitation(self, profile: Profile, token: str, expiry: datetime, *, email: str | None = None) -> None:
        self._spawn(
            "invitation",
            self.notifications.send_invitation(profile, token, expiry, email=email),
        )

    def send_welcome(self, profile: Profile) -> None:
        self._spawn("welcome", self.notifications.send_welcome(profile))

    def audit_event(self, event: AuditEvent) -> None:
        self._spawn("audit", self.audit.record(event))

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every outstanding delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = [
    "AuditEvent",
    "AuditSink",
    "EventDispatcher",
    "LoggingAuditSink",
    "LoggingNotificationSink",
    "NotificationSink",
]
