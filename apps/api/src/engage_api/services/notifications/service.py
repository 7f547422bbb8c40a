"""Delivery of engagement pushes and their audit rows."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.core.clock import utcnow
from engage_api.core.settings import Settings, get_settings
from engage_api.models.notification import Notification, NotificationStatusEnum
from engage_api.observability.engagement import get_engagement_store

from .backend import PushBackend
from .templates import render

# Recent sends kept in memory for inspection; the notifications table is the audit trail.
SENT_EVENT_HISTORY = 200


class NotificationCategory(str, Enum):
    COUPON_CLAIMED = "coupon_claimed"
    REDEMPTION_SUCCEEDED = "redemption_succeeded"
    GROUP_SUCCEEDED = "group_succeeded"
    GROUP_FAILED = "group_failed"


@dataclass(slots=True)
class EngagementEvent:
    """A push owed to one customer after a committed state change."""

    category: NotificationCategory
    recipient: str
    user_id: UUID | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    body: str
    event_type: str
    metadata: dict[str, Any]


class NotificationService:
    """Render, send and record pushes; delivery failures never propagate."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        backend: Optional[PushBackend] = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._backend = backend
        self._settings = settings or get_settings()
        self._events: deque[NotificationEvent] = deque(maxlen=SENT_EVENT_HISTORY)

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Expose events (useful for tests when using in-memory backend)."""
        return list(self._events)

    async def deliver(self, event: EngagementEvent) -> NotificationStatusEnum | None:
        if self._backend is None:
            logger.debug("Push backend not configured; skipping notification", category=event.category.value)
            return None
        if event.category.value in self._settings.notification_muted_categories:
            logger.debug("Notification category muted", category=event.category.value)
            return None

        template = render(event.category.value, event.context, frontend_url=self._settings.frontend_url)
        metadata = {key: str(value) for key, value in event.context.items() if value is not None}

        async with self._session_factory() as session:
            record = Notification(
                user_id=event.user_id,
                recipient=event.recipient,
                category=event.category.value,
                status=NotificationStatusEnum.PENDING,
                subject=template.subject,
                body=template.body,
                provider=getattr(self._backend, "provider", None),
                metadata_json=metadata,
            )
            session.add(record)
            await session.commit()

            try:
                await self._backend.send_push(
                    event.recipient,
                    template.subject,
                    template.body,
                    metadata=metadata,
                )
            except Exception as exc:
                logger.exception(
                    "Notification delivery failed",
                    category=event.category.value,
                    recipient=event.recipient,
                    error=str(exc),
                )
                status = NotificationStatusEnum.FAILED
                values: dict[str, Any] = {"status": status, "error": str(exc)[:2000]}
            else:
                status = NotificationStatusEnum.SENT
                values = {"status": status, "sent_at": utcnow()}
                self._events.append(
                    NotificationEvent(
                        recipient=event.recipient,
                        subject=template.subject,
                        body=template.body,
                        event_type=event.category.value,
                        metadata=metadata,
                    )
                )

            await session.execute(
                update(Notification)
                .where(Notification.id == record.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        get_engagement_store().record_notification(status.value)
        logger.info(
            "Notification processed",
            category=event.category.value,
            recipient=event.recipient,
            status=status.value,
        )
        return status


class NotificationDispatcher:
    """Schedule deliveries in the background after the triggering commit."""

    def __init__(self, service: NotificationService | None) -> None:
        self._service = service
        self._tasks: set[asyncio.Task] = set()

    @property
    def service(self) -> NotificationService | None:
        return self._service

    def dispatch(self, event: EngagementEvent) -> None:
        if self._service is None:
            return
        task = asyncio.create_task(self._run(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def dispatch_many(self, events: list[EngagementEvent]) -> None:
        for event in events:
            self.dispatch(event)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, event: EngagementEvent) -> None:
        assert self._service is not None
        try:
            await self._service.deliver(event)
        except Exception as exc:
            # Audit row bookkeeping failed; the push itself must not affect the caller.
            get_engagement_store().record_notification("error")
            logger.exception(
                "Notification dispatch crashed",
                category=event.category.value,
                recipient=event.recipient,
                error=str(exc),
            )
