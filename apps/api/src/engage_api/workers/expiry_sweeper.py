"""Periodic housekeeping for overdue coupons and group instances."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.core.clock import utcnow
from engage_api.core.settings import settings
from engage_api.services.engagement import CouponLedger, GroupBuyCoordinator
from engage_api.services.notifications import NotificationDispatcher

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class ExpirySweepWorker:
    """Persists expiry that reads already derive lazily; never reverses a terminal state."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        notifier: NotificationDispatcher | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self.interval_seconds = interval_seconds or settings.expiry_sweep_interval_seconds
        self.batch_size = batch_size or settings.expiry_sweep_batch_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Expiry sweep worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self.batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Expiry sweep worker stopped")

    async def run_once(self, *, now: datetime | None = None) -> Dict[str, int]:
        now = now or utcnow()
        session = await self._ensure_session()
        async with session as managed_session:
            coupons = await CouponLedger(managed_session).expire_overdue(now=now, limit=self.batch_size)
            groups = await GroupBuyCoordinator(managed_session, notifier=self._notifier).fail_expired_instances(
                now=now, limit=self.batch_size
            )

        summary = {"expiredCoupons": coupons, "failedGroups": groups}
        logger.bind(worker="expiry-sweep").info("Expiry sweep completed", **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover
                logger.exception("Expiry sweep iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
