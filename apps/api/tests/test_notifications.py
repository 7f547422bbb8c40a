from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import select

from engage_api.core.settings import Settings
from engage_api.models.notification import Notification, NotificationStatusEnum
from engage_api.observability.engagement import get_engagement_store
from engage_api.services.engagement import CouponLedger
from engage_api.services.notifications import (
    EngagementEvent,
    InMemoryPushBackend,
    LinePushBackend,
    NotificationCategory,
    NotificationDispatcher,
    NotificationService,
)
from engage_api.services.notifications import service as notification_service
from engage_api.services.notifications.templates import render


def _claimed_event(recipient: str = "U1234567890") -> EngagementEvent:
    return EngagementEvent(
        category=NotificationCategory.COUPON_CLAIMED,
        recipient=recipient,
        context={
            "activity_title": "Songkran Coupon",
            "code": "AB12CD34",
            "expires_at": datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc),
        },
    )


@pytest.mark.asyncio
async def test_line_backend_posts_push_message() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        backend = LinePushBackend(access_token="line-token", base_url="https://line.test/v2/bot/", http_client=client)
        await backend.send_push("U42", "领取成功", "券码：AB12CD34")

    assert captured["url"] == "https://line.test/v2/bot/message/push"
    assert captured["auth"] == "Bearer line-token"
    assert captured["body"] == {
        "to": "U42",
        "messages": [{"type": "text", "text": "领取成功\n\n券码：AB12CD34"}],
    }


@pytest.mark.asyncio
async def test_line_backend_raises_on_error_status() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"message": "bad"}))
    async with httpx.AsyncClient(transport=transport) as client:
        backend = LinePushBackend(access_token="line-token", http_client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await backend.send_push("U42", "t", "b")


@pytest.mark.asyncio
async def test_deliver_records_sent_notification(session_factory) -> None:
    backend = InMemoryPushBackend()
    service = NotificationService(session_factory, backend)

    status = await service.deliver(_claimed_event())

    assert status == NotificationStatusEnum.SENT
    assert backend.sent_messages[0]["recipient"] == "U1234567890"
    assert "AB12CD34" in backend.sent_messages[0]["body"]
    assert len(service.sent_events) == 1
    async with session_factory() as session:
        record = (await session.execute(select(Notification))).scalar_one()
        assert record.status == NotificationStatusEnum.SENT
        assert record.provider == "memory"
        assert record.sent_at is not None
        assert record.metadata_json["code"] == "AB12CD34"
    assert get_engagement_store().snapshot().notifications == {"sent": 1}


@pytest.mark.asyncio
async def test_delivery_failure_is_recorded_not_raised(session_factory) -> None:
    service = NotificationService(session_factory, InMemoryPushBackend(fail_with=RuntimeError("line down")))

    status = await service.deliver(_claimed_event())

    assert status == NotificationStatusEnum.FAILED
    assert service.sent_events == []
    async with session_factory() as session:
        record = (await session.execute(select(Notification))).scalar_one()
        assert record.status == NotificationStatusEnum.FAILED
        assert record.error == "line down"
    assert get_engagement_store().snapshot().notifications == {"failed": 1}


@pytest.mark.asyncio
async def test_sent_event_history_keeps_most_recent(session_factory, monkeypatch) -> None:
    monkeypatch.setattr(notification_service, "SENT_EVENT_HISTORY", 3)
    service = NotificationService(session_factory, InMemoryPushBackend())

    for index in range(5):
        await service.deliver(_claimed_event(recipient=f"U{index}"))

    assert [event.recipient for event in service.sent_events] == ["U2", "U3", "U4"]
    async with session_factory() as session:
        records = (await session.execute(select(Notification))).scalars().all()
        assert len(records) == 5


@pytest.mark.asyncio
async def test_muted_categories_and_missing_backend_skip_delivery(session_factory) -> None:
    muted = NotificationService(
        session_factory,
        InMemoryPushBackend(),
        settings=Settings(notification_muted_categories="coupon_claimed, group_failed"),
    )
    assert await muted.deliver(_claimed_event()) is None
    assert await NotificationService(session_factory, None).deliver(_claimed_event()) is None

    async with session_factory() as session:
        assert (await session.execute(select(Notification))).scalars().all() == []


@pytest.mark.asyncio
async def test_dispatcher_delivers_after_claim_commits(session_factory, factory) -> None:
    user = await factory.user(line_user_id="U-claimer-0001")
    activity = await factory.activity()
    backend = InMemoryPushBackend()
    dispatcher = NotificationDispatcher(NotificationService(session_factory, backend))

    async with session_factory() as session:
        coupon = await CouponLedger(session, notifier=dispatcher).claim(activity.id, user.id)
    await dispatcher.drain()

    assert len(backend.sent_messages) == 1
    message = backend.sent_messages[0]
    assert message["recipient"] == "U-claimer-0001"
    assert message["title"] == f"领取成功：{activity.title}"
    assert coupon.code in message["body"]


@pytest.mark.asyncio
async def test_dispatcher_without_service_is_a_no_op() -> None:
    dispatcher = NotificationDispatcher(None)
    dispatcher.dispatch(_claimed_event())
    await dispatcher.drain()


def test_group_failed_template_links_back_to_activity() -> None:
    rendered = render(
        "group_failed",
        {"activity_title": "Mango Group Buy", "activity_id": "abc"},
        frontend_url="https://liff.example.com/",
    )
    assert rendered.subject == "拼团未成功：Mango Group Buy"
    assert rendered.body.endswith("https://liff.example.com/activities/abc")

    with pytest.raises(ValueError):
        render("unknown", {}, frontend_url="")
