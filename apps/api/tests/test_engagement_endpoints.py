from __future__ import annotations

from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from engage_api.core.settings import settings
from engage_api.models.activity import ActivityTypeEnum


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_claim_list_and_mark_read(app_with_db, factory) -> None:
    app, _ = app_with_db
    activity = await factory.activity(per_user_limit=1)

    async with _client(app) as client:
        response = await client.post("/api/v1/coupons", json={"activityId": str(activity.id), "userId": "U-line-0001"})
        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 0
        assert body["message"].startswith("您领取到的卡券已经收藏在您个人中心")
        coupon = body["data"]
        assert coupon["status"] == "active"
        assert coupon["activityTitle"] == activity.title
        assert len(coupon["code"]) == 8

        again = await client.post("/api/v1/coupons", json={"activityId": str(activity.id), "userId": "U-line-0001"})
        assert again.status_code == 409
        assert again.json()["code"] == 4001

        listed = await client.get("/api/v1/users/U-line-0001/coupons", params={"status": "active"})
        assert [item["id"] for item in listed.json()["data"]] == [coupon["id"]]

        marked = await client.post("/api/v1/users/U-line-0001/coupons/mark-read")
        assert marked.json()["data"] == {"updated": 1}

        counts = await client.get("/api/v1/users/U-line-0001/coupon-counts")
        assert counts.json()["data"] == {"active": 1, "used": 0, "expired": 0, "unread": 0}

        stranger = await client.get("/api/v1/users/U-nobody/coupons")
        assert stranger.status_code == 200
        assert stranger.json()["data"] == []


@pytest.mark.asyncio
async def test_claim_errors_use_the_envelope(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.post("/api/v1/coupons", json={"activityId": str(uuid4()), "userId": "U-line-0002"})
        invalid = await client.post("/api/v1/coupons", json={"userId": "U-line-0002"})

    assert missing.status_code == 404
    assert missing.json() == {"code": 1002, "message": "活动不存在", "data": None}
    assert invalid.status_code == 400
    payload = invalid.json()
    assert payload["code"] == 1001
    assert "body.activityId" in payload["data"]["fields"]


@pytest.mark.asyncio
async def test_scan_manual_and_preview_flow(app_with_db, factory) -> None:
    app, _ = app_with_db
    store = await factory.store()
    staff = await factory.staff(store, line_user_id="S-line-staff-01")
    activity = await factory.activity(per_user_limit=2, stores=(store,))

    async with _client(app) as client:
        first = (await client.post("/api/v1/coupons", json={"activityId": str(activity.id), "userId": "U-eat"})).json()
        second = (await client.post("/api/v1/coupons", json={"activityId": str(activity.id), "userId": "U-eat"})).json()

        preview = await client.get(f"/api/v1/redeem/{first['data']['code']}/preview")
        assert preview.json()["data"]["redeemable"] is True

        forbidden = await client.get(
            f"/api/v1/redeem/{first['data']['code']}",
            params={"staff_line_id": "U-eat", "store_id": str(store.id)},
        )
        assert forbidden.status_code == 403
        assert forbidden.json()["message"] == "您未经品牌授权，无法核销！"

        scanned = await client.get(
            f"/api/v1/redeem/{first['data']['code']}",
            params={"staff_line_id": staff.line_user_id, "store_id": str(store.id)},
        )
        assert scanned.status_code == 200
        assert scanned.json()["message"] == "扫码核销成功！"
        assert scanned.json()["data"]["redemptionType"] == "qr_scan"
        assert scanned.json()["data"]["storeName"] == store.name

        replay = await client.get(
            f"/api/v1/redeem/{first['data']['code']}",
            params={"staff_line_id": staff.line_user_id, "store_id": str(store.id)},
        )
        assert replay.status_code == 409
        assert replay.json()["code"] == 2002

        manual = await client.post(
            "/api/v1/verify",
            json={
                "code": second["data"]["code"],
                "storeId": str(store.id),
                "lineUserId": staff.line_user_id,
                "staffId": str(staff.id),
            },
        )
        assert manual.status_code == 200
        assert manual.json()["message"] == "手动核销成功！券码已使用。"

        history = await client.get("/api/v1/users/U-eat/redeems")
        assert len(history.json()["data"]) == 2


@pytest.mark.asyncio
async def test_admin_routes_require_api_key(app_with_db, factory) -> None:
    app, _ = app_with_db
    store = await factory.store()
    other = await factory.store(name="Asok")
    staff = await factory.staff(store)
    activity = await factory.activity()

    previous_key = settings.admin_api_key
    settings.admin_api_key = "admin-secret"
    headers = {"X-API-Key": "admin-secret"}
    try:
        async with _client(app) as client:
            claimed = (
                await client.post("/api/v1/coupons", json={"activityId": str(activity.id), "userId": "U-admin"})
            ).json()
            redeemed = (
                await client.get(
                    f"/api/v1/redeem/{claimed['data']['code']}",
                    params={"staff_line_id": staff.line_user_id, "store_id": str(store.id)},
                )
            ).json()

            unauthorized = await client.get("/api/v1/admin/redeems")
            assert unauthorized.status_code == 401

            listed = await client.get("/api/v1/admin/redeems", params={"storeId": str(store.id)}, headers=headers)
            assert [item["id"] for item in listed.json()["data"]] == [redeemed["data"]["id"]]

            stats = await client.get("/api/v1/admin/stats/redemptions", headers=headers)
            assert stats.json()["data"]["summary"]["total"] == 1
            assert stats.json()["data"]["byStore"][0]["name"] == store.name

            canceled = await client.post(
                f"/api/v1/admin/redeems/{redeemed['data']['id']}/cancel",
                json={"reason": "staff mistake"},
                headers=headers,
            )
            assert canceled.json()["message"] == "核销记录已撤销"
            assert canceled.json()["data"]["status"] == "canceled"

            mapped = await client.put(
                f"/api/v1/admin/activities/{activity.id}/stores",
                json={"storeIds": [str(other.id)]},
                headers=headers,
            )
            assert [item["name"] for item in mapped.json()["data"]] == ["Asok"]
            fetched = await client.get(f"/api/v1/admin/activities/{activity.id}/stores", headers=headers)
            assert [item["id"] for item in fetched.json()["data"]] == [str(other.id)]

            sweep = await client.post("/api/v1/admin/maintenance/expiry-sweep", headers=headers)
            assert sweep.json()["data"] == {"expiredCoupons": 0, "failedGroups": 0}
    finally:
        settings.admin_api_key = previous_key


@pytest.mark.asyncio
async def test_group_buy_endpoints(app_with_db, factory) -> None:
    app, _ = app_with_db
    activity = await factory.group_activity(n_required=2)

    async with _client(app) as client:
        config = await client.get(f"/api/v1/activities/{activity.id}/group-config")
        assert config.json()["data"]["nRequired"] == 2

        created = await client.post(
            "/api/v1/group-buying/instances",
            json={"activityId": str(activity.id), "userId": "U-leader"},
        )
        assert created.json()["message"] == "团购创建成功！"
        instance = created.json()["data"]
        assert instance["memberCount"] == 1
        assert instance["remainingSlots"] == 1

        joined = await client.post(
            f"/api/v1/group-buying/instances/{instance['id']}/join",
            json={"userId": "U-joiner"},
        )
        assert joined.status_code == 200
        data = joined.json()["data"]
        assert data["completed"] is True
        assert data["instance"]["derivedStatus"] == "success"
        assert data["coupon"] is not None
        assert data["coupon"]["groupInstanceId"] == instance["id"]

        duplicate = await client.post(
            f"/api/v1/group-buying/instances/{instance['id']}/join",
            json={"userId": "U-joiner"},
        )
        assert duplicate.status_code == 409

        fetched = await client.get(f"/api/v1/group-buying/instances/{instance['id']}")
        assert len(fetched.json()["data"]["members"]) == 2

        listed = await client.get(f"/api/v1/activities/{activity.id}/group-instances")
        assert [item["id"] for item in listed.json()["data"]] == [instance["id"]]

        leader_coupons = await client.get("/api/v1/users/U-leader/coupons")
        assert len(leader_coupons.json()["data"]) == 1


@pytest.mark.asyncio
async def test_nearby_stores_and_presale_endpoints(app_with_db, factory) -> None:
    app, _ = app_with_db
    siam = await factory.store(name="Siam", latitude=13.7456, longitude=100.5347)
    await factory.store(name="Nimman", latitude=18.7961, longitude=98.9680)
    coupon_activity = await factory.activity()
    presale = await factory.activity(type=ActivityTypeEnum.PRESALE, stock_total=5, title="Durian Presale")

    async with _client(app) as client:
        nearby = await client.get(
            f"/api/v1/activities/{coupon_activity.id}/nearby-stores",
            params={"lat": 13.7563, "lng": 100.5018, "limit": 1},
        )
        stores = nearby.json()["data"]
        assert [item["id"] for item in stores] == [str(siam.id)]
        assert stores[0]["distanceKm"] > 0
        assert stores[0]["mapsUrl"].startswith("https://www.google.com/maps/dir/")

        bad_limit = await client.get(f"/api/v1/activities/{coupon_activity.id}/nearby-stores", params={"limit": 0})
        assert bad_limit.status_code == 400

        reserved = await client.post(
            "/api/v1/presale/reservations",
            json={"activityId": str(presale.id), "userId": "U-durian", "qty": 2},
        )
        assert reserved.json()["data"]["qty"] == 2
        again = await client.post(
            "/api/v1/presale/reservations",
            json={"activityId": str(presale.id), "userId": "U-durian"},
        )
        assert again.status_code == 409
        assert again.json()["code"] == 2004

        mine = await client.get("/api/v1/users/U-durian/reservations")
        assert len(mine.json()["data"]) == 1
