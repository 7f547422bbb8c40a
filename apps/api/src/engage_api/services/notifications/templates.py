"""Message templates for engagement pushes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from engage_api.core.clock import as_utc


@dataclass
class RenderedTemplate:
    subject: str
    body: str


def _format_time(value: Any) -> str:
    if isinstance(value, datetime):
        return as_utc(value).strftime("%Y-%m-%d %H:%M UTC")  # type: ignore[union-attr]
    return str(value) if value is not None else "-"


def _link(frontend_url: str, path: str) -> str:
    base = (frontend_url or "").rstrip("/")
    return f"{base}{path}" if base else path


def render_coupon_claimed(context: Mapping[str, Any], *, frontend_url: str) -> RenderedTemplate:
    return RenderedTemplate(
        subject=f"领取成功：{context['activity_title']}",
        body="\n".join(
            [
                f"券码：{context['code']}",
                f"有效期至：{_format_time(context.get('expires_at'))}",
                "您领取到的卡券已经收藏在您个人中心“我的”收藏夹里，请在规定时间内及时使用！",
                _link(frontend_url, "/my/coupons"),
            ]
        ),
    )


def render_redemption_succeeded(context: Mapping[str, Any], *, frontend_url: str) -> RenderedTemplate:
    store_name = context.get("store_name") or "门店"
    return RenderedTemplate(
        subject=f"核销成功：{context['activity_title']}",
        body="\n".join(
            [
                f"券码 {context['code']} 已于 {_format_time(context.get('verified_at'))} 在{store_name}核销。",
                _link(frontend_url, "/my/redeems"),
            ]
        ),
    )


def render_group_succeeded(context: Mapping[str, Any], *, frontend_url: str) -> RenderedTemplate:
    return RenderedTemplate(
        subject=f"拼团成功：{context['activity_title']}",
        body="\n".join(
            [
                f"您的券码：{context['code']}",
                f"有效期至：{_format_time(context.get('expires_at'))}",
                _link(frontend_url, "/my/coupons"),
            ]
        ),
    )


def render_group_failed(context: Mapping[str, Any], *, frontend_url: str) -> RenderedTemplate:
    return RenderedTemplate(
        subject=f"拼团未成功：{context['activity_title']}",
        body="\n".join(
            [
                "很遗憾，团购在规定时间内未达到成团人数，您可以重新发起团购。",
                _link(frontend_url, f"/activities/{context['activity_id']}"),
            ]
        ),
    )


TEMPLATES: dict[str, Callable[..., RenderedTemplate]] = {
    "coupon_claimed": render_coupon_claimed,
    "redemption_succeeded": render_redemption_succeeded,
    "group_succeeded": render_group_succeeded,
    "group_failed": render_group_failed,
}


def render(category: str, context: Mapping[str, Any], *, frontend_url: str) -> RenderedTemplate:
    try:
        renderer = TEMPLATES[category]
    except KeyError as exc:
        raise ValueError(f"Unknown notification category: {category}") from exc
    return renderer(context, frontend_url=frontend_url)
