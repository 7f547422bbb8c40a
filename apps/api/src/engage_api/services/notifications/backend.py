"""Push backends for LINE notifications."""

from __future__ import annotations

from typing import Optional, Protocol

import httpx

from engage_api.core.settings import Settings


class PushBackend(Protocol):
    """Protocol for push notification connectors."""

    provider: str

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        ...


class LinePushBackend:
    """Send text pushes through the LINE Messaging API."""

    provider = "line"

    def __init__(
        self,
        *,
        access_token: str,
        base_url: str = "https://api.line.me/v2/bot",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._access_token = access_token
        self._endpoint = f"{base_url.rstrip('/')}/message/push"
        self._timeout = timeout_seconds
        self._http_client = http_client

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        payload = {
            "to": recipient,
            "messages": [{"type": "text", "text": f"{title}\n\n{body}"}],
        }
        headers = {"Authorization": f"Bearer {self._access_token}"}

        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout)
            close_client = True

        try:
            response = await client.post(self._endpoint, json=payload, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        finally:
            if close_client:
                await client.aclose()


class InMemoryPushBackend:
    """In-memory push dispatcher for tests and dry runs."""

    provider = "memory"

    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.sent_messages: list[dict[str, object]] = []
        self._fail_with = fail_with

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.sent_messages.append(
            {
                "recipient": recipient,
                "title": title,
                "body": body,
                "metadata": metadata or {},
            }
        )


def build_push_backend(settings: Settings) -> PushBackend | None:
    if not settings.line_channel_access_token:
        return None
    return LinePushBackend(
        access_token=settings.line_channel_access_token,
        base_url=settings.line_api_base_url,
        timeout_seconds=settings.line_push_timeout_seconds,
    )
