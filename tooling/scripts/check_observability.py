#!/usr/bin/env python3
"""Quick health check for the engagement API's readiness and counters.

Usage:
    python tooling/scripts/check_observability.py \
        --base-url https://staging-engage.example.com \
        --api-key "$ADMIN_API_KEY"

The script validates that /readyz reports the database as ready and that
LINE push failures and code generation exhaustion stay within thresholds.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Engagement API observability checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the engagement API service.",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Admin API key (required for the engagement counters endpoint).",
    )
    parser.add_argument(
        "--max-push-failures",
        type=int,
        default=0,
        help="Maximum allowed failed LINE pushes before failing (default: 0).",
    )
    parser.add_argument(
        "--max-code-exhaustion",
        type=int,
        default=0,
        help="Maximum allowed coupon code generation exhaustion events (default: 0).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds.",
    )
    return parser.parse_args()


async def _get_json(
    client: httpx.AsyncClient,
    path: str,
    *,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


def _fail(message: str) -> None:
    print(f"[check-observability] ❌ {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-observability] ✅ {message}")


async def validate_readiness(client: httpx.AsyncClient) -> None:
    payload = await _get_json(client, "/api/v1/readyz")
    components = payload.get("components", {}) or {}
    database = components.get("database", {}) or {}
    if database.get("status") != "ready":
        _fail(f"Database component not ready: {database.get('detail') or database.get('status')}")

    summary = ", ".join(f"{name}={value.get('status')}" for name, value in sorted(components.items()))
    _log_ok(f"Readiness OK ({summary})")


async def validate_engagement(
    client: httpx.AsyncClient,
    api_key: Optional[str],
    max_push_failures: int,
    max_code_exhaustion: int,
) -> None:
    if not api_key:
        _log_ok("Skipping engagement counters (no API key provided)")
        return

    payload = await _get_json(
        client,
        "/api/v1/observability/engagement",
        headers={"X-API-Key": api_key},
    )
    claims = payload.get("claims", {}) or {}
    notifications = payload.get("notifications", {}) or {}
    redemptions = (payload.get("redemptions", {}) or {}).get("by_outcome", {}) or {}

    push_failures = int(notifications.get("failed", 0)) + int(notifications.get("error", 0))
    exhausted = int(claims.get("CodeGenerationExhausted", 0))

    if push_failures > max_push_failures:
        _fail(f"LINE push failures {push_failures} exceed threshold {max_push_failures}")
    if exhausted > max_code_exhaustion:
        _fail(f"Coupon code exhaustion events {exhausted} exceed threshold {max_code_exhaustion}")

    _log_ok(
        "Engagement counters OK "
        f"(claims={claims.get('success', 0)}, redemptions={redemptions.get('success', 0)}, "
        f"push_failures={push_failures})"
    )


async def main() -> None:
    args = parse_args()

    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        await validate_readiness(client)
        await validate_engagement(
            client,
            api_key=args.api_key,
            max_push_failures=args.max_push_failures,
            max_code_exhaustion=args.max_code_exhaustion,
        )

    _log_ok("Observability checks completed successfully")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except httpx.HTTPStatusError as exc:
        _fail(f"HTTP {exc.response.status_code} while calling {exc.request.url}")
    except httpx.HTTPError as exc:
        _fail(f"HTTP error while checking observability: {exc}")
