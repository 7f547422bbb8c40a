"""Run the coupon and group-buy expiry sweep once.

Intended usage: schedule via cron when the in-process sweep worker is
disabled, or run by hand after an outage.

Example:
    python tooling/scripts/run_expiry_sweep.py --batch-size 200
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute the expiry sweep once")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of coupons and group instances processed per table.",
    )
    return parser.parse_args()


async def _run(batch_size: int | None) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from engage_api.db.session import async_session, engine  # type: ignore import-position
    from engage_api.workers import ExpirySweepWorker  # type: ignore import-position

    worker = ExpirySweepWorker(async_session, batch_size=batch_size)  # type: ignore[arg-type]
    try:
        return await worker.run_once()
    finally:
        await engine.dispose()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.batch_size))
    logger.success(
        "Expiry sweep run completed",
        expired_coupons=summary.get("expiredCoupons", 0),
        failed_groups=summary.get("failedGroups", 0),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
