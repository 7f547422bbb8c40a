from __future__ import annotations

import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.domain.errors import CodeGenerationExhausted
from engage_api.models.coupon import Coupon

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
DEFAULT_CODE_LENGTH = 8


def generate_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Random redemption code staff can type by hand."""

    if length <= 0:
        raise ValueError("Code length must be positive")
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw: str) -> str:
    return raw.strip().upper()


async def allocate_code(
    session: AsyncSession,
    *,
    length: int = DEFAULT_CODE_LENGTH,
    max_attempts: int = 5,
) -> str:
    """Pick a code not yet present in ``coupons``.

    The unique constraint on ``coupons.code`` still decides; callers retry on
    ``IntegrityError`` when a concurrent insert takes the same code first.
    """

    for _ in range(max_attempts):
        code = generate_code(length)
        result = await session.execute(select(Coupon.id).where(Coupon.code == code))
        if result.first() is None:
            return code
    raise CodeGenerationExhausted()


__all__ = ["CODE_ALPHABET", "DEFAULT_CODE_LENGTH", "allocate_code", "generate_code", "normalize_code"]
