from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from engage_api.domain.errors import CodeGenerationExhausted
from engage_api.models.coupon import Coupon, CouponStatusEnum
from engage_api.services.engagement import CODE_ALPHABET, allocate_code, generate_code, normalize_code


def test_generate_code_uses_alphabet_and_length() -> None:
    codes = {generate_code(10) for _ in range(200)}
    assert all(len(code) == 10 for code in codes)
    assert all(set(code) <= set(CODE_ALPHABET) for code in codes)
    assert len(codes) > 190


def test_generate_code_rejects_non_positive_length() -> None:
    with pytest.raises(ValueError):
        generate_code(0)


def test_normalize_code_strips_and_uppercases() -> None:
    assert normalize_code("  ab12cd34 ") == "AB12CD34"


@pytest.mark.asyncio
async def test_allocate_code_gives_up_when_alphabet_space_is_taken(session_factory, factory) -> None:
    user = await factory.user()
    activity = await factory.activity()
    now = datetime.now(timezone.utc)

    async with session_factory() as session:
        for letter in CODE_ALPHABET:
            session.add(
                Coupon(
                    activity_id=activity.id,
                    user_id=user.id,
                    code=letter,
                    status=CouponStatusEnum.ACTIVE,
                    claimed_at=now,
                    expires_at=now + timedelta(days=1),
                )
            )
        await session.commit()

        with pytest.raises(CodeGenerationExhausted):
            await allocate_code(session, length=1, max_attempts=5)

        code = await allocate_code(session, length=8, max_attempts=5)
        assert len(code) == 8
