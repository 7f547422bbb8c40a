from fastapi import APIRouter

from .endpoints import (
    admin,
    coupons,
    group_buy,
    health,
    observability,
    presale,
    redemptions,
    stores,
    users,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(coupons.router)
router.include_router(users.router)
router.include_router(stores.router)
router.include_router(group_buy.router)
router.include_router(presale.router)
router.include_router(redemptions.router)
router.include_router(admin.router)
router.include_router(observability.router)
