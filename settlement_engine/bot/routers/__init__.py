from __future__ import annotations

from aiogram import Router

from settlement_engine.bot.routers.admin import router as admin_router
from settlement_engine.bot.routers.common_callbacks import router as common_callbacks_router
from settlement_engine.bot.routers.expenses import router as expenses_router
from settlement_engine.bot.routers.settle import router as settle_router


def all_routers() -> list[Router]:
    return [
        common_callbacks_router,
        admin_router,
        expenses_router,
        settle_router,
    ]
