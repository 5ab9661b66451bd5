from __future__ import annotations

import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramUnauthorizedError
from aiogram.fsm.storage.memory import MemoryStorage

from settlement_engine.bot.middlewares import GroupContextMiddleware
from settlement_engine.bot.notifier import TelegramNotifier
from settlement_engine.bot.routers import all_routers
from settlement_engine.config import settings
from settlement_engine.db.session import SessionMaker
from settlement_engine.logging import configure_logging
from settlement_engine.services.settlement import SettlementService

logger = logging.getLogger(__name__)


async def main() -> None:
    configure_logging(settings.log_level)
    if not settings.bot_token:
        raise RuntimeError("BOT_TOKEN is not set.")

    bot = Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    try:
        try:
            me = await bot.get_me()
        except TelegramUnauthorizedError as e:
            logger.error("Telegram Unauthorized. Check BOT_TOKEN in .env (BotFather token). %s", e)
            raise

        service = SettlementService(SessionMaker, notifier=TelegramNotifier(bot))

        dp = Dispatcher(storage=MemoryStorage())
        dp.message.middleware(GroupContextMiddleware(service))
        dp.callback_query.middleware(GroupContextMiddleware(service))
        dp.workflow_data.update({"service": service})

        for r in all_routers():
            dp.include_router(r)

        logger.info("Starting bot as @%s", me.username)
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        await bot.session.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
