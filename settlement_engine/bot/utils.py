from __future__ import annotations

import asyncio

from aiogram import Bot
from aiogram.enums import ChatMemberStatus, ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.types import Message

NOTICE_SECONDS = 10


async def safe_delete_message(bot: Bot, *, chat_id: int, message_id: int) -> bool:
    try:
        await bot.delete_message(chat_id=chat_id, message_id=message_id)
        return True
    except (TelegramBadRequest, TelegramForbiddenError):
        return False


def delete_later(bot: Bot, *, chat_id: int, message_id: int, delay_seconds: float) -> None:
    async def _job() -> None:
        await asyncio.sleep(delay_seconds)
        await safe_delete_message(bot, chat_id=chat_id, message_id=message_id)

    asyncio.create_task(_job())


async def notice(message: Message, text: str, *, delay_seconds: float = NOTICE_SECONDS) -> None:
    """Short-lived reply for errors and confirmations."""
    msg = await message.answer(text, parse_mode=ParseMode.HTML)
    delete_later(message.bot, chat_id=msg.chat.id, message_id=msg.message_id, delay_seconds=delay_seconds)


async def is_admin(bot: Bot, *, tg_chat_id: int, tg_user_id: int) -> bool:
    cm = await bot.get_chat_member(chat_id=tg_chat_id, user_id=tg_user_id)
    return cm.status in (ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.CREATOR)
