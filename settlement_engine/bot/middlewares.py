from __future__ import annotations

from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.enums import ChatType
from aiogram.types import CallbackQuery, Message, TelegramObject

from settlement_engine.bot.text import participant_id
from settlement_engine.services.settlement import SettlementService


class GroupContextMiddleware(BaseMiddleware):
    """Makes sure the chat has a ledger and tells handlers who is speaking."""

    def __init__(self, service: SettlementService) -> None:
        super().__init__()
        self._service = service

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        tg_chat = None
        tg_user = None
        sender_chat = None

        if isinstance(event, Message):
            tg_chat = event.chat
            tg_user = event.from_user
            sender_chat = event.sender_chat
        elif isinstance(event, CallbackQuery) and event.message:
            tg_chat = event.message.chat
            tg_user = event.from_user
            sender_chat = event.message.sender_chat

        # Anonymous admins, channels and bots never own debts; private chats have no ledger.
        if tg_chat is None or tg_user is None or sender_chat is not None or tg_user.is_bot:
            return None
        if tg_chat.type not in (ChatType.GROUP, ChatType.SUPERGROUP):
            return None

        group_id = str(tg_chat.id)
        await self._service.ensure_group(group_id, tg_chat.title or group_id)
        data["group_id"] = group_id
        data["participant"] = participant_id(tg_user)
        return await handler(event, data)
