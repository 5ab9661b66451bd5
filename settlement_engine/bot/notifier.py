from __future__ import annotations

import logging
from collections.abc import Sequence

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError

from settlement_engine.bot.text import esc, format_amount, participant_label
from settlement_engine.services.notifications import NotificationKind, NotificationRequest

logger = logging.getLogger(__name__)


def notification_text(r: NotificationRequest) -> str:
    who = esc(participant_label(r.recipient))
    if r.kind is NotificationKind.NEW_DEBT:
        return f"💰 {who}, you owe <b>{format_amount(r.amount)}</b> to {esc(r.counterpart_name)}"
    return f"✅ {who}, {esc(r.counterpart_name)} paid you <b>{format_amount(r.amount)}</b>"


class TelegramNotifier:
    """Posts notification requests into the group chat they belong to."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, requests: Sequence[NotificationRequest]) -> None:
        for r in requests:
            try:
                chat_id = int(r.group_id)
            except ValueError:
                logger.warning("Group %s is not a Telegram chat; dropping notification", r.group_id)
                continue
            try:
                await self._bot.send_message(chat_id=chat_id, text=notification_text(r), parse_mode=ParseMode.HTML)
            except TelegramAPIError as e:
                logger.warning("Could not notify %s in chat %s: %s", r.recipient, chat_id, e)
