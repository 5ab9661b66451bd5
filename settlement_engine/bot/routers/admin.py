from __future__ import annotations

from aiogram import Bot, Router
from aiogram.enums import ParseMode
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from settlement_engine.bot.callbacks import ConfirmCb
from settlement_engine.bot.keyboards import confirm_keyboard
from settlement_engine.bot.text import esc
from settlement_engine.bot.utils import is_admin, notice, safe_delete_message
from settlement_engine.errors import SettlementError
from settlement_engine.services.settlement import SettlementService

router = Router(name=__name__)

CLOSE_FLOW = "close_group"


@router.message(Command("done"))
async def done_cmd(message: Message, service: SettlementService, group_id: str) -> None:
    try:
        ledger = await service.complete_group(group_id)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return
    await message.answer(f"✅ <b>{esc(ledger.name)}</b> is completed.", parse_mode=ParseMode.HTML)


@router.message(Command("close"))
async def close_cmd(message: Message, bot: Bot) -> None:
    if not await is_admin(bot, tg_chat_id=message.chat.id, tg_user_id=message.from_user.id):
        await notice(message, "Only admins can close the group.", delay_seconds=5)
        return
    await message.answer(
        "<b>Close this group?</b>\nPending payments are dropped and the ledger is scheduled for deletion.",
        parse_mode=ParseMode.HTML,
        reply_markup=confirm_keyboard(initiator_user_id=message.from_user.id, flow=CLOSE_FLOW),
    )


@router.callback_query(ConfirmCb.filter())
async def close_confirm_cb(
    callback: CallbackQuery,
    callback_data: ConfirmCb,
    bot: Bot,
    service: SettlementService,
    group_id: str,
    participant: str,
) -> None:
    if callback_data.flow != CLOSE_FLOW:
        return
    if callback.from_user.id != callback_data.initiator:
        await callback.answer("This button is not for you.", show_alert=True)
        return
    if callback.message:
        await safe_delete_message(bot, chat_id=callback.message.chat.id, message_id=callback.message.message_id)
    if callback_data.answer != "yes":
        await callback.answer("Cancelled.")
        return
    try:
        await service.delete_group(group_id, actor=participant)
    except SettlementError as e:
        await callback.answer(str(e), show_alert=True)
        return
    await callback.answer("Group closed.")
