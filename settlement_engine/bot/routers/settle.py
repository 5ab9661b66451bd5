from __future__ import annotations

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message

from settlement_engine.bot.callbacks import ResolveCb
from settlement_engine.bot.keyboards import close_keyboard, debts_keyboard
from settlement_engine.bot.parsing import parse_mention
from settlement_engine.bot.render import render_edit_log, render_history, render_ledger
from settlement_engine.bot.text import esc, format_amount, participant_label
from settlement_engine.bot.utils import delete_later, notice
from settlement_engine.db.models import GroupStatus
from settlement_engine.errors import SettlementError
from settlement_engine.services.settlement import ResolveOutcome, SettlementService

router = Router(name=__name__)


def _resolved_text(outcome: ResolveOutcome) -> str:
    s = outcome.settled
    text = (
        f"🤝 {esc(participant_label(s.from_participant))} paid "
        f"{esc(participant_label(s.to_participant))} <b>{format_amount(s.amount)}</b>"
    )
    if outcome.group_status is GroupStatus.COMPLETED:
        text += "\n\n✅ All settled. The group is now completed."
    else:
        text += f"\n{len(outcome.pending_edges)} payment(s) still open."
    return text


@router.message(Command("settle", "balance"))
async def settle_cmd(message: Message, service: SettlementService, group_id: str) -> None:
    try:
        ledger = await service.get_ledger(group_id)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return
    msg = await message.answer(
        render_ledger(ledger),
        parse_mode=ParseMode.HTML,
        reply_markup=close_keyboard(initiator_user_id=message.from_user.id),
    )
    delete_later(message.bot, chat_id=msg.chat.id, message_id=msg.message_id, delay_seconds=300)


@router.message(Command("paid"))
async def paid_cmd(
    message: Message,
    command: CommandObject,
    service: SettlementService,
    group_id: str,
    participant: str,
) -> None:
    try:
        if not (command.args or "").strip():
            ledger = await service.get_ledger(group_id)
            mine = [e for e in ledger.pending_edges if e.from_participant == participant]
            if not mine:
                await notice(message, "You have nothing to pay here.")
                return
            await message.answer(
                "Which payment did you make?",
                reply_markup=debts_keyboard(initiator_user_id=message.from_user.id, edges=mine),
            )
            return
        creditor = parse_mention(command.args, sender=participant)
        outcome = await service.resolve(group_id, participant, creditor, requested_by=participant)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return
    await message.answer(_resolved_text(outcome), parse_mode=ParseMode.HTML)


@router.callback_query(ResolveCb.filter())
async def resolve_cb(
    callback: CallbackQuery,
    callback_data: ResolveCb,
    service: SettlementService,
    group_id: str,
    participant: str,
) -> None:
    if callback.from_user.id != callback_data.initiator:
        await callback.answer("This button is not for you.", show_alert=True)
        return
    try:
        outcome = await service.resolve(group_id, participant, callback_data.to, requested_by=participant)
    except SettlementError as e:
        await callback.answer(str(e), show_alert=True)
        return
    await callback.message.edit_text(_resolved_text(outcome), parse_mode=ParseMode.HTML)
    await callback.answer("Saved.")


@router.message(Command("history"))
async def history_cmd(message: Message, service: SettlementService, group_id: str) -> None:
    try:
        doc = await service.history(group_id)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return
    msg = await message.answer(
        render_history(doc),
        parse_mode=ParseMode.HTML,
        reply_markup=close_keyboard(initiator_user_id=message.from_user.id),
    )
    delete_later(message.bot, chat_id=msg.chat.id, message_id=msg.message_id, delay_seconds=300)


@router.message(Command("log"))
async def log_cmd(message: Message, service: SettlementService, group_id: str) -> None:
    try:
        entries = await service.edit_log(group_id, limit=20)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return
    msg = await message.answer(
        render_edit_log(entries),
        parse_mode=ParseMode.HTML,
        reply_markup=close_keyboard(initiator_user_id=message.from_user.id),
    )
    delete_later(message.bot, chat_id=msg.chat.id, message_id=msg.message_id, delay_seconds=300)
