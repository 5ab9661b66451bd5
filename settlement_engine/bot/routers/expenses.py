from __future__ import annotations

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from settlement_engine.bot.keyboards import close_keyboard
from settlement_engine.bot.parsing import match_expense_id, parse_expense_args, split_id_prefix
from settlement_engine.bot.render import render_expense_line, render_expenses, render_pending
from settlement_engine.bot.text import esc
from settlement_engine.bot.utils import delete_later, notice
from settlement_engine.errors import SettlementError
from settlement_engine.services.settlement import SettlementService

router = Router(name=__name__)


@router.message(Command("expense"))
async def expense_cmd(
    message: Message,
    command: CommandObject,
    service: SettlementService,
    group_id: str,
    participant: str,
) -> None:
    try:
        draft = parse_expense_args(command.args or "", sender=participant)
        outcome = await service.add_expense(group_id, draft.as_payload(payer=participant), actor=participant)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return

    added = outcome.all_expenses[-1]
    text = (
        f"➕ <code>{esc(render_expense_line(added))}</code>\n\n"
        + render_pending(title="Payments to make", pending=outcome.pending_edges, warning=outcome.warning)
    )
    await message.answer(text, parse_mode=ParseMode.HTML)


@router.message(Command("expenses"))
async def expenses_cmd(message: Message, service: SettlementService, group_id: str) -> None:
    try:
        ledger = await service.get_ledger(group_id)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return
    msg = await message.answer(
        render_expenses(ledger),
        parse_mode=ParseMode.HTML,
        reply_markup=close_keyboard(initiator_user_id=message.from_user.id),
    )
    delete_later(message.bot, chat_id=msg.chat.id, message_id=msg.message_id, delay_seconds=300)


@router.message(Command("edit"))
async def edit_cmd(
    message: Message,
    command: CommandObject,
    service: SettlementService,
    group_id: str,
    participant: str,
) -> None:
    try:
        prefix, rest = split_id_prefix(command.args or "")
        ledger = await service.get_ledger(group_id)
        expense_id = match_expense_id(prefix, [e.id for e in ledger.expenses])
        payer = ledger.expense(expense_id).payer
        draft = parse_expense_args(rest, sender=payer)
        outcome = await service.edit_expense(group_id, expense_id, draft.as_payload(payer=payer), actor=participant)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return

    edited = next(e for e in outcome.all_expenses if e.id == expense_id)
    text = (
        f"✏️ <code>{esc(render_expense_line(edited))}</code>\n\n"
        + render_pending(title="Payments to make", pending=outcome.pending_edges, warning=outcome.warning)
    )
    await message.answer(text, parse_mode=ParseMode.HTML)


@router.message(Command("delete"))
async def delete_cmd(
    message: Message,
    command: CommandObject,
    service: SettlementService,
    group_id: str,
    participant: str,
) -> None:
    try:
        prefix, _ = split_id_prefix(command.args or "")
        ledger = await service.get_ledger(group_id)
        expense_id = match_expense_id(prefix, [e.id for e in ledger.expenses])
        name = ledger.expense(expense_id).name
        outcome = await service.delete_expense(group_id, expense_id, actor=participant)
    except SettlementError as e:
        await notice(message, f"❌ {esc(str(e))}")
        return

    text = f"🗑 {esc(name)} removed.\n\n" + render_pending(
        title="Payments to make", pending=outcome.pending_edges, warning=outcome.warning
    )
    await message.answer(text, parse_mode=ParseMode.HTML)
