from __future__ import annotations

from collections.abc import Sequence

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from settlement_engine.bot.callbacks import CloseCb, ConfirmCb, ResolveCb
from settlement_engine.bot.text import format_amount, participant_label
from settlement_engine.services.ledger import Edge


def close_keyboard(*, initiator_user_id: int, text: str = "Close") -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.row(
        InlineKeyboardButton(text=text, callback_data=CloseCb(initiator=initiator_user_id).pack()),
        width=1,
    )
    return kb.as_markup()


def debts_keyboard(*, initiator_user_id: int, edges: Sequence[Edge]) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    for e in edges[:20]:
        kb.row(
            InlineKeyboardButton(
                text=f"Paid {participant_label(e.to_participant)} {format_amount(e.amount)}",
                callback_data=ResolveCb(initiator=initiator_user_id, to=e.to_participant).pack(),
            ),
            width=1,
        )
    kb.row(
        InlineKeyboardButton(text="Close", callback_data=CloseCb(initiator=initiator_user_id).pack()),
        width=1,
    )
    return kb.as_markup()


def confirm_keyboard(*, initiator_user_id: int, flow: str) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.row(
        InlineKeyboardButton(text="Cancel", callback_data=ConfirmCb(initiator=initiator_user_id, flow=flow, answer="no").pack()),
        InlineKeyboardButton(text="Confirm", callback_data=ConfirmCb(initiator=initiator_user_id, flow=flow, answer="yes").pack()),
        width=2,
    )
    return kb.as_markup()
