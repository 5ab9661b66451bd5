from __future__ import annotations

from aiogram.filters.callback_data import CallbackData


class CloseCb(CallbackData, prefix="close"):
    initiator: int


class ResolveCb(CallbackData, prefix="resolve"):
    initiator: int
    to: str  # creditor participant id


class ConfirmCb(CallbackData, prefix="confirm"):
    initiator: int
    flow: str  # close_group
    answer: str  # yes | no
