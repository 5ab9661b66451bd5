from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from settlement_engine.services.groups import SettledEdge
from settlement_engine.services.ledger import Edge

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    NEW_DEBT = "new_debt"
    PAYMENT_RECEIVED = "payment_received"


@dataclass(frozen=True)
class NotificationRequest:
    recipient: str
    amount: Decimal
    counterpart_name: str
    kind: NotificationKind
    group_id: str
    group_name: str


class Notifier(Protocol):
    async def send(self, requests: Sequence[NotificationRequest]) -> None: ...


class LogNotifier:
    """Writes requests to the log; used when no delivery channel is wired."""

    async def send(self, requests: Sequence[NotificationRequest]) -> None:
        for r in requests:
            logger.info(
                "notify %s: %s %s (%s) in %s", r.recipient, r.kind.value, r.amount, r.counterpart_name, r.group_name
            )


def default_display_name(participant_id: str) -> str:
    return participant_id.split("@")[0] or participant_id


def new_debt_requests(
    pending: Iterable[Edge],
    *,
    actor: Optional[str],
    group_id: str,
    group_name: str,
    display_name: Callable[[str], str] = default_display_name,
) -> list[NotificationRequest]:
    """One request per debtor, for their first pending edge; the actor is skipped."""
    out: list[NotificationRequest] = []
    notified: set[str] = set()
    for edge in pending:
        if edge.from_participant in notified or edge.from_participant == actor:
            continue
        notified.add(edge.from_participant)
        out.append(
            NotificationRequest(
                recipient=edge.from_participant,
                amount=edge.amount,
                counterpart_name=display_name(edge.to_participant),
                kind=NotificationKind.NEW_DEBT,
                group_id=group_id,
                group_name=group_name,
            )
        )
    return out


def payment_received_request(
    settled: SettledEdge,
    *,
    group_id: str,
    group_name: str,
    display_name: Callable[[str], str] = default_display_name,
) -> NotificationRequest:
    return NotificationRequest(
        recipient=settled.to_participant,
        amount=settled.amount,
        counterpart_name=display_name(settled.from_participant),
        kind=NotificationKind.PAYMENT_RECEIVED,
        group_id=group_id,
        group_name=group_name,
    )


async def dispatch(notifier: Notifier, requests: Sequence[NotificationRequest]) -> bool:
    """Hand requests to the notifier. Failures are logged, never raised."""
    if not requests:
        return True
    try:
        await notifier.send(requests)
        return True
    except Exception:
        logger.exception("Notification dispatch failed for %d request(s)", len(requests))
        return False
