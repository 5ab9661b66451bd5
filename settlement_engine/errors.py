from __future__ import annotations

from decimal import Decimal


class SettlementError(Exception):
    """Base class for every error raised by the settlement engine."""


class ValidationError(SettlementError, ValueError):
    """Malformed input, rejected before any balance is computed."""


class GroupClosedError(ValidationError):
    """Expense mutation attempted on a completed group."""


class NotFoundError(SettlementError, LookupError):
    """Group, expense or pending edge does not exist."""


class PermissionDenied(SettlementError, PermissionError):
    """Requester is not allowed to perform the action."""


class StaleLedgerError(SettlementError):
    """The ledger changed between read and write."""

    def __init__(self, group_id: str, read_version: int) -> None:
        super().__init__(f"group {group_id} changed since version {read_version}")
        self.group_id = group_id
        self.read_version = read_version


class ConsistencyWarning(UserWarning):
    """Credits and debits did not cancel out; the residual could not be matched.

    Never raised by the engine. Instances travel in results and get logged.
    """

    def __init__(self, residual: Decimal, unmatched: dict[str, Decimal]) -> None:
        super().__init__(f"unmatched residual of {residual} after settlement")
        self.residual = residual
        self.unmatched = unmatched

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConsistencyWarning):
            return NotImplemented
        return self.residual == other.residual and self.unmatched == other.unmatched

    def __hash__(self) -> int:
        return hash(self.residual)
