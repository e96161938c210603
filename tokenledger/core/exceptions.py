"""Domain exceptions raised by the ledger, settlement, certificate and approval services.

Each exception carries the HTTP status and machine-readable error code it is
rendered with by ``tokenledger.core.errors.ledger_exception_handler``.
"""

from typing import Any


class LedgerError(Exception):
    status_code: int = 400
    error_code: str = "LEDGER_ERROR"

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(LedgerError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class NotFoundError(LedgerError, LookupError):
    status_code = 404
    error_code = "NOT_FOUND"


class PermissionDenied(LedgerError):
    status_code = 403
    error_code = "FORBIDDEN"


class InvalidStateTransition(LedgerError):
    status_code = 409
    error_code = "INVALID_STATE_TRANSITION"

    def __init__(
        self, entity: str, current: Any, target: Any, message: str | None = None
    ) -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            message or f"{entity} cannot move from '{current_value}' to '{target_value}'",
            {"entity": entity, "current_status": current_value, "target_status": target_value},
        )
        self.current = current
        self.target = target


class InsufficientBalance(LedgerError):
    status_code = 409
    error_code = "INSUFFICIENT_BALANCE"

    def __init__(self, current_balance: int, requested: int) -> None:
        super().__init__(
            f"Insufficient tokens: {current_balance} available, {requested} requested",
            {"current_balance": current_balance, "requested": requested},
        )
        self.current_balance = current_balance
        self.requested = requested


class ConcurrentModification(LedgerError):
    status_code = 409
    error_code = "CONCURRENT_MODIFICATION"


class LedgerInvariantError(LedgerError):
    """Supply equation violated; the unit of work must abort."""

    status_code = 500
    error_code = "LEDGER_INVARIANT_VIOLATION"


class AnchorError(LedgerError):
    status_code = 502
    error_code = "BLOCKCHAIN_ANCHOR_FAILED"
