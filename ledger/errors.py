from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every failure raised by the fee ledger.

    ``detail`` carries the entity id, attempted amount and current balance
    (where known) so the caller can decide whether to retry.
    """

    code = "ledger_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = {k: v for k, v in detail.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "detail": {k: (str(v) if not isinstance(v, (int, bool, str, list, dict)) else v) for k, v in self.detail.items()},
        }


class ValidationError(LedgerError):
    code = "validation_error"


class InvalidDiscount(ValidationError):
    code = "invalid_discount"


class NotFound(LedgerError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: Optional[Any] = None) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class StateConflict(LedgerError):
    code = "state_conflict"
    http_status = 409


class NoOutstandingBalance(StateConflict):
    code = "no_outstanding_balance"


class AllocationOverflow(LedgerError):
    code = "allocation_overflow"
    http_status = 422


class ConcurrentModification(LedgerError):
    code = "concurrent_modification"
    http_status = 409
    retryable = True


class LedgerBusy(LedgerError):
    code = "ledger_busy"
    http_status = 503
    retryable = True
