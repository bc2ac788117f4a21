"""
Erreurs métier du ledger.

Chaque type porte un `code` stable sur lequel les appelants peuvent brancher,
et des `details` (ids, quantités) pour le diagnostic. Seule ContentionError
peut être rejouée automatiquement.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorCode(str, enum.Enum):
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    OVER_RECEIPT = "over_receipt"
    CONTENTION = "contention"
    VALIDATION = "validation"


class StockLedgerError(Exception):
    code: ErrorCode

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(StockLedgerError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )


class InvalidStateError(StockLedgerError):
    code = ErrorCode.INVALID_STATE

    def __init__(
        self,
        message: str,
        *,
        current_status: str,
        operation: str,
        po_id: int | None = None,
        allocation_id: int | None = None,
    ):
        self.po_id = po_id
        self.allocation_id = allocation_id
        self.current_status = current_status
        self.operation = operation
        details: dict[str, Any] = {"status": current_status, "operation": operation}
        if po_id is not None:
            details["po_id"] = po_id
        if allocation_id is not None:
            details["allocation_id"] = allocation_id
        super().__init__(message, details=details)


class OverReceiptError(StockLedgerError):
    code = ErrorCode.OVER_RECEIPT

    def __init__(self, *, po_id: int, line_id: int, item_id: int, ordered, previously_received, attempted):
        self.po_id = po_id
        self.line_id = line_id
        self.item_id = item_id
        self.ordered = ordered
        self.previously_received = previously_received
        self.attempted = attempted
        super().__init__(
            f"Receiving {attempted} on PO line {line_id} would exceed ordered quantity "
            f"({previously_received} already received of {ordered})",
            details={
                "po_id": po_id,
                "line_id": line_id,
                "item_id": item_id,
                "quantity_ordered": str(ordered),
                "quantity_received": str(previously_received),
                "quantity_attempted": str(attempted),
            },
        )


class ContentionError(StockLedgerError):
    code = ErrorCode.CONTENTION

    def __init__(self, message: str = "Lock wait timed out", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class InputValidationError(StockLedgerError):
    code = ErrorCode.VALIDATION

    def __init__(self, message: str, *, field: str | None = None, value: Any = None):
        self.field = field
        details: dict[str, Any] = {}
        if field is not None:
            details["field"] = field
            details["value"] = None if value is None else str(value)
        super().__init__(message, details=details)
