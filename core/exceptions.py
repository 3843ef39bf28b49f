from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for caller-facing reconciliation and allocation failures."""

    code = "reconciliation_error"
    retryable = False

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def as_dict(self) -> dict:
        return {"detail": self.reason, "code": self.code}


class ParseError(ReconciliationError):
    code = "parse_error"

    def __init__(self, reason: str, *, row_number: int | None = None):
        super().__init__(reason)
        self.row_number = row_number


class DuplicateTransaction(ReconciliationError):
    """Raised internally by the importer; callers only ever see a duplicate count."""

    code = "duplicate_transaction"


class InvalidTarget(ReconciliationError):
    code = "invalid_target"


class AllocationMismatch(ReconciliationError):
    code = "allocation_mismatch"


class ConcurrentModification(ReconciliationError):
    code = "concurrent_modification"
    retryable = True


class AutoMatchItemError(ReconciliationError):
    code = "auto_match_item_error"

    def __init__(self, reason: str, *, bank_transaction_id: int, error_code: str = ""):
        super().__init__(reason)
        self.bank_transaction_id = bank_transaction_id
        self.error_code = error_code

    def as_dict(self) -> dict:
        return {
            "transaction": self.bank_transaction_id,
            "error": self.reason,
            "code": self.error_code or self.code,
        }
