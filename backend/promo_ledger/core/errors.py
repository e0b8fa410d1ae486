"""Error taxonomy shared by the promo ledger, its store and the HTTP edge.

Each class carries a stable machine ``code`` that the API error handler copies
into ``ErrorResponse.code``.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    code: str = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def detail(self) -> Any:
        return self.message


class ValidationError(LedgerError):
    """Bad input shape or values. Never retried."""

    code = "validation_error"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def detail(self) -> Any:
        return [{"field": self.field, "reason": self.reason}]


class NotFoundError(LedgerError):
    code = "not_found"


class ConflictError(LedgerError):
    """The store state changed under the caller; retry needs a fresh evaluation."""

    code = "conflict"


class DuplicateCodeError(ConflictError):
    code = "duplicate_code"

    def __init__(self, code_value: str) -> None:
        super().__init__(f"Promo code {code_value} already exists")
        self.code_value = code_value


class TransientStoreError(LedgerError):
    """Connectivity failure. Safe to retry ``evaluate``, unsafe to blindly retry ``redeem``."""

    code = "store_unavailable"


class StoreTimeoutError(TransientStoreError):
    code = "store_timeout"
