"""
FarmEscrow Exception Hierarchy

All exceptions inherit from EscrowError for easy catching.
Each kind carries an http_status hint for the transport layer.
"""

from typing import Optional, Sequence


class EscrowError(Exception):
    """Base exception for all FarmEscrow errors"""

    http_status = 500

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": {k: _plain(v) for k, v in self.details.items()},
        }


class ValidationError(EscrowError):
    """Raised when input is malformed. Always raised before any network call."""

    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, details: dict = None):
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class InvalidPredicateError(ValidationError):
    """Raised when a claim predicate cannot be built from its inputs"""
    pass


class ConfigurationError(EscrowError):
    """Raised when the injected configuration is unusable"""
    pass


class NotFoundError(EscrowError):
    """Raised when an account, balance or transaction does not exist on-ledger"""

    http_status = 404


class ConflictError(EscrowError):
    """Raised when a claimable balance has already been claimed"""

    http_status = 409


class PredicateUnsatisfiedError(EscrowError):
    """Raised when a claim is attempted outside its valid time window"""

    http_status = 422


class LedgerError(EscrowError):
    """Base for failures originating at the external ledger"""

    http_status = 502

    def __init__(self, message: str, status: str = "failed", details: dict = None):
        details = dict(details or {})
        details.setdefault("status", status)
        super().__init__(message, details)
        self.status = status


class LedgerSubmissionError(LedgerError):
    """
    Raised when the ledger rejected or could not process a transaction.

    status is "failed" for a definitive rejection and "pending" when the
    outcome is unknown (timeout). A pending submission may still land:
    re-query by transaction hash instead of resubmitting.
    """

    def __init__(
        self,
        message: str,
        result_code: Optional[str] = None,
        operation_codes: Sequence[str] = (),
        transaction_hash: Optional[str] = None,
        status: str = "failed",
        details: dict = None,
    ):
        details = dict(details or {})
        if result_code is not None:
            details.setdefault("result_code", result_code)
        if operation_codes:
            details.setdefault("operation_codes", list(operation_codes))
        if transaction_hash is not None:
            details.setdefault("transaction_hash", transaction_hash)
        super().__init__(message, status=status, details=details)
        self.result_code = result_code
        self.operation_codes = tuple(operation_codes)
        self.transaction_hash = transaction_hash

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


class LedgerQueryError(LedgerError):
    """Raised on transient connectivity failures or timeouts during a read"""

    http_status = 503


def _plain(value):
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
