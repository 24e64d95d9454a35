"""
Exception Classes - Strongly typed exception hierarchy.

Every exception carries the ErrorCode it corresponds to.
"""

from fashionai_quota.models.api import ErrorCode


class QuotaError(Exception):
    """Base exception for all quota errors."""

    code: ErrorCode = ErrorCode.EXCEPTION


class InsufficientCreditsError(QuotaError):
    """Raised when an account cannot cover the cost of a generation."""

    code = ErrorCode.INSUFFICIENT_CREDITS

    def __init__(self, remaining: int, required: int) -> None:
        self.remaining = remaining
        self.required = required
        super().__init__(f"Insufficient credits. Remaining: {remaining}, Required: {required}")


class NoKeysAvailableError(QuotaError):
    """Raised when every key in a service pool is exhausted or inactive."""

    code = ErrorCode.NO_KEYS_AVAILABLE

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"No API keys available for service: {service}")


class UnknownServiceError(QuotaError):
    """Raised when a service has no registered key pool."""

    code = ErrorCode.NO_KEYS_AVAILABLE

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"No API keys registered for service: {service}")


class AccountNotFoundError(QuotaError):
    """Raised when an operation needs an existing credit account."""

    code = ErrorCode.ACCOUNT_NOT_FOUND

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No credit account for user: {user_id}")


class DatabaseError(QuotaError):
    """Raised when a ledger storage operation fails."""

    code = ErrorCode.DATABASE_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


class UnexpectedLedgerError(QuotaError):
    """Raised when the ledger failed for a reason other than storage."""

    code = ErrorCode.EXCEPTION

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Unexpected ledger error: {message}")
