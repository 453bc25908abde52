"""Domain-specific exceptions"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error kinds surfaced to callers of the gateway"""

    INSUFFICIENT_CREDITS = "InsufficientCredits"
    MONTHLY_LIMIT_EXCEEDED = "MonthlyLimitExceeded"
    TOO_MANY_CONCURRENT_REQUESTS = "TooManyConcurrentRequests"
    LEDGER_TIMEOUT = "LedgerTimeout"
    TRANSACTION_NOT_FOUND = "TransactionNotFound"
    ALREADY_ROLLED_BACK = "AlreadyRolledBack"
    USER_NOT_FOUND = "UserNotFound"
    GENERATION_UNAVAILABLE = "GenerationUnavailable"
    DETECTOR_UNAVAILABLE = "DetectorUnavailable"
    GENERATION_ERROR = "GenerationError"
    VALIDATION_FAILED = "ValidationFailed"


class DomainException(Exception):
    """Base exception for domain layer"""

    kind: ErrorKind = ErrorKind.GENERATION_ERROR


class ValidationFailed(DomainException):
    """Request rejected before any credits were touched"""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(message)
        self.error_code = error_code


class InvalidWordCount(ValidationFailed):
    """Requested length cannot be planned or priced"""

    def __init__(self, message: str):
        super().__init__(message, error_code="INVALID_WORD_COUNT")


# Ledger: business-rule failures are never retried


class LedgerBusinessError(DomainException):
    """Ledger rejected the operation on business rules"""

    pass


class UserNotFound(LedgerBusinessError):
    kind = ErrorKind.USER_NOT_FOUND


class InsufficientCredits(LedgerBusinessError):
    """Balance does not cover the reservation"""

    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient credits. Required: {required}, Available: {available}")
        self.required = required
        self.available = available


class MonthlyLimitExceeded(LedgerBusinessError):
    """Free-tier monthly word cap would be exceeded"""

    kind = ErrorKind.MONTHLY_LIMIT_EXCEEDED

    def __init__(self, current: int, requested: int, limit: int):
        super().__init__(
            f"Monthly word limit exceeded. Current: {current}, Requested: {requested}, Limit: {limit}"
        )
        self.current = current
        self.requested = requested
        self.limit = limit


class TooManyConcurrentRequests(LedgerBusinessError):
    kind = ErrorKind.TOO_MANY_CONCURRENT_REQUESTS


class TransactionNotFound(LedgerBusinessError):
    kind = ErrorKind.TRANSACTION_NOT_FOUND


class AlreadyRolledBack(LedgerBusinessError):
    kind = ErrorKind.ALREADY_ROLLED_BACK


class LedgerTimeout(DomainException):
    """Ledger call did not finish within its overall deadline"""

    kind = ErrorKind.LEDGER_TIMEOUT


class StaleBalanceError(DomainException):
    """Account version changed underneath a transaction; safe to retry"""

    pass


# External services


class GenerationUnavailable(DomainException):
    """Text generator failed or is unreachable"""

    kind = ErrorKind.GENERATION_UNAVAILABLE

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient


class DetectorUnavailable(DomainException):
    """Detector failed; callers substitute fallback scores"""

    kind = ErrorKind.DETECTOR_UNAVAILABLE


class GenerationError(DomainException):
    """Fatal generation failure, reserved credits must be compensated"""

    kind = ErrorKind.GENERATION_ERROR


class UsageReportError(DomainException):
    """Usage webhook delivery failed after retries"""

    pass
