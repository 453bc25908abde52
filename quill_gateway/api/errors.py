"""Map domain error kinds to HTTP responses"""

import logging
from fastapi import HTTPException

from quill_gateway.domain.exceptions import DomainException, ErrorKind, ValidationFailed
from quill_gateway.services.plan_validator import PLAN_RESTRICTION_CODES

STATUS_BY_KIND = {
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.INSUFFICIENT_CREDITS: 402,
    ErrorKind.MONTHLY_LIMIT_EXCEEDED: 429,
    ErrorKind.TOO_MANY_CONCURRENT_REQUESTS: 429,
    ErrorKind.LEDGER_TIMEOUT: 503,
    ErrorKind.GENERATION_ERROR: 502,
    ErrorKind.GENERATION_UNAVAILABLE: 502,
    ErrorKind.USER_NOT_FOUND: 404,
    ErrorKind.TRANSACTION_NOT_FOUND: 404,
    ErrorKind.ALREADY_ROLLED_BACK: 409,
}


def to_http_exception(error: DomainException, request_id: str) -> HTTPException:
    """Status and body for a domain error; 5xx details stay generic"""
    status_code = STATUS_BY_KIND.get(error.kind, 500)
    detail = {"error": error.kind.value, "message": str(error)}

    if isinstance(error, ValidationFailed):
        detail["error_code"] = error.error_code
        if error.error_code in PLAN_RESTRICTION_CODES:
            status_code = 403
        elif error.error_code == "PLAN_NOT_FOUND":
            status_code = 404

    if status_code >= 500:
        logging.error(f"{error.kind.value}: {error}", extra={"request_id": request_id})
        detail["message"] = {
            503: "Credit ledger busy, retry later",
            502: "Generation service unavailable",
        }.get(status_code, "Internal server error")
    else:
        logging.warning(f"{error.kind.value}: {error}", extra={"request_id": request_id})

    return HTTPException(status_code=status_code, detail=detail)
