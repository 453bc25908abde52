"""GET /v1/usage/{user_id} - current month's usage against the plan cap"""

from fastapi import APIRouter, Depends, Request

from quill_gateway.api.v1.schemas import UsageResponse
from quill_gateway.api.dependencies import get_ledger, get_quota_tracker, get_request_id
from quill_gateway.api.errors import to_http_exception
from quill_gateway.domain.exceptions import DomainException
from quill_gateway.services.credit_ledger import CreditLedger
from quill_gateway.services.quota import QuotaTracker

router = APIRouter()


@router.get("/usage/{user_id}", response_model=UsageResponse)
async def get_monthly_usage(
    user_id: str,
    request: Request,
    ledger: CreditLedger = Depends(get_ledger),
    quota: QuotaTracker = Depends(get_quota_tracker),
):
    try:
        balance = await ledger.get_balance(user_id)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    usage = await quota.get_usage(user_id)
    remaining = quota.remaining_words(balance.plan_type, usage)

    return UsageResponse(
        user_id=user_id,
        month_key=usage.month_key,
        plan_type=balance.plan_type.value,
        words_generated=usage.words_generated,
        credits_used=usage.credits_used,
        request_count=usage.request_count,
        monthly_word_limit=quota.free_monthly_word_limit if remaining is not None else None,
        remaining_words=remaining,
    )
