"""GET /v1/credits/{user_id} - credit balance and reservation history"""

from fastapi import APIRouter, Depends, Query, Request

from quill_gateway.api.v1.schemas import BalanceResponse, TransactionHistoryResponse, TransactionItem
from quill_gateway.api.dependencies import get_ledger, get_request_id
from quill_gateway.api.errors import to_http_exception
from quill_gateway.domain.exceptions import DomainException
from quill_gateway.services.credit_ledger import CreditLedger

router = APIRouter()


@router.get("/credits/{user_id}", response_model=BalanceResponse)
async def get_credit_balance(
    user_id: str,
    request: Request,
    ledger: CreditLedger = Depends(get_ledger),
):
    try:
        balance = await ledger.get_balance(user_id)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    return BalanceResponse(
        user_id=balance.user_id,
        credit_balance=balance.credit_balance,
        plan_type=balance.plan_type.value,
        total_credits_used=balance.total_credits_used,
        total_words_used=balance.total_words_used,
    )


@router.get("/credits/{user_id}/transactions", response_model=TransactionHistoryResponse)
async def get_transaction_history(
    user_id: str,
    request: Request,
    limit: int = Query(50, ge=1, le=200, description="Maximum number of reservations"),
    ledger: CreditLedger = Depends(get_ledger),
):
    """
    Retrieve recent credit reservations for a user.

    Returns:
        Reservations (reserved, committed, rolled back), most recent first
    """
    try:
        reservations = await ledger.list_transactions(user_id, limit=limit)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    items = [
        TransactionItem(
            transaction_id=r.transaction_id,
            credits_reserved=r.credits_reserved,
            words_reserved=r.words_reserved,
            tool_type=r.tool_type,
            status=r.status.value,
            previous_balance=r.previous_balance,
            new_balance=r.new_balance,
            created_at=r.timestamp.isoformat(),
        )
        for r in reservations
    ]

    return TransactionHistoryResponse(user_id=user_id, transactions=items)
