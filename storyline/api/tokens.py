"""
Credit balance API.

- POST /api/tokens/deduct: spend the caller's own credits
- POST /api/tokens/add: grant credits to a user (admin only)

Refunds (negative deductions) are internal to the services and never
accepted from clients.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storyline.api.deps import get_store
from storyline.core.admin_auth import AdminActor, require_admin
from storyline.core.auth import CurrentUser, get_current_user
from storyline.features.entitlements.store import EntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tokens", tags=["tokens"])


class DeductRequest(BaseModel):
    amount: int = Field(gt=0)


class AddRequest(BaseModel):
    user_id: str = Field(min_length=1)
    amount: int = Field(ge=0)


class BalanceResponse(BaseModel):
    user_id: str
    credit_balance: int


@router.post("/deduct", response_model=BalanceResponse)
def deduct_tokens(
    body: DeductRequest,
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    """
    Errors:
        402: balance below amount (balance unchanged)
    """
    balance = store.deduct_user_tokens(user.user_id, body.amount)
    return BalanceResponse(user_id=user.user_id, credit_balance=balance)


@router.post("/add", response_model=BalanceResponse)
def add_tokens(
    body: AddRequest,
    actor: AdminActor = Depends(require_admin),
    store: EntitlementStore = Depends(get_store),
):
    balance = store.add_user_tokens(body.user_id, body.amount)
    logger.info(
        "[tokens] credits granted",
        extra={"actor": actor.actor_id, "user_id": body.user_id, "amount": body.amount},
    )
    return BalanceResponse(user_id=body.user_id, credit_balance=balance)
