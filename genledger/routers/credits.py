from fastapi import APIRouter, Depends, Query

from genledger.core.config import Settings, get_settings
from genledger.deps import CurrentUser, get_current_user
from genledger.services import accounts as accounts_service
from genledger.services import reporting as reporting_service

router = APIRouter()


@router.get("")
async def credits_summary(
    user: CurrentUser = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=100),
):
    """Return balance, recent transactions (newest first) and generation stats."""
    return await reporting_service.credits_summary(user.id, limit)


@router.post("/initialize")
async def credits_initialize(
    user: CurrentUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    """Create the ledger row and default project once per user (idempotent)."""
    result = await accounts_service.initialize_account(settings, user.id)
    out = {
        "success": True,
        "already_initialized": result.already_initialized,
        "balance": result.balance,
    }
    if not result.already_initialized:
        out["initial_bonus"] = result.initial_bonus
        out["transaction_id"] = result.transaction_id
    return out
