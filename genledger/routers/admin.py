from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from genledger.core.logging import get_logger
from genledger.deps import CurrentUser, require_admin
from genledger.services import ledger

router = APIRouter()
log = get_logger(__name__)


class CreditGrant(BaseModel):
    user_id: str
    amount: int = Field(ge=0)
    kind: Literal["bonus", "recharge"] = "recharge"
    description: str = "Credit top-up"
    metadata: dict[str, Any] = Field(default_factory=dict)


@router.post("/credits/grant")
async def admin_credits_grant(body: CreditGrant, admin: CurrentUser = Depends(require_admin)):
    """Admin: credit a user's account (bonus or recharge)."""
    result = await ledger.add(
        body.user_id,
        body.amount,
        body.description,
        metadata={**body.metadata, "granted_by": admin.id},
        kind=body.kind,
    )
    log.info("admin_credits_granted", admin_id=admin.id, user_id=body.user_id, amount=body.amount)
    return {"transaction_id": result.transaction_id, "new_balance": result.new_balance}
