from datetime import datetime
from typing import Any, Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

TransactionKind = Literal["charge", "refund", "bonus", "recharge"]


class CreditTransaction(Document):
    user_id: str
    kind: TransactionKind
    amount: int  # positive = credit, negative = debit
    balance_after: int
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    # charges only
    refunded: bool = False
    refunded_at: datetime | None = None
    refund_transaction_id: PydanticObjectId | None = None
    # refunds only
    refund_of: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("refund_of", 1)],
        ]
