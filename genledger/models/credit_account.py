from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class CreditAccount(Document):
    """Per-user ledger row. balance == total_recharged - total_consumed."""
    user_id: Indexed(str, unique=True)
    balance: int = 0
    total_recharged: int = 0
    total_consumed: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "user_credits"
