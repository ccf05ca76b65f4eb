"""First-time account setup: ledger row, signup bonus, default project."""

from dataclasses import dataclass

from pymongo.errors import PyMongoError

from genledger.core.config import Settings
from genledger.core.logging import get_logger
from genledger.models.project import Project
from genledger.services import ledger

log = get_logger(__name__)


@dataclass(frozen=True)
class InitializeResult:
    already_initialized: bool
    balance: int
    transaction_id: str | None = None
    initial_bonus: int = 0


async def initialize_account(settings: Settings, user_id: str) -> InitializeResult:
    """Idempotent: a second call (or the loser of a concurrent race) changes nothing."""
    existing = await ledger.get_account(user_id)
    if existing:
        return InitializeResult(already_initialized=True, balance=existing.balance)

    bonus = settings.initial_bonus_credits
    # the row and its bonus are created together; a failed write leaves no row behind
    credit = await ledger.add(
        user_id,
        bonus,
        description="Signup bonus",
        metadata={"type": "signup_bonus"},
        kind="bonus",
        create_only=True,
    )
    if credit is None:
        log.info("account_init_race_lost", user_id=user_id)
        return InitializeResult(already_initialized=True, balance=await ledger.get_balance(user_id))

    try:
        await Project(user_id=user_id, name=settings.default_project_name, is_default=True).insert()
    except PyMongoError:
        log.exception("default_project_create_failed", user_id=user_id)

    log.info("account_initialized", user_id=user_id, bonus=bonus, balance=credit.new_balance)
    return InitializeResult(
        already_initialized=False,
        balance=credit.new_balance,
        transaction_id=credit.transaction_id,
        initial_bonus=bonus,
    )
