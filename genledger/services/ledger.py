"""Credits ledger: atomic deduct / refund / add.

Every primitive is a single conditional update on one document, so two
concurrent calls for the same user serialize inside MongoDB:

* deduct  -- ``$inc`` on the account guarded by ``balance >= amount``
* refund  -- flips ``refunded`` on the charge guarded by ``refunded == False``
             (the claim), then credits the account
* add     -- upserting ``$inc`` on the account, or with create_only a
             ``$setOnInsert`` upsert that credits only a new row

The transaction record is written right after the counter update. If that
write fails the counter update is reverted before the error propagates,
so callers never observe a balance change without its transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from genledger.core.exceptions import InsufficientCreditsError, InvalidInputError
from genledger.core.logging import get_logger
from genledger.models.credit_account import CreditAccount
from genledger.models.credit_transaction import CreditTransaction

log = get_logger(__name__)

ADD_KINDS = ("bonus", "recharge")


@dataclass(frozen=True)
class ChargeResult:
    transaction_id: str
    amount: int
    new_balance: int


@dataclass(frozen=True)
class RefundResult:
    refunded: bool
    amount: int = 0
    new_balance: int | None = None
    transaction_id: str | None = None


@dataclass(frozen=True)
class CreditResult:
    transaction_id: str
    new_balance: int


def _accounts():
    return CreditAccount.get_motor_collection()


def _transactions():
    return CreditTransaction.get_motor_collection()


def parse_object_id(value: str | PydanticObjectId | None) -> PydanticObjectId | None:
    if value is None:
        return None
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError, ValueError):
        return None


async def get_account(user_id: str) -> CreditAccount | None:
    return await CreditAccount.find_one(CreditAccount.user_id == user_id)


async def get_balance(user_id: str) -> int:
    """Return current balance for user (0 if no ledger row)."""
    account = await get_account(user_id)
    return account.balance if account else 0


async def deduct(
    user_id: str,
    amount: int,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> ChargeResult:
    """Charge amount credits. Raises InsufficientCreditsError with no mutation."""
    if amount <= 0:
        raise InvalidInputError("Charge amount must be positive")
    now = datetime.utcnow()
    account = await _accounts().find_one_and_update(
        {"user_id": user_id, "balance": {"$gte": amount}},
        {
            "$inc": {"balance": -amount, "total_consumed": amount},
            "$set": {"updated_at": now},
        },
        return_document=ReturnDocument.AFTER,
    )
    if account is None:
        balance = await get_balance(user_id)
        log.info("credits_insufficient", user_id=user_id, required=amount, balance=balance)
        raise InsufficientCreditsError(required=amount, balance=balance)

    tx = CreditTransaction(
        user_id=user_id,
        kind="charge",
        amount=-amount,
        balance_after=account["balance"],
        description=description,
        metadata=metadata or {},
        created_at=now,
    )
    try:
        await tx.insert()
    except PyMongoError:
        await _accounts().update_one(
            {"user_id": user_id},
            {"$inc": {"balance": amount, "total_consumed": -amount}},
        )
        log.exception("credits_deduct_reverted", user_id=user_id, amount=amount)
        raise
    log.info(
        "credits_deducted",
        user_id=user_id,
        amount=amount,
        transaction_id=str(tx.id),
        new_balance=account["balance"],
    )
    return ChargeResult(transaction_id=str(tx.id), amount=amount, new_balance=account["balance"])


async def refund(transaction_id: str | None, user_id: str | None = None) -> RefundResult:
    """
    Reverse a prior charge. Idempotent: an unknown, non-charge or already
    refunded transaction id returns refunded=False and mutates nothing.
    If user_id is given, only that user's charges are eligible.
    """
    oid = parse_object_id(transaction_id)
    if oid is None:
        log.info("refund_skipped", transaction_id=transaction_id, reason="invalid_id")
        return RefundResult(refunded=False)

    claim_filter: dict[str, Any] = {"_id": oid, "kind": "charge", "refunded": False}
    if user_id is not None:
        claim_filter["user_id"] = user_id
    now = datetime.utcnow()
    charge = await _transactions().find_one_and_update(
        claim_filter,
        {"$set": {"refunded": True, "refunded_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if charge is None:
        log.info("refund_skipped", transaction_id=transaction_id, reason="not_refundable")
        balance = await get_balance(user_id) if user_id else None
        return RefundResult(refunded=False, new_balance=balance)

    owner = charge["user_id"]
    amount = -int(charge["amount"])
    credited = False
    try:
        account = await _accounts().find_one_and_update(
            {"user_id": owner},
            {
                "$inc": {"balance": amount, "total_consumed": -amount},
                "$set": {"updated_at": now},
            },
            return_document=ReturnDocument.AFTER,
        )
        if account is None:
            # charge exists without its account row; release the claim
            raise PyMongoError(f"credit account missing for user {owner}")
        credited = True
        refund_tx = CreditTransaction(
            user_id=owner,
            kind="refund",
            amount=amount,
            balance_after=account["balance"],
            description=f"Refund: {charge.get('description', '')}".strip(),
            metadata=dict(charge.get("metadata") or {}),
            refund_of=oid,
            created_at=now,
        )
        await refund_tx.insert()
    except PyMongoError:
        if credited:
            await _accounts().update_one(
                {"user_id": owner},
                {"$inc": {"balance": -amount, "total_consumed": amount}},
            )
        await _transactions().update_one(
            {"_id": oid},
            {"$set": {"refunded": False, "refunded_at": None}},
        )
        log.exception("credits_refund_reverted", transaction_id=str(oid))
        raise

    await _transactions().update_one(
        {"_id": oid},
        {"$set": {"refund_transaction_id": refund_tx.id}},
    )
    log.info(
        "credits_refunded",
        user_id=owner,
        amount=amount,
        transaction_id=str(oid),
        new_balance=account["balance"],
    )
    return RefundResult(
        refunded=True,
        amount=amount,
        new_balance=account["balance"],
        transaction_id=str(refund_tx.id),
    )


async def add(
    user_id: str,
    amount: int,
    description: str,
    metadata: dict[str, Any] | None = None,
    kind: str = "bonus",
    create_only: bool = False,
) -> CreditResult | None:
    """
    Unconditional credit. Creates the ledger row if missing.

    With create_only the credit is applied only when it creates the row;
    returns None if the row already exists.
    """
    if amount < 0:
        raise InvalidInputError("Credit amount must not be negative")
    if kind not in ADD_KINDS:
        raise InvalidInputError(f"Invalid credit kind: {kind}")
    now = datetime.utcnow()
    if create_only:
        try:
            before = await _accounts().find_one_and_update(
                {"user_id": user_id},
                {
                    "$setOnInsert": {
                        "balance": amount,
                        "total_recharged": amount,
                        "total_consumed": 0,
                        "created_at": now,
                        "updated_at": now,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.BEFORE,
            )
        except DuplicateKeyError:
            return None
        if before is not None:
            return None
        account = {"balance": amount}
    else:
        account = await _accounts().find_one_and_update(
            {"user_id": user_id},
            {
                "$inc": {"balance": amount, "total_recharged": amount, "total_consumed": 0},
                "$set": {"updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    tx = CreditTransaction(
        user_id=user_id,
        kind=kind,
        amount=amount,
        balance_after=account["balance"],
        description=description,
        metadata=metadata or {},
        created_at=now,
    )
    try:
        await tx.insert()
    except PyMongoError:
        if create_only:
            # row is still as created; remove it
            await _accounts().delete_one(
                {"user_id": user_id, "total_recharged": amount, "total_consumed": 0}
            )
        else:
            await _accounts().update_one(
                {"user_id": user_id},
                {"$inc": {"balance": -amount, "total_recharged": -amount}},
            )
        log.exception("credits_add_reverted", user_id=user_id, amount=amount)
        raise

    log.info(
        "credits_added",
        user_id=user_id,
        amount=amount,
        kind=kind,
        transaction_id=str(tx.id),
        new_balance=account["balance"],
    )
    return CreditResult(transaction_id=str(tx.id), new_balance=account["balance"])


async def recent_transactions(user_id: str, limit: int) -> list[CreditTransaction]:
    return (
        await CreditTransaction.find(CreditTransaction.user_id == user_id)
        .sort(-CreditTransaction.created_at)
        .limit(limit)
        .to_list()
    )
