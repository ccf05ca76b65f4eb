"""Read-only balance, history and job outcome summary."""

from genledger.models.generation_job import GenerationJob
from genledger.services import ledger

JOB_STATUSES = ("succeeded", "failed", "pending")


async def generation_stats(user_id: str) -> dict[str, int]:
    rows = await GenerationJob.find(GenerationJob.user_id == user_id).aggregate(
        [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
    ).to_list()
    counts = {row["_id"]: row["count"] for row in rows}
    stats = {"total": sum(counts.values())}
    for status in JOB_STATUSES:
        stats[status] = counts.get(status, 0)
    return stats


def transaction_to_dict(tx) -> dict:
    return {
        "id": str(tx.id),
        "kind": tx.kind,
        "amount": tx.amount,
        "balance_after": tx.balance_after,
        "description": tx.description,
        "metadata": tx.metadata,
        "refunded": tx.refunded,
        "refund_of": str(tx.refund_of) if tx.refund_of else None,
        "created_at": tx.created_at.isoformat(),
    }


async def credits_summary(user_id: str, limit: int) -> dict:
    account = await ledger.get_account(user_id)
    credits = {
        "balance": account.balance if account else 0,
        "total_recharged": account.total_recharged if account else 0,
        "total_consumed": account.total_consumed if account else 0,
    }
    transactions = await ledger.recent_transactions(user_id, limit)
    return {
        "credits": credits,
        **credits,
        "transactions": [transaction_to_dict(tx) for tx in transactions],
        "generation_stats": await generation_stats(user_id),
    }
