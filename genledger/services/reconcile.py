"""Task reconciliation: map a remote task's status onto the job record and ledger."""

from dataclasses import dataclass, field
from datetime import datetime

from beanie.operators import Set
from pymongo.errors import PyMongoError

from genledger.core.exceptions import InvalidInputError
from genledger.core.logging import get_logger
from genledger.models.generation_job import GenerationJob
from genledger.services import ledger
from genledger.services.generation import get_job
from genledger.services.generation_api import GenerationApiClient

log = get_logger(__name__)

DEFAULT_FAILURE_MESSAGE = "Generation failed"


@dataclass
class ReconcileResult:
    status: str  # succeeded | failed | processing
    task_id: str
    urls: list[str] = field(default_factory=list)
    error: str | None = None
    credits_refunded: bool | None = None
    refunded_amount: int = 0
    new_balance: int | None = None

    def to_dict(self) -> dict:
        out: dict = {"status": self.status, "task_id": self.task_id}
        if self.status == "succeeded":
            out["urls"] = self.urls
        elif self.status == "failed":
            out["error"] = self.error
            out["credits_refunded"] = bool(self.credits_refunded)
            out["new_balance"] = self.new_balance
        return out


async def _find_job(user_id: str, task_id: str, job_id: str | None) -> GenerationJob | None:
    if job_id:
        job = await get_job(user_id, job_id)
        if job is not None and job.remote_task_id == task_id:
            return job
        log.warning("reconcile_job_mismatch", task_id=task_id, job_id=job_id)
    return await GenerationJob.find_one(
        GenerationJob.remote_task_id == task_id,
        GenerationJob.user_id == user_id,
    )


async def _refundable_transaction(
    user_id: str,
    task_id: str,
    job: GenerationJob | None,
    transaction_id: str | None,
) -> str | None:
    """
    The charge a failed task may release. With a job record only its own
    charge qualifies; without one, a charge tied to another task or to a
    delivered job is refused.
    """
    if job is not None:
        if job.status == "succeeded":
            log.warning("task_failed_after_success", task_id=task_id, job_id=str(job.id))
            return None
        if transaction_id and transaction_id != job.transaction_id:
            log.warning("reconcile_transaction_mismatch", task_id=task_id, job_id=str(job.id))
        return job.transaction_id
    if not transaction_id:
        return None
    linked = await GenerationJob.find_one(
        GenerationJob.transaction_id == transaction_id,
        GenerationJob.user_id == user_id,
    )
    if linked is not None and (linked.remote_task_id != task_id or linked.status == "succeeded"):
        log.warning(
            "reconcile_transaction_refused",
            task_id=task_id,
            transaction_id=transaction_id,
            linked_task_id=linked.remote_task_id,
        )
        return None
    return transaction_id


async def _finish_job(job: GenerationJob | None, user_id: str, status: str, **fields) -> None:
    """Move a pending job to a terminal status. No-op if already terminal or not owned."""
    if job is None:
        return
    try:
        await GenerationJob.find_one(
            GenerationJob.id == job.id,
            GenerationJob.user_id == user_id,
            GenerationJob.status == "pending",
        ).update(Set({"status": status, "completed_at": datetime.utcnow(), **fields}))
    except PyMongoError:
        log.exception("generation_job_update_failed", job_id=str(job.id), status=status)


async def reconcile_task(
    api: GenerationApiClient,
    user_id: str,
    task_id: str,
    job_id: str | None = None,
    transaction_id: str | None = None,
) -> ReconcileResult:
    """
    Single check-and-update pass for one remote task.

    succeeded -> job record succeeded with result URLs, ledger untouched
    failed    -> refund the charge (idempotent), job record failed
    anything else, including unknown statuses -> processing, no mutation
    """
    if not task_id or not isinstance(task_id, str):
        raise InvalidInputError("Missing required parameter: task_id")

    remote = await api.get_task(task_id)

    if remote.status == "succeeded":
        job = await _find_job(user_id, task_id, job_id)
        await _finish_job(job, user_id, "succeeded", result_urls=remote.result_urls)
        log.info("task_reconciled", task_id=task_id, status="succeeded", user_id=user_id)
        return ReconcileResult(status="succeeded", task_id=task_id, urls=remote.result_urls)

    if remote.status == "failed":
        error_message = remote.error_message or DEFAULT_FAILURE_MESSAGE
        job = await _find_job(user_id, task_id, job_id)
        tx_id = await _refundable_transaction(user_id, task_id, job, transaction_id)
        # a store error here propagates and leaves the job pending, so the next pass retries
        refund = ledger.RefundResult(refunded=False)
        if tx_id:
            refund = await ledger.refund(tx_id, user_id=user_id)
        new_balance = refund.new_balance
        if new_balance is None:
            new_balance = await ledger.get_balance(user_id)
        await _finish_job(job, user_id, "failed", error_message=error_message)
        log.info(
            "task_reconciled",
            task_id=task_id,
            status="failed",
            user_id=user_id,
            credits_refunded=refund.refunded,
        )
        return ReconcileResult(
            status="failed",
            task_id=task_id,
            error=error_message,
            credits_refunded=refund.refunded,
            refunded_amount=refund.amount,
            new_balance=new_balance,
        )

    if remote.status not in ("processing", "unknown"):
        log.info("task_status_unrecognized", task_id=task_id, remote_status=remote.status)
    return ReconcileResult(status="processing", task_id=task_id)
