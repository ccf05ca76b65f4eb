"""Job submission: validate, charge, call the generation API, compensate on failure."""

import asyncio
from dataclasses import dataclass

from pymongo.errors import PyMongoError

from genledger.core.config import Settings
from genledger.core.exceptions import AppError, InvalidInputError
from genledger.core.logging import get_logger
from genledger.models.generation_job import GenerationJob
from genledger.services import ledger
from genledger.services.generation_api import GenerationApiClient

log = get_logger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    resolution: str
    count: int = 1
    size: str | None = None
    project_id: str | None = None


@dataclass(frozen=True)
class SubmitResult:
    task_id: str
    job_id: str | None
    transaction_id: str
    new_balance: int
    cost: int


def compute_cost(settings: Settings, resolution: str, count: int) -> int:
    per_image = settings.cost_per_image(resolution)
    if per_image is None:
        supported = ", ".join(sorted(settings.resolution_costs))
        raise InvalidInputError(
            f"Invalid resolution. Must be one of {supported}",
            details={"resolution": resolution},
        )
    return per_image * count


def validate_request(settings: Settings, req: GenerationRequest) -> int:
    """Check the request shape and return its cost. No side effects."""
    if not isinstance(req.prompt, str) or not req.prompt.strip():
        raise InvalidInputError("Invalid prompt")
    if (
        isinstance(req.count, bool)
        or not isinstance(req.count, int)
        or not settings.min_images_per_job <= req.count <= settings.max_images_per_job
    ):
        raise InvalidInputError(
            f"Invalid number of images. Must be between "
            f"{settings.min_images_per_job} and {settings.max_images_per_job}",
            details={"count": req.count},
        )
    if not isinstance(req.resolution, str):
        raise InvalidInputError("Invalid resolution")
    return compute_cost(settings, req.resolution, req.count)


class ChargeCompensation:
    """
    Saga step guarding a charge. Registered right after deduct; on any
    exit from the block that did not call commit(), the charge is
    refunded before the error propagates.
    """

    def __init__(self, charge: ledger.ChargeResult, user_id: str) -> None:
        self.charge = charge
        self.user_id = user_id
        self.committed = False
        self.refund: ledger.RefundResult | None = None

    def commit(self) -> None:
        self.committed = True

    async def __aenter__(self) -> "ChargeCompensation":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.committed:
            return False
        # shield: the refund must finish even if the request is being cancelled
        self.refund = await asyncio.shield(self._compensate(exc))
        if isinstance(exc, AppError):
            exc.details["transaction_id"] = self.charge.transaction_id
            exc.details["credits_refunded"] = self.refund.amount if self.refund.refunded else 0
        return False

    async def _compensate(self, exc: BaseException | None) -> ledger.RefundResult:
        reason = type(exc).__name__ if exc is not None else "uncommitted"
        try:
            result = await ledger.refund(self.charge.transaction_id)
        except Exception:
            # not retried; the charge stays unrefunded until swept manually
            log.exception(
                "compensation_failed",
                user_id=self.user_id,
                transaction_id=self.charge.transaction_id,
                amount=self.charge.amount,
                reason=reason,
            )
            return ledger.RefundResult(refunded=False)
        log.info(
            "charge_compensated",
            user_id=self.user_id,
            transaction_id=self.charge.transaction_id,
            refunded=result.refunded,
            reason=reason,
        )
        return result


async def _persist_job(
    user_id: str,
    req: GenerationRequest,
    size: str,
    cost: int,
    task_id: str,
    transaction_id: str,
) -> GenerationJob | None:
    job = GenerationJob(
        user_id=user_id,
        project_id=req.project_id,
        prompt=req.prompt,
        config={"size": size, "resolution": req.resolution, "n": req.count},
        cost=cost,
        remote_task_id=task_id,
        transaction_id=transaction_id,
        status="pending",
    )
    try:
        await job.insert()
    except PyMongoError:
        log.exception("generation_job_persist_failed", user_id=user_id, task_id=task_id)
        return None
    return job


async def submit_generation(
    settings: Settings,
    api: GenerationApiClient,
    user_id: str,
    req: GenerationRequest,
) -> SubmitResult:
    cost = validate_request(settings, req)
    size = req.size or settings.default_image_size

    charge = await ledger.deduct(
        user_id,
        cost,
        description=f"Generate {req.resolution} image x {req.count}",
        metadata={
            "resolution": req.resolution,
            "count": req.count,
            "project_id": req.project_id,
            "size": size,
        },
    )

    async with ChargeCompensation(charge, user_id) as saga:
        task_id = await api.submit_task(req.prompt, size, req.resolution, req.count)
        saga.commit()

    job = await _persist_job(user_id, req, size, cost, task_id, charge.transaction_id)
    log.info(
        "generation_submitted",
        user_id=user_id,
        task_id=task_id,
        job_id=str(job.id) if job else None,
        cost=cost,
    )
    return SubmitResult(
        task_id=task_id,
        job_id=str(job.id) if job else None,
        transaction_id=charge.transaction_id,
        new_balance=charge.new_balance,
        cost=cost,
    )


async def list_jobs(user_id: str, limit: int, offset: int) -> list[GenerationJob]:
    return (
        await GenerationJob.find(GenerationJob.user_id == user_id)
        .sort(-GenerationJob.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def get_job(user_id: str, job_id: str | None) -> GenerationJob | None:
    if not job_id:
        return None
    oid = ledger.parse_object_id(job_id)
    if oid is None:
        return None
    return await GenerationJob.find_one(GenerationJob.id == oid, GenerationJob.user_id == user_id)
