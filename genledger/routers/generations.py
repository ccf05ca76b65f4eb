from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field

from genledger.core.config import Settings, get_settings
from genledger.deps import CurrentUser, get_current_user, get_generation_client
from genledger.services import generation as generation_service
from genledger.services import reconcile as reconcile_service
from genledger.services.generation_api import GenerationApiClient

router = APIRouter()


class GenerationCreate(BaseModel):
    prompt: str
    resolution: str
    size: str | None = None
    count: int = Field(default=1, validation_alias=AliasChoices("n", "count"))
    project_id: str | None = None


class TaskCheck(BaseModel):
    task_id: str
    job_id: str | None = Field(default=None, validation_alias=AliasChoices("generation_id", "job_id"))
    transaction_id: str | None = None


@router.post("")
async def generation_create(
    body: GenerationCreate,
    user: CurrentUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    api: GenerationApiClient = Depends(get_generation_client),
):
    """Charge credits and start a remote generation task."""
    result = await generation_service.submit_generation(
        settings,
        api,
        user.id,
        generation_service.GenerationRequest(
            prompt=body.prompt,
            resolution=body.resolution,
            count=body.count,
            size=body.size,
            project_id=body.project_id,
        ),
    )
    return {
        "success": True,
        "task_id": result.task_id,
        "job_id": result.job_id,
        "transaction_id": result.transaction_id,
        "new_balance": result.new_balance,
        "cost": result.cost,
    }


@router.post("/check")
async def generation_check(
    body: TaskCheck,
    user: CurrentUser = Depends(get_current_user),
    api: GenerationApiClient = Depends(get_generation_client),
):
    """Poll the remote task once and settle the job record / ledger."""
    result = await reconcile_service.reconcile_task(
        api,
        user.id,
        body.task_id,
        job_id=body.job_id,
        transaction_id=body.transaction_id,
    )
    return result.to_dict()


@router.get("")
async def generation_list(
    user: CurrentUser = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Return the caller's generation jobs (newest first)."""
    jobs = await generation_service.list_jobs(user.id, limit, offset)
    return {
        "jobs": [
            {
                "id": str(j.id),
                "project_id": j.project_id,
                "prompt": j.prompt,
                "config": j.config,
                "cost": j.cost,
                "task_id": j.remote_task_id,
                "transaction_id": j.transaction_id,
                "status": j.status,
                "result_urls": j.result_urls,
                "error_message": j.error_message,
                "created_at": j.created_at.isoformat(),
                "completed_at": j.completed_at.isoformat() if j.completed_at else None,
            }
            for j in jobs
        ],
        "limit": limit,
        "offset": offset,
    }
