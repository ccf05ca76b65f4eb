from datetime import datetime
from typing import Any, Literal

from beanie import Document
from pydantic import Field

JobStatus = Literal["pending", "succeeded", "failed"]


class GenerationJob(Document):
    user_id: str
    project_id: str | None = None
    prompt: str
    config: dict[str, Any] = Field(default_factory=dict)  # size, resolution, n
    cost: int
    remote_task_id: str
    transaction_id: str | None = None
    status: JobStatus = "pending"
    result_urls: list[str] = Field(default_factory=list)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
    last_checked_at: datetime | None = None  # last sweep pass

    class Settings:
        name = "generation_logs"
        indexes = [
            [("user_id", 1), ("status", 1)],
            [("user_id", 1), ("created_at", -1)],
            [("remote_task_id", 1)],
            [("status", 1), ("created_at", 1)],
            [("status", 1), ("last_checked_at", 1), ("created_at", 1)],
        ]
