from datetime import datetime

from beanie import Document
from pydantic import Field


class Project(Document):
    """User workspace; every account gets a default one on initialization."""
    user_id: str
    name: str
    is_default: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "user_projects"
        indexes = [[("user_id", 1)]]
