from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]

_DEFAULT_RESOLUTION_COSTS = {"1K": 5, "2K": 5, "4K": 10}


def _parse_csv_list(v: Any, default: List[str]) -> List[str]:
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return default.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or default.copy()
    except ValueError:
        return default.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="genledger", alias="MONGODB_DB_NAME")

    # Redis (reconcile sweep worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_csv_list(getattr(self, "cors_origins_raw", None), _DEFAULT_CORS)

    # Auth
    access_token_max_age_seconds: int = 7 * 24 * 3600
    admin_user_ids_raw: str = Field(default="", alias="ADMIN_USER_IDS")

    @property
    def admin_user_ids(self) -> List[str]:
        return _parse_csv_list(getattr(self, "admin_user_ids_raw", None), [])

    # Remote image generation API
    generation_api_base_url: str = Field(default="https://api.apimart.ai/v1", alias="GENERATION_API_BASE_URL")
    generation_api_key: str = Field(default="", alias="GENERATION_API_KEY")
    generation_model: str = Field(default="gemini-3-pro-image-preview", alias="GENERATION_MODEL")
    generation_status_language: str = Field(default="zh", alias="GENERATION_STATUS_LANGUAGE")
    generation_timeout_seconds: float = Field(default=60.0, alias="GENERATION_TIMEOUT_SECONDS")

    # Pricing (credits per image)
    resolution_costs: dict[str, int] = Field(
        default_factory=lambda: dict(_DEFAULT_RESOLUTION_COSTS),
        alias="RESOLUTION_COSTS",
    )
    min_images_per_job: int = 1
    max_images_per_job: int = 4
    default_image_size: str = "1:1"

    # Account setup
    initial_bonus_credits: int = Field(default=0, ge=0, alias="INITIAL_BONUS_CREDITS")
    default_project_name: str = Field(default="Default project", alias="DEFAULT_PROJECT_NAME")

    # Reconcile sweep
    reconcile_min_age_seconds: int = 30
    reconcile_batch_size: int = 50

    def cost_per_image(self, resolution: str) -> int | None:
        """Per-image credit cost, or None for an unsupported resolution."""
        return self.resolution_costs.get(resolution)


@lru_cache
def get_settings() -> Settings:
    return Settings()
