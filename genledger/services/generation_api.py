"""HTTP client for the remote asynchronous image-generation API."""

from dataclasses import dataclass, field

import httpx

from genledger.core.config import Settings
from genledger.core.exceptions import UpstreamRejectedError, UpstreamUnavailableError
from genledger.core.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class RemoteTaskStatus:
    status: str  # succeeded | failed | processing | unknown (anything else passes through)
    result_urls: list[str] = field(default_factory=list)
    error_message: str | None = None


class GenerationApiClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self.base_url = settings.generation_api_base_url.rstrip("/")
        self.api_key = settings.generation_api_key
        self.model = settings.generation_model
        self.language = settings.generation_status_language
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=settings.generation_timeout_seconds,
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise UpstreamUnavailableError("Generation API key is not configured")
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def submit_task(self, prompt: str, size: str, resolution: str, n: int) -> str:
        """Start a generation task; return the remote task id."""
        headers = self._headers()
        payload = {
            "model": self.model,
            "prompt": prompt,
            "size": size,
            "n": n,
            "resolution": resolution,
            "image_urls": [],
        }
        try:
            resp = await self.http.post(f"{self.base_url}/images/generations", json=payload, headers=headers)
        except httpx.RequestError as e:
            log.warning("generation_submit_transport_error", error=str(e))
            raise UpstreamUnavailableError(f"Generation API unreachable: {e}") from e
        if resp.is_error:
            log.warning("generation_submit_rejected", status_code=resp.status_code)
            raise UpstreamRejectedError(
                "Generation API request failed",
                details={"upstream_status": resp.status_code},
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamRejectedError("Invalid generation API response") from e
        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not task_id or not isinstance(task_id, str):
            log.warning("generation_submit_missing_task_id")
            raise UpstreamRejectedError("Invalid generation API response: missing task_id")
        return task_id

    async def get_task(self, task_id: str) -> RemoteTaskStatus:
        """Fetch remote task status. Any failure to get a usable answer is UpstreamUnavailable."""
        headers = self._headers()
        try:
            resp = await self.http.get(
                f"{self.base_url}/tasks/{task_id}",
                params={"language": self.language},
                headers=headers,
            )
        except httpx.RequestError as e:
            log.warning("generation_status_transport_error", task_id=task_id, error=str(e))
            raise UpstreamUnavailableError(f"Generation API unreachable: {e}") from e
        if resp.is_error:
            log.warning("generation_status_error", task_id=task_id, status_code=resp.status_code)
            raise UpstreamUnavailableError(
                "Failed to check task status with generation API",
                details={"upstream_status": resp.status_code},
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamUnavailableError("Invalid generation API status response") from e
        if not isinstance(data, dict):
            data = {}
        error = data.get("error") if isinstance(data.get("error"), dict) else {}
        urls = data.get("result_urls") or []
        if isinstance(urls, str):
            urls = [urls]
        elif not isinstance(urls, list):
            urls = []
        return RemoteTaskStatus(
            status=data.get("task_status") or "unknown",
            result_urls=[u for u in urls if isinstance(u, str)],
            error_message=error.get("message"),
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
