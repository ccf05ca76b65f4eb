import os
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("MONGODB_DB_NAME", "genledger_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("GENERATION_API_KEY", "test-api-key")


class FakeUpstream:
    """Programmable stand-in for the generation API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.on_submit: Callable[[httpx.Request], httpx.Response] = lambda req: httpx.Response(
            200, json={"task_id": "task-123"}
        )
        self.on_status: Callable[[httpx.Request], httpx.Response] = lambda req: httpx.Response(
            200, json={"task_status": "processing"}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path.endswith("/images/generations"):
            return self.on_submit(request)
        if request.method == "GET" and "/tasks/" in request.url.path:
            return self.on_status(request)
        return httpx.Response(404, json={"error": {"message": "not found"}})

    def status(self, task_status: str | None, **extra) -> None:
        body = dict(extra)
        if task_status is not None:
            body["task_status"] = task_status
        self.on_status = lambda req: httpx.Response(200, json=body)

    @property
    def submit_calls(self) -> int:
        return sum(1 for r in self.requests if r.method == "POST")


@pytest.fixture
def settings():
    from genledger.core.config import Settings
    return Settings(
        _env_file=None,
        secret_key="test-secret-key-min-32-characters-long",
        generation_api_key="test-api-key",
        generation_api_base_url="https://upstream.test/v1",
        reconcile_min_age_seconds=0,
    )


@pytest_asyncio.fixture
async def db() -> None:
    from mongomock_motor import AsyncMongoMockClient

    from genledger.db.init import init_db
    await init_db(client=AsyncMongoMockClient())


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest_asyncio.fixture
async def api(settings, upstream):
    from genledger.services.generation_api import GenerationApiClient
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    client = GenerationApiClient(settings, http=http)
    yield client
    await http.aclose()


@pytest_asyncio.fixture
async def client(db, settings, api) -> AsyncGenerator[AsyncClient, None]:
    from genledger.core.config import get_settings
    from genledger.deps import get_generation_client
    from genledger.main import app
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_generation_client] = lambda: api
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(settings) -> Callable[[str], dict[str, str]]:
    from genledger.core.security import create_access_token

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, settings)}"}
    return _headers


async def assert_ledger_consistent(user_id: str) -> None:
    from genledger.models.credit_account import CreditAccount
    account = await CreditAccount.find_one(CreditAccount.user_id == user_id)
    assert account is not None
    assert account.balance >= 0
    assert account.balance == account.total_recharged - account.total_consumed


@pytest.fixture
def check_ledger():
    return assert_ledger_consistent
