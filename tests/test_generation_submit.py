"""Job submission: cost, validation and deduct-then-compensate."""

import json

import httpx
import pytest

from genledger.core.exceptions import (
    InsufficientCreditsError,
    InvalidInputError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from genledger.models.credit_transaction import CreditTransaction
from genledger.models.generation_job import GenerationJob
from genledger.services import ledger
from genledger.services.generation import GenerationRequest, compute_cost, submit_generation
from genledger.services.generation_api import GenerationApiClient

pytestmark = pytest.mark.asyncio


async def _funded(user_id: str = "u1", amount: int = 100) -> None:
    await ledger.add(user_id, amount, "Top-up", kind="recharge")


async def test_compute_cost(settings):
    assert compute_cost(settings, "1K", 1) == 5
    assert compute_cost(settings, "2K", 3) == 10
    assert compute_cost(settings, "4K", 2) == 20


async def test_submit_charges_and_records_pending_job(db, settings, api, upstream, check_ledger):
    await _funded()
    result = await submit_generation(
        settings,
        api,
        "u1",
        GenerationRequest(prompt="a cat", resolution="4K", count=2, size="16:9", project_id="p1"),
    )
    assert result.cost == 20
    assert result.new_balance == 80
    assert result.task_id == "task-123"
    assert await ledger.get_balance("u1") == 80

    job = await GenerationJob.find_one(GenerationJob.remote_task_id == "task-123")
    assert job is not None
    assert str(job.id) == result.job_id
    assert job.status == "pending"
    assert job.transaction_id == result.transaction_id
    assert job.cost == 20
    assert job.config == {"size": "16:9", "resolution": "4K", "n": 2}
    assert job.project_id == "p1"

    sent = json.loads(upstream.requests[0].content)
    assert sent["prompt"] == "a cat"
    assert sent["n"] == 2
    assert sent["resolution"] == "4K"
    assert sent["size"] == "16:9"
    assert sent["image_urls"] == []
    assert upstream.requests[0].headers["Authorization"] == "Bearer test-api-key"
    await check_ledger("u1")


async def test_submit_defaults_size(db, settings, api, upstream):
    await _funded()
    await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="1K"))
    assert json.loads(upstream.requests[0].content)["size"] == "1:1"


@pytest.mark.parametrize(
    "req",
    [
        GenerationRequest(prompt="a cat", resolution="1K", count=5),
        GenerationRequest(prompt="a cat", resolution="1K", count=0),
        GenerationRequest(prompt="a cat", resolution="3K", count=1),
        GenerationRequest(prompt="", resolution="1K", count=1),
        GenerationRequest(prompt="   ", resolution="1K", count=1),
    ],
)
async def test_submit_invalid_input_has_no_side_effects(db, settings, api, upstream, req):
    await _funded()
    with pytest.raises(InvalidInputError):
        await submit_generation(settings, api, "u1", req)
    assert await ledger.get_balance("u1") == 100
    assert await CreditTransaction.find(CreditTransaction.kind == "charge").count() == 0
    assert upstream.requests == []


async def test_submit_insufficient_credits_skips_upstream(db, settings, api, upstream):
    await _funded(amount=5)
    with pytest.raises(InsufficientCreditsError):
        await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="4K"))
    assert upstream.requests == []
    assert await ledger.get_balance("u1") == 5


async def test_upstream_error_status_is_refunded(db, settings, api, upstream, check_ledger):
    await _funded()
    upstream.on_submit = lambda req: httpx.Response(500, json={"error": {"message": "boom"}})

    with pytest.raises(UpstreamRejectedError) as exc_info:
        await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="4K", count=2))

    assert exc_info.value.details["credits_refunded"] == 20
    assert exc_info.value.details["upstream_status"] == 500
    assert await ledger.get_balance("u1") == 100
    charge = await CreditTransaction.find_one(CreditTransaction.kind == "charge")
    assert charge.refunded is True
    assert await GenerationJob.find_all().count() == 0
    await check_ledger("u1")


async def test_upstream_transport_error_is_refunded(db, settings, api, upstream):
    await _funded()

    def _unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.on_submit = _unreachable
    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="1K"))
    assert exc_info.value.details["credits_refunded"] == 5
    assert await ledger.get_balance("u1") == 100


async def test_upstream_redirect_loop_is_refunded(db, settings, api, upstream, check_ledger):
    await _funded()

    def _loop(request):
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    upstream.on_submit = _loop
    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="1K"))
    assert exc_info.value.details["credits_refunded"] == 5
    assert await ledger.get_balance("u1") == 100
    assert await CreditTransaction.find(CreditTransaction.kind == "refund").count() == 1
    await check_ledger("u1")


async def test_upstream_timeout_is_refunded(db, settings, api, upstream):
    await _funded()

    def _slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    upstream.on_submit = _slow
    with pytest.raises(UpstreamUnavailableError):
        await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="1K"))
    assert await ledger.get_balance("u1") == 100


@pytest.mark.parametrize("body", [{}, {"task_id": ""}, {"data": {"task_id": "nested"}}])
async def test_upstream_missing_task_id_is_refunded(db, settings, api, upstream, body):
    await _funded()
    upstream.on_submit = lambda req: httpx.Response(200, json=body)
    with pytest.raises(UpstreamRejectedError):
        await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="2K"))
    assert await ledger.get_balance("u1") == 100


async def test_missing_api_key_is_refunded(db, settings, upstream):
    await _funded()
    unconfigured = settings.model_copy(update={"generation_api_key": ""})
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    api = GenerationApiClient(unconfigured, http=http)
    try:
        with pytest.raises(UpstreamUnavailableError):
            await submit_generation(unconfigured, api, "u1", GenerationRequest(prompt="x", resolution="1K"))
    finally:
        await http.aclose()
    assert upstream.requests == []
    assert await ledger.get_balance("u1") == 100


async def test_job_persist_failure_keeps_charge(db, settings, api, monkeypatch):
    from pymongo.errors import PyMongoError

    await _funded()

    async def _broken_insert(self, *args, **kwargs):
        raise PyMongoError("write failed")

    monkeypatch.setattr(GenerationJob, "insert", _broken_insert)
    result = await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="1K"))
    assert result.job_id is None
    assert result.task_id == "task-123"
    assert await ledger.get_balance("u1") == 95


async def test_cancelled_submit_is_refunded(db, settings, api, monkeypatch):
    import asyncio

    await _funded()

    async def _hang_up(*args, **kwargs):
        raise asyncio.CancelledError()

    monkeypatch.setattr(api, "submit_task", _hang_up)
    with pytest.raises(asyncio.CancelledError):
        await submit_generation(settings, api, "u1", GenerationRequest(prompt="x", resolution="1K"))
    assert await ledger.get_balance("u1") == 100
