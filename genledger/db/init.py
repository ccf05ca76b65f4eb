import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from genledger.core.config import get_settings
from genledger.models.credit_account import CreditAccount
from genledger.models.credit_transaction import CreditTransaction
from genledger.models.failed_job import FailedJob
from genledger.models.generation_job import GenerationJob
from genledger.models.project import Project

DOCUMENT_MODELS = [
    CreditAccount,
    CreditTransaction,
    GenerationJob,
    Project,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(client=None) -> None:
    """Bind Beanie documents. Tests pass an in-memory client."""
    settings = get_settings()
    if client is None:
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
