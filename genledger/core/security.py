import hashlib
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from genledger.core.config import Settings, get_settings

BEARER_PREFIX = "bearer "


def get_token_serializer(settings: Settings | None = None) -> URLSafeTimedSerializer:
    settings = settings or get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="genledger-access-token",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(user_id: str, settings: Settings | None = None) -> str:
    """Issue a signed bearer token for user_id."""
    return get_token_serializer(settings).dumps({"user_id": user_id})


def load_access_token(token: str, settings: Settings | None = None) -> dict[str, Any] | None:
    settings = settings or get_settings()
    serializer = get_token_serializer(settings)
    try:
        payload = serializer.loads(token, max_age=settings.access_token_max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    return payload if isinstance(payload, dict) else None


def parse_bearer(header_value: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' header value."""
    if not header_value:
        return None
    if not header_value.lower().startswith(BEARER_PREFIX):
        return None
    token = header_value[len(BEARER_PREFIX):].strip()
    return token or None
