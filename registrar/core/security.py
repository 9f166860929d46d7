import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from registrar.core.config import get_settings

SESSION_MAX_AGE = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="registrar-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    serializer = get_session_serializer()
    return serializer.dumps(payload)


def load_session_cookie(cookie_value: str, max_age_seconds: int = SESSION_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def parse_paymongo_signature(header: str) -> dict[str, str]:
    """Split 't=...,te=...,li=...' into its parts. Unknown parts are kept."""
    parts: dict[str, str] = {}
    for chunk in (header or "").split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep and key:
            parts[key] = value
    return parts


def compute_paymongo_signature(payload: bytes, timestamp: str, secret: str) -> str:
    signed = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_paymongo_webhook(payload: bytes, signature_header: str, secret: str, livemode: bool = False) -> bool:
    """
    PayMongo signs '<t>.<raw body>' with HMAC-SHA256; the header carries the
    timestamp and one signature per mode (te=test, li=live).
    """
    parts = parse_paymongo_signature(signature_header)
    timestamp = parts.get("t")
    received = parts.get("li" if livemode else "te")
    if not timestamp or not received:
        return False
    expected = compute_paymongo_signature(payload, timestamp, secret)
    return hmac.compare_digest(expected, received)
