# utils/upload_token.py
"""
Upload link tokens.

A token authorizes one PUT of one file name into one knowledge base until it
expires. Layout is ``<payload>.<signature>``, both urlsafe base64 without
padding; the signature is HMAC-SHA256 over the encoded payload.
"""
import base64
import hmac
import json
import time
from dataclasses import dataclass
from hashlib import sha256
from typing import Optional

from config import settings


@dataclass(frozen=True)
class UploadGrant:
    knowledge_base_id: str
    file_name: str
    expires_at: int


def _encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _signature(encoded_payload: str, secret: str) -> bytes:
    return hmac.new(secret.encode(), encoded_payload.encode(), sha256).digest()


def issue(kb_id: str, file_name: str, ttl_seconds: int = settings.UPLOAD_LINK_TTL_SECONDS,
          secret: str = settings.UPLOAD_LINK_SECRET) -> str:
    """Sign a grant for uploading `file_name` into `kb_id`."""
    payload = {"kb": kb_id, "fileName": file_name, "exp": int(time.time()) + ttl_seconds}
    encoded = _encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode())
    return f"{encoded}.{_encode(_signature(encoded, secret))}"


def verify(token: str, secret: str = settings.UPLOAD_LINK_SECRET, now: Optional[float] = None) -> UploadGrant:
    """
    Check signature, expiry and shape of a token.

    Raises ValueError for anything that is not a live grant.
    """
    encoded, sep, signature = (token or "").partition(".")
    if not sep or not encoded or not signature:
        raise ValueError("malformed upload token")

    try:
        valid = hmac.compare_digest(_signature(encoded, secret), _decode(signature))
        payload = json.loads(_decode(encoded))
    except (ValueError, TypeError) as e:
        # binascii.Error and JSONDecodeError are both ValueErrors
        raise ValueError("malformed upload token") from e
    if not valid:
        raise ValueError("bad upload token signature")

    if not isinstance(payload, dict):
        raise ValueError("malformed upload token")
    kb_id, file_name, expires_at = payload.get("kb"), payload.get("fileName"), payload.get("exp")
    if not isinstance(kb_id, str) or not isinstance(file_name, str) or not isinstance(expires_at, int):
        raise ValueError("upload token is missing its grant")
    if (time.time() if now is None else now) > expires_at:
        raise ValueError("upload token expired")

    return UploadGrant(knowledge_base_id=kb_id, file_name=file_name, expires_at=expires_at)
