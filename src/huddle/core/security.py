"""Guest identity token minting.

The dispatcher has no user account of its own. It signs a short-lived JWT
with the guest issuer's shared secret and exchanges it with the Teams
platform for an access token (see TeamsClient.login_with_jwt).
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timedelta, timezone

import structlog
from jose import jwt

logger = structlog.get_logger(__name__)

GUEST_TOKEN_ALGORITHM = "HS256"


def decode_shared_secret(shared_secret_b64: str) -> bytes:
    """Decode the base64 guest issuer secret into raw key bytes."""
    if not shared_secret_b64:
        raise ValueError("Missing guest issuer shared secret. Set GUEST_ISSUER_SHARED_SECRET.")
    try:
        return base64.b64decode(shared_secret_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Guest issuer shared secret is not valid base64") from exc


def create_guest_token(
    issuer_id: str,
    shared_secret_b64: str,
    display_name: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a guest JWT for the dispatching service.

    Claims:
    - sub / name: the dispatcher's display name
    - iss: the guest issuer id
    - exp / iat: validity window (24h unless overridden)

    Raises:
        ValueError: If the issuer id or shared secret is missing or malformed.
    """
    if not issuer_id:
        raise ValueError("Missing guest issuer id. Set GUEST_ISSUER_ID.")
    key = decode_shared_secret(shared_secret_b64)

    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=24))
    claims = {
        "sub": display_name,
        "name": display_name,
        "iss": issuer_id,
        "iat": now,
        "exp": expire,
    }
    token = jwt.encode(claims, key, algorithm=GUEST_TOKEN_ALGORITHM)
    logger.info("identity.guest_token_minted", issuer=issuer_id, expires_at=expire.isoformat())
    return token
