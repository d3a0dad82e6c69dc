"""
Payload signing for webhook producers.

Each producer class signs the exact raw request body with its own
pre-shared secret (HMAC-SHA256, hex encoded).
"""

import hmac
import hashlib
from typing import Optional

from fleetwatch.app.core.exceptions import AuthError


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of the raw body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Check a supplied signature against the raw body.

    Raises:
        AuthError: if the signature is absent or does not match
    """
    if not signature:
        raise AuthError("Missing signature")

    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(signature.strip().lower().encode("utf-8"), expected.encode("utf-8")):
        raise AuthError("Invalid signature")
