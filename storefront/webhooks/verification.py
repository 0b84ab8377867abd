"""Webhook signature verification — constant-time HMAC-SHA256.

Security contract:
- Digest is computed over the raw request bytes, never a re-serialized body
- Comparison uses hmac.compare_digest() (constant-time, no timing attacks)
- Missing secret or missing signature -> verification fails (fail-closed)
- Never raises: any error while verifying is a failed verification

Fourthwall sends X-Fourthwall-Hmac-SHA256 with a base64-encoded digest.
Hex digests are still accepted when configured, for senders that use them.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Literal

logger = logging.getLogger(__name__)

SignatureEncoding = Literal["base64", "hex"]


def compute_signature(
    body: bytes,
    secret: str,
    encoding: SignatureEncoding = "base64",
) -> str:
    """Return the HMAC-SHA256 of *body* keyed by *secret* in *encoding*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    if encoding == "hex":
        return digest.hex()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    body: bytes,
    signature: str | None,
    secret: str | None,
    encoding: SignatureEncoding = "base64",
) -> bool:
    """Verify a webhook signature.

    Args:
        body: Raw request body bytes, exactly as received
        signature: Value of the signature header
        secret: Shared webhook secret
        encoding: Wire encoding of the sender's digest

    Returns:
        True if signature is valid
    """
    if not secret:
        logger.warning("Webhook secret not set — rejecting webhook")
        return False
    if not signature:
        return False

    try:
        expected = compute_signature(body, secret, encoding)
        return hmac.compare_digest(
            expected.encode("ascii"),
            signature.strip().encode("utf-8"),
        )
    except Exception:
        logger.warning("Signature verification errored — rejecting webhook", exc_info=True)
        return False
