"""HMAC signature validation for executor webhooks.

Replicate signs callbacks following the Standard Webhooks scheme:

    webhook-id:        unique message id
    webhook-timestamp: unix seconds
    webhook-signature: space-separated list of "v1,<base64 HMAC-SHA256>"

The signed content is "{webhook-id}.{webhook-timestamp}.{raw body}" and the
key is the base64 part of the "whsec_..." secret. A whsec_ secret that is not
valid base64 is a configuration error and is rejected when settings load.

Security Note:
    validate_webhook_signature MUST be called before processing any webhook
    payload. Return 401 Unauthorized immediately if validation fails.
"""

import base64
import binascii
import hashlib
import hmac
import time


def signing_key(secret: str) -> bytes:
    """Return the HMAC key for a secret.

    Raises:
        ValueError: If a "whsec_" secret does not carry valid base64
    """
    if not secret.startswith("whsec_"):
        return secret.encode("utf-8")
    try:
        return base64.b64decode(secret.removeprefix("whsec_"), validate=True)
    except binascii.Error as e:
        raise ValueError("Webhook secret starts with whsec_ but is not valid base64") from e


def compute_signature(raw_body: bytes, webhook_id: str, timestamp: str, secret: str) -> str:
    """Compute the base64 HMAC-SHA256 signature for a webhook message."""
    signed_content = f"{webhook_id}.{timestamp}.".encode("utf-8") + raw_body
    digest = hmac.new(signing_key(secret), msg=signed_content, digestmod=hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_webhook_signature(
    raw_body: bytes,
    webhook_id: str,
    timestamp: str,
    signature_header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """Validate a webhook signature.

    Args:
        raw_body: Raw request body bytes (NOT parsed JSON). Must be the exact
            bytes received, before any parsing or transformation.
        webhook_id: Value of the webhook-id header
        timestamp: Value of the webhook-timestamp header (unix seconds)
        signature_header: Value of the webhook-signature header
        secret: Webhook signing secret ("whsec_..." or raw)
        tolerance_seconds: Maximum allowed clock difference (replay protection)
        now: Current unix time (injectable for tests)

    Returns:
        True if any of the provided signatures matches and the timestamp is fresh.

    Security:
        - Uses hmac.compare_digest() for constant-time comparison
        - Rejects stale timestamps to limit replay of captured requests
    """
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        return False

    expected = compute_signature(raw_body, webhook_id, timestamp, secret)

    for candidate in signature_header.split():
        version, _, value = candidate.partition(",")
        if version != "v1" or not value:
            continue
        if hmac.compare_digest(expected, value):
            return True

    return False
