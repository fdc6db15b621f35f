"""
Webhook Security Module

Signature verification for Clerk webhooks, which are delivered through Svix
(Standard Webhooks format):
- Signed message is "{svix-id}.{svix-timestamp}.{raw body}"
- Key is the base64-decoded part of the "whsec_..." secret
- svix-signature holds one or more space-separated "v1,{base64 hmac}" entries
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Mapping, Optional

from fastapi import Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300

SVIX_ID_HEADER = "svix-id"
SVIX_TIMESTAMP_HEADER = "svix-timestamp"
SVIX_SIGNATURE_HEADER = "svix-signature"


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    pass


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def extract_svix_signing_key(secret: str) -> bytes:
    """
    Extract the HMAC key bytes from a Svix "whsec_BASE64KEY" secret.

    If not prefixed, attempt base64 decode; if that fails, fall back to UTF-8 bytes.
    """
    try:
        if secret.startswith("whsec_"):
            return base64.b64decode(secret[6:])
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def verify_timestamp(
    timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS, now: Optional[int] = None
) -> bool:
    """
    Verify webhook timestamp is within acceptable range.
    Prevents replay attacks by rejecting old (or far-future) webhooks.
    """
    if not timestamp:
        return False

    try:
        webhook_time = int(timestamp)
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False

    current_time = int(time.time()) if now is None else now
    age = abs(current_time - webhook_time)
    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp outside tolerance: {age}s (max: {max_age}s)")
        return False
    return True


def compute_svix_signature(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    """Compute the base64 HMAC-SHA256 signature over id.timestamp.body"""
    signing_key = extract_svix_signing_key(secret)
    signed_message = b".".join([msg_id.encode("utf-8"), timestamp.encode("utf-8"), body])
    return base64.b64encode(hmac.new(signing_key, signed_message, hashlib.sha256).digest()).decode(
        "utf-8"
    )


def create_svix_signature_header(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    """Build a svix-signature header value (used for outgoing test deliveries)"""
    return f"v1,{compute_svix_signature(secret, msg_id, timestamp, body)}"


def verify_svix_signature(
    secret: str, body: bytes, headers: Mapping[str, str], now: Optional[int] = None
) -> str:
    """
    Verify a Svix-signed payload.

    Args:
        secret: Webhook signing secret ("whsec_...")
        body: Raw request body, byte-for-byte as received
        headers: Request headers (case-insensitive mapping or lower-case dict)

    Returns:
        The svix-id of the verified delivery

    Raises:
        WebhookSignatureError: missing headers, stale timestamp or signature mismatch
    """
    msg_id = headers.get(SVIX_ID_HEADER)
    timestamp = headers.get(SVIX_TIMESTAMP_HEADER)
    signature_header = headers.get(SVIX_SIGNATURE_HEADER)

    if not msg_id or not timestamp or not signature_header:
        logger.error("❌ Missing svix headers")
        raise WebhookSignatureError("Missing svix headers")

    if not verify_timestamp(timestamp, now=now):
        raise WebhookSignatureError("Webhook timestamp expired or invalid")

    expected_signature = compute_svix_signature(secret, msg_id, timestamp, body)

    for entry in signature_header.split(" "):
        version, _, received_signature = entry.partition(",")
        if version != "v1":
            continue
        if constant_time_compare(expected_signature, received_signature):
            logger.info(f"✅ Webhook signature verified: {msg_id}")
            return msg_id

    logger.error(f"❌ Webhook signature mismatch for {msg_id}")
    raise WebhookSignatureError("Invalid webhook signature")


async def verify_clerk_webhook(request: Request, secret: str) -> tuple[str, bytes]:
    """
    Verify a Clerk webhook request.

    Returns:
        Tuple of (svix_id, raw_body)
    """
    # Get raw body BEFORE any parsing - the signature covers exact bytes
    raw_body = await request.body()
    msg_id = verify_svix_signature(secret, raw_body, request.headers)
    return msg_id, raw_body
