# backend/bharatcrm/utils/meta_signature.py
"""
Meta (Facebook/Instagram) webhook signature verification.

Meta signs every webhook delivery with the app secret:
    X-Hub-Signature-256: sha256=<hex HMAC-SHA256 of the raw request body>

The webhook secret in the URL only identifies the integration; it is NOT the
signing key.

Reference: https://developers.facebook.com/docs/graph-api/webhooks/getting-started#validate-payloads
"""

import hmac
import hashlib
from typing import Optional, Union

from bharatcrm.utils.logger import logger

SIGNATURE_PREFIX = "sha256="


def compute_meta_signature(payload: Union[bytes, str], app_secret: str) -> str:
    """Return the hex HMAC-SHA256 digest Meta would send for this body."""
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def validate_meta_signature(
    payload: Union[bytes, str],
    signature: Optional[str],
    app_secret: Optional[str],
) -> bool:
    """
    Validate an X-Hub-Signature-256 header against the raw body.

    Args:
        payload: Raw request body exactly as received
        signature: Header value, "sha256=<hex>"
        app_secret: Meta app secret of the integration

    Returns:
        bool: True if signature is valid, False otherwise
    """
    if not signature:
        logger.warning("[Meta Security] No X-Hub-Signature-256 header provided")
        return False

    if not app_secret:
        logger.error("[Meta Security] No app secret configured for signature verification")
        return False

    received = signature[len(SIGNATURE_PREFIX):] if signature.startswith(SIGNATURE_PREFIX) else signature
    expected = compute_meta_signature(payload, app_secret)

    # Headers arrive latin-1 decoded; compare bytes so non-ASCII input is a mismatch
    is_valid = hmac.compare_digest(expected.encode("ascii"), received.encode("utf-8", "surrogateescape"))

    if not is_valid:
        logger.warning("[Meta Security] Invalid webhook signature")

    return is_valid
