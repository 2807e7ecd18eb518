"""Verification of signed Trustline case notifications."""

import hashlib
import hmac
import time
from typing import Dict


def verify_notification(
    headers: Dict[str, str],
    raw_body: bytes,
    secret: str,
    tolerance_seconds: int = 300,
) -> bool:
    """
    Verify a notification's signature and timestamp.

    Args:
        headers: Request headers dictionary
        raw_body: Raw request body bytes, exactly as received
        secret: Shared notification secret
        tolerance_seconds: Maximum age of the timestamp (default 5 minutes)

    Returns:
        True if the notification is authentic and fresh, False otherwise
    """
    signature_header = headers.get("X-Trustline-Signature", "")
    timestamp_str = headers.get("X-Trustline-Timestamp", "")
    if not signature_header.startswith("sha256=") or not timestamp_str:
        return False

    try:
        timestamp = int(timestamp_str)
    except (ValueError, TypeError):
        return False
    if abs(int(time.time()) - timestamp) > tolerance_seconds:
        return False  # replay window exceeded

    if not isinstance(raw_body, bytes):
        raw_body = raw_body.encode("utf-8")
    message = timestamp_str.encode("utf-8") + b"." + raw_body
    computed = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    return hmac.compare_digest(signature_header[len("sha256="):], computed)
