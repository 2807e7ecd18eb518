"""Best-effort signed notifications for case lifecycle events."""

import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import httpx

from trustline_api.settings import get_settings
from trustline_api.utils.metrics import notification_deliveries

logger = logging.getLogger(__name__)


def compute_signature(body: bytes, secret: str, timestamp: str) -> str:
    """HMAC-SHA256 over ``timestamp + "." + body``."""
    message = f"{timestamp}.{body.decode()}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


class NotificationService:
    """
    Posts case events to a configured receiver.

    Delivery is a side channel: ``notify`` never raises, and the outcome
    has no effect on the operation that triggered it.
    """

    def __init__(self, url: Optional[str] = None, secret: Optional[str] = None, transport=None):
        settings = get_settings()
        self.url = url if url is not None else settings.case_notification_url
        self.secret = secret if secret is not None else settings.case_notification_secret
        self.timeout = settings.case_notification_timeout_seconds
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.secret)

    def notify(self, event_type: str, payload: dict, correlation_id: Optional[str] = None) -> bool:
        """Deliver one event. Returns True on a 2xx response."""
        if not self.enabled:
            notification_deliveries.labels(status="skipped").inc()
            return False

        body = json.dumps(
            {"event": event_type, "data": payload}, sort_keys=True, separators=(",", ":"), default=str
        ).encode()
        timestamp = str(int(time.time()))
        headers = {
            "Content-Type": "application/json",
            "X-Trustline-Event": event_type,
            "X-Trustline-Timestamp": timestamp,
            "X-Trustline-Signature": f"sha256={compute_signature(body, self.secret, timestamp)}",
        }
        if correlation_id:
            headers["X-Trustline-Correlation-Id"] = correlation_id

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError:
            notification_deliveries.labels(status="failed").inc()
            logger.warning(
                "Case notification delivery failed",
                extra={"event_type": event_type, "correlation_id": correlation_id},
                exc_info=True,
            )
            return False

        notification_deliveries.labels(status="delivered").inc()
        return True
