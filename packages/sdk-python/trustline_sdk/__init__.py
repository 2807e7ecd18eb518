"""Trustline Python SDK."""

__version__ = "0.1.0"

from trustline_sdk.client import ConflictError, TrustlineAPIError, TrustlineClient
from trustline_sdk.notifications import verify_notification
from trustline_sdk.session import SessionContext

__all__ = ["TrustlineClient", "SessionContext", "TrustlineAPIError", "ConflictError", "verify_notification"]
