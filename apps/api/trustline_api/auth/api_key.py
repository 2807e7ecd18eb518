"""Operator key authentication with prefix+digest lookup."""

import hashlib
import hmac
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from trustline_api.auth.scopes import format_scopes, validate_scopes
from trustline_api.models import OperatorKey
from trustline_api.settings import get_settings
from trustline_api.utils.time import utcnow

KEY_PREFIX_LENGTH = 8


def compute_key_prefix(raw_key: str) -> str:
    """Compute prefix (first 8 chars) of an operator key."""
    return raw_key[:KEY_PREFIX_LENGTH] if len(raw_key) >= KEY_PREFIX_LENGTH else raw_key


def compute_key_digest(raw_key: str) -> str:
    """Compute HMAC-SHA256 digest of an operator key."""
    secret = get_settings().secret_key.encode()
    return hmac.new(secret, raw_key.encode(), hashlib.sha256).hexdigest()


def generate_raw_key() -> str:
    """Generate a new random operator key."""
    return "tl_" + secrets.token_urlsafe(32)


def issue_operator_key(
    db: Session,
    user_id: str,
    scopes: list[str],
    tenant_id: Optional[str] = None,
    label: Optional[str] = None,
    raw_key: Optional[str] = None,
) -> tuple[str, OperatorKey]:
    """Create and persist a new operator key. Returns the raw key (shown once) and the row."""
    validate_scopes(scopes)
    raw_key = raw_key or generate_raw_key()
    key = OperatorKey(
        prefix=compute_key_prefix(raw_key),
        digest=compute_key_digest(raw_key),
        label=label,
        user_id=user_id,
        tenant_id=tenant_id,
        scopes=format_scopes(scopes),
        is_active=True,
    )
    db.add(key)
    db.commit()
    return raw_key, key


def get_operator_key(db: Session, raw_key: str) -> Optional[OperatorKey]:
    """Look up an active operator key using indexed prefix + constant-time digest check."""
    if not raw_key or len(raw_key) < KEY_PREFIX_LENGTH:
        return None

    prefix = compute_key_prefix(raw_key)
    digest = compute_key_digest(raw_key)

    candidates = (
        db.query(OperatorKey)
        .filter(
            OperatorKey.prefix == prefix,
            OperatorKey.is_active == True,  # noqa: E712
            OperatorKey.revoked_at.is_(None),
        )
        .all()
    )

    for key in candidates:
        if hmac.compare_digest(key.digest, digest):
            key.last_used_at = utcnow()
            db.commit()
            return key

    return None
