"""Ordered, JSON-ready renderings of ledger records.

Field order is fixed per kind so exports are diff-stable.
"""

from collections import OrderedDict

from trustline_api.models import AuditLogEntry, LoginAttempt, PasswordChangeRecord, UserSession
from trustline_api.utils.time import isoformat

LOGIN_ATTEMPT_FIELDS = (
    "id", "email", "user_id", "tenant_id", "ip_address", "user_agent",
    "device_info", "success", "failure_reason", "attempted_at",
)
SESSION_FIELDS = (
    "id", "user_id", "tenant_id", "ip_address", "user_agent", "device_info",
    "login_at", "logout_at", "expires_at", "is_active", "created_at", "updated_at",
)
PASSWORD_CHANGE_FIELDS = (
    "id", "user_id", "tenant_id", "changed_by", "change_type", "ip_address",
    "user_agent", "device_info", "changed_at", "metadata",
)
AUDIT_LOG_FIELDS = (
    "id", "action", "resource_type", "resource_id", "user_id", "tenant_id",
    "severity", "tags", "ip_address", "user_agent", "request_id", "details", "created_at",
)

FIELDS_BY_MODEL = {
    LoginAttempt: LOGIN_ATTEMPT_FIELDS,
    UserSession: SESSION_FIELDS,
    PasswordChangeRecord: PASSWORD_CHANGE_FIELDS,
    AuditLogEntry: AUDIT_LOG_FIELDS,
}

# Columns whose Python attribute differs from the public field name
ATTRIBUTE_ALIASES = {"metadata": "metadata_json"}


def canonical(value):
    """Recursively sort free-form mapping keys."""
    if isinstance(value, dict):
        return OrderedDict((k, canonical(value[k])) for k in sorted(value))
    if isinstance(value, list):
        return [canonical(v) for v in value]
    return value


def serialize_record(record) -> OrderedDict:
    """Render a ledger record as an ordered dict with ISO-8601 timestamps."""
    fields = FIELDS_BY_MODEL[type(record)]
    data = OrderedDict()
    for name in fields:
        value = getattr(record, ATTRIBUTE_ALIASES.get(name, name))
        if hasattr(value, "isoformat"):
            value = isoformat(value)
        elif isinstance(value, (dict, list)):
            value = canonical(value)
        data[name] = value
    return data
