"""Case workflow: the only legal status transitions."""

from trustline_api.errors import InvalidStateTransition

INITIAL_STATUS = "open"
TERMINAL_STATUSES = frozenset({"closed"})

# (from, to) -> timestamp column set on entry, columns cleared on entry
TRANSITIONS = {
    ("open", "investigating"): ("investigated_at", ()),
    ("investigating", "resolved"): ("resolved_at", ()),
    ("resolved", "closed"): ("closed_at", ()),
    ("investigating", "open"): (None, ("investigated_at",)),
    ("resolved", "investigating"): (None, ("resolved_at", "resolution", "resolution_notes", "resolved_by")),
}


def validate_transition(from_status: str, to_status: str) -> tuple:
    """Return (stamp_column, cleared_columns) or raise InvalidStateTransition."""
    try:
        return TRANSITIONS[(from_status, to_status)]
    except KeyError:
        raise InvalidStateTransition(from_status, to_status) from None


def allowed_targets(from_status: str) -> list[str]:
    return sorted(to for (frm, to) in TRANSITIONS if frm == from_status)
