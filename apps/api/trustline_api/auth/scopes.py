"""Operator key scope validation utilities."""

import json
import logging
from typing import List

logger = logging.getLogger(__name__)

PLATFORM_SCOPE = "platform:admin"

# Valid scope names
VALID_SCOPES = {
    "ledger:read",
    "ledger:export",
    "sessions:write",
    "detection:run",
    "identity:write",
    PLATFORM_SCOPE,
}


def validate_scopes(scopes) -> List[str]:
    """
    Validate and parse scopes from a JSON string or list.

    Args:
        scopes: JSON string array of scopes, or a list

    Returns:
        List of validated scope strings

    Raises:
        ValueError: If scopes are invalid
    """
    if not scopes:
        return []

    try:
        scope_list = json.loads(scopes) if isinstance(scopes, str) else scopes
        if not isinstance(scope_list, list):
            raise ValueError("Scopes must be a JSON array")

        validated = []
        for scope in scope_list:
            if not isinstance(scope, str):
                raise ValueError(f"Scope must be a string: {scope}")
            if scope not in VALID_SCOPES:
                raise ValueError(f"Unknown scope: {scope}")
            validated.append(scope)

        return validated
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in scopes: {e}") from e


def format_scopes(scopes: List[str]) -> str:
    """
    Format scope list as JSON string for storage.

    Args:
        scopes: List of scope strings

    Returns:
        JSON string representation
    """
    if not scopes:
        return "[]"
    return json.dumps(sorted(set(scopes)))  # Deduplicate and sort for consistency
