"""Primary key generation for string-keyed records."""

import uuid


def new_id() -> str:
    """Generate a new record id."""
    return str(uuid.uuid4())
