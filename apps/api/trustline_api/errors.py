"""Error taxonomy shared by the ledger, session registry, detector and case manager."""

from typing import Optional


class TrustlineError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TrustlineError):
    """Malformed or missing input. Never retried automatically."""

    status_code = 422


class NotFoundError(TrustlineError):
    """Referenced id does not exist, or is outside the caller's tenant."""

    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str]):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class InvalidStateTransition(TrustlineError):
    """Case workflow violation."""

    status_code = 409

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid case status transition: {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class ConcurrentModificationError(TrustlineError):
    """Lost an optimistic-lock race. Re-read the record and retry."""

    status_code = 409


class PermissionDeniedError(TrustlineError):
    """Caller lacks the scope required for the operation."""

    status_code = 403


class ExportCancelled(TrustlineError):
    """An export was cancelled cooperatively before completion."""

    status_code = 499
