"""Closed filter structs for ledger queries.

Each record kind accepts exactly the keys declared here; anything else is
rejected instead of silently ignored.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from trustline_api.errors import ValidationError
from trustline_api.utils.time import to_naive_utc

TAG_PATTERN = re.compile(r"^[a-z0-9_:\-]{1,64}$")

T = TypeVar("T")


class _LedgerFilters(BaseModel):
    """Filters every ledger kind understands."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_range(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class LoginAttemptFilters(_LedgerFilters):
    email: Optional[str] = None
    success: Optional[bool] = None


class SessionFilters(_LedgerFilters):
    is_active: Optional[bool] = None


class PasswordChangeFilters(_LedgerFilters):
    change_type: Optional[Literal["self_reset", "admin_reset", "admin_change", "forced_reset"]] = None


class AuditLogFilters(_LedgerFilters):
    action: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    severity: Optional[Literal["info", "warning", "error", "critical"]] = None
    tags: Optional[list[str]] = None

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        for tag in value:
            if not TAG_PATTERN.match(tag):
                raise ValueError(f"Invalid tag: {tag!r}")
        return sorted(set(value))


class Pagination(BaseModel):
    """Offset pagination, newest-first unless asked otherwise."""

    model_config = ConfigDict(extra="forbid")

    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    order: Literal["newest", "oldest"] = "newest"


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int


PAGINATION_KEYS = frozenset(Pagination.model_fields)


def parse_model(model_cls: type[BaseModel], data: Any):
    """Validate ``data`` into ``model_cls``, raising our ValidationError on failure."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data or {})
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid {model_cls.__name__}: {problems}") from e


def split_query_params(params: dict) -> tuple[dict, dict]:
    """Split raw query params into (filters, pagination) dicts."""
    filters = {k: v for k, v in params.items() if k not in PAGINATION_KEYS}
    pagination = {k: v for k, v in params.items() if k in PAGINATION_KEYS}
    return filters, pagination
