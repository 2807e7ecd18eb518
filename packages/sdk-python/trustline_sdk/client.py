"""Trustline API client."""

from datetime import datetime
from typing import Optional

import requests

from trustline_sdk.session import SessionContext


class TrustlineAPIError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, detail: str, error: Optional[str] = None):
        super().__init__(f"{status_code} {error or 'Error'}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.error = error


class ConflictError(TrustlineAPIError):
    """409: invalid case transition or lost optimistic lock. Re-read and retry."""


def _params(values: dict) -> dict:
    params = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, bool):
            value = "true" if value else "false"
        params[key] = value
    return params


class TrustlineClient:
    """
    Client for the Trustline API.

    Call ``init()`` before use and ``teardown()`` when done, or use the
    client as a context manager.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """Initialize client."""
        self.context = SessionContext(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            backoff_factor=backoff_factor,
        )

    def init(self) -> "TrustlineClient":
        self.context.open()
        return self

    def teardown(self) -> None:
        self.context.close()

    def __enter__(self) -> "TrustlineClient":
        return self.init()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()

    def _request(self, method: str, path: str, raw: bool = False, **kwargs):
        if not self.context.is_open:
            raise RuntimeError("Client is not initialised; call init() first")

        response = self.context.http.request(
            method, self.context.url(path), timeout=self.context.timeout, **kwargs
        )
        if response.status_code >= 400:
            raise self._error(response)
        if raw:
            return response.content
        return response.json()

    @staticmethod
    def _error(response: requests.Response) -> TrustlineAPIError:
        try:
            body = response.json()
            detail, error = body.get("detail", response.text), body.get("error")
        except ValueError:
            detail, error = response.text, None
        error_cls = ConflictError if response.status_code == 409 else TrustlineAPIError
        return error_cls(response.status_code, str(detail), error)

    # Ledger

    def query_ledger(self, collection: str, **params) -> dict:
        """Query ``login-attempts``, ``sessions``, ``password-changes`` or ``audit-logs``."""
        return self._request("GET", f"/v1/ledger/{collection}", params=_params(params))

    def get_ledger_record(self, collection: str, record_id: str) -> dict:
        return self._request("GET", f"/v1/ledger/{collection}/{record_id}")

    def export_ledger(self, collection: str, format: str = "csv", **filters) -> bytes:
        params = _params({**filters, "format": format})
        return self._request("GET", f"/v1/ledger/{collection}/export", raw=True, params=params)

    def get_user_actions(self, user_id: str, **params) -> dict:
        return self._request("GET", f"/v1/users/{user_id}/actions", params=_params(params))

    # Sessions

    def list_active_sessions(self, **params) -> dict:
        return self._request("GET", "/v1/sessions/active", params=_params(params))

    def get_login_history(self, user_id: str, **params) -> dict:
        return self._request("GET", f"/v1/users/{user_id}/login-history", params=_params(params))

    def revoke_session(self, session_id: str) -> dict:
        return self._request("POST", f"/v1/sessions/{session_id}/revoke")

    def revoke_all_sessions(self, user_id: str, except_session_id: Optional[str] = None) -> int:
        body = {"except_session_id": except_session_id}
        return self._request("POST", f"/v1/users/{user_id}/sessions/revoke-all", json=body)["revoked"]

    # Detection

    def detect_anomalies(
        self,
        start: datetime,
        end: datetime,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        body = _params({"from": start, "to": end, "tenant_id": tenant_id, "user_id": user_id})
        return self._request("POST", "/v1/detection/anomalies", json=body)

    # Investigation cases

    def create_case(self, title: str, case_type: str, **fields) -> dict:
        return self._request(
            "POST", "/v1/investigations/cases", json={"title": title, "case_type": case_type, **fields}
        )

    def list_cases(self, **params) -> dict:
        return self._request("GET", "/v1/investigations/cases", params=_params(params))

    def get_case(self, case_id: str) -> dict:
        return self._request("GET", f"/v1/investigations/cases/{case_id}")

    def update_case_status(self, case_id: str, status: str, **fields) -> dict:
        """Raises ConflictError on an illegal transition or a concurrent update."""
        return self._request(
            "PATCH", f"/v1/investigations/cases/{case_id}/status", json={"status": status, **fields}
        )

    def add_case_note(self, case_id: str, note: str, note_type: str = "note", **fields) -> dict:
        return self._request(
            "POST",
            f"/v1/investigations/cases/{case_id}/notes",
            json={"note": note, "note_type": note_type, **fields},
        )

    def add_case_evidence(self, case_id: str, evidence_type: str, evidence_id: str, **fields) -> dict:
        return self._request(
            "POST",
            f"/v1/investigations/cases/{case_id}/evidence",
            json={"evidence_type": evidence_type, "evidence_id": evidence_id, **fields},
        )

    def register_evidence_file(self, filename: str, storage_ref: str, **fields) -> dict:
        return self._request(
            "POST", "/v1/investigations/files", json={"filename": filename, "storage_ref": storage_ref, **fields}
        )

    def export_case(self, case_id: str, format: str = "json") -> bytes:
        return self._request(
            "GET", f"/v1/investigations/cases/{case_id}/export", raw=True, params={"format": format}
        )

    def promote_finding(self, finding: dict, **case_overrides) -> dict:
        return self._request(
            "POST", "/v1/investigations/findings/promote", json={"finding": finding, "case": case_overrides}
        )

    # Identity-layer intake

    def record_login_attempt(self, email: str, success: bool, **fields) -> dict:
        return self._request(
            "POST", "/v1/identity-events/login-attempts", json={"email": email, "success": success, **fields}
        )

    def record_session(self, user_id: str, **fields) -> dict:
        return self._request("POST", "/v1/identity-events/sessions", json={"user_id": user_id, **fields})

    def end_session(self, session_id: str, reason: str = "logout") -> dict:
        return self._request("POST", f"/v1/identity-events/sessions/{session_id}/end", json={"reason": reason})

    def record_password_change(self, user_id: str, change_type: str, **fields) -> dict:
        return self._request(
            "POST",
            "/v1/identity-events/password-changes",
            json={"user_id": user_id, "change_type": change_type, **fields},
        )

    def record_audit_event(self, action: str, **fields) -> dict:
        return self._request("POST", "/v1/identity-events/audit-logs", json={"action": action, **fields})
