"""HTTP-level tests for the v1 routers."""

import json
import logging

import pytest

from trustline_api.auth.scopes import PLATFORM_SCOPE

TENANT_SCOPES = ["ledger:read", "ledger:export", "sessions:write", "detection:run", "identity:write"]


@pytest.fixture
def tenant_headers(api_headers):
    return api_headers(TENANT_SCOPES, tenant_id="tenant-a", user_id="ops-a")


@pytest.fixture
def platform_headers(api_headers):
    return api_headers([PLATFORM_SCOPE], user_id="admin-1")


def _record_failures(client, headers, count=6, user_id="u1"):
    for i in range(count):
        response = client.post(
            "/v1/identity-events/login-attempts",
            json={
                "email": f"{user_id}@example.com",
                "user_id": user_id,
                "success": False,
                "ip_address": "203.0.113.9",
                "attempted_at": f"2026-03-02T11:{10 + i:02d}:00Z",
            },
            headers=headers,
        )
        assert response.status_code == 201


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["service"] == "trustline-api"


def test_missing_api_key(client):
    response = client.get("/v1/ledger/login-attempts")
    assert response.status_code == 401


def test_invalid_api_key(client):
    response = client.get("/v1/ledger/login-attempts", headers={"x-api-key": "tl_not-a-real-key"})
    assert response.status_code == 401


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"x-correlation-id": "corr-123"})
    assert response.headers["x-correlation-id"] == "corr-123"


def test_correlation_id_reaches_audit_entry(client, tenant_headers, caplog):
    with caplog.at_level(logging.INFO, logger="trustline_api.middleware.correlation"):
        client.post(
            "/v1/identity-events/audit-logs",
            json={"action": "MFA_DISABLED"},
            headers={**tenant_headers, "x-correlation-id": "corr-456"},
        )

    items = client.get("/v1/ledger/audit-logs?action=MFA_DISABLED", headers=tenant_headers).json()["items"]
    assert items[0]["request_id"] == "corr-456"
    served = [r for r in caplog.records if getattr(r, "correlation_id", None) == "corr-456"]
    assert served[0].status_code == 201


def test_ingest_and_query_ledger(client, tenant_headers):
    _record_failures(client, tenant_headers, count=3)

    response = client.get("/v1/ledger/login-attempts?success=false&limit=2", headers=tenant_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert len(body["items"]) == 2
    assert body["items"][0]["attempted_at"] == "2026-03-02T11:12:00.000000Z"
    assert {item["tenant_id"] for item in body["items"]} == {"tenant-a"}


def test_unknown_filter_is_rejected(client, tenant_headers):
    response = client.get("/v1/ledger/sessions?colour=blue", headers=tenant_headers)

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


def test_tag_filter_accepts_repeated_params(client, tenant_headers):
    client.post(
        "/v1/identity-events/audit-logs",
        json={"action": "MFA_DISABLED", "tags": ["security"]},
        headers=tenant_headers,
    )
    client.post(
        "/v1/identity-events/audit-logs",
        json={"action": "THEME_CHANGED", "tags": ["ui"]},
        headers=tenant_headers,
    )

    response = client.get("/v1/ledger/audit-logs?tags=security&tags=billing", headers=tenant_headers)

    assert [item["action"] for item in response.json()["items"]] == ["MFA_DISABLED"]


def test_record_from_other_tenant_is_not_found(client, tenant_headers, api_headers):
    other = api_headers(TENANT_SCOPES, tenant_id="tenant-b", user_id="ops-b")
    created = client.post(
        "/v1/identity-events/sessions", json={"user_id": "u2"}, headers=other
    ).json()

    response = client.get(f"/v1/ledger/sessions/{created['id']}", headers=tenant_headers)
    own = client.get(f"/v1/ledger/sessions/{created['id']}", headers=other)

    assert response.status_code == 404
    assert own.status_code == 200


def test_ledger_export_streams_json(client, tenant_headers):
    _record_failures(client, tenant_headers, count=2)

    response = client.get("/v1/ledger/login-attempts/export?format=json", headers=tenant_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert "attachment" in response.headers["content-disposition"]
    assert len(json.loads(response.content)) == 2


def test_revoke_all_route(client, tenant_headers):
    for session_id in ("s1", "s2", "s3"):
        client.post("/v1/identity-events/sessions", json={"id": session_id, "user_id": "u1"}, headers=tenant_headers)

    response = client.post(
        "/v1/users/u1/sessions/revoke-all", json={"except_session_id": "s1"}, headers=tenant_headers
    )
    active = client.get("/v1/sessions/active", headers=tenant_headers).json()

    assert response.json() == {"user_id": "u1", "revoked": 2}
    assert [item["id"] for item in active["items"]] == ["s1"]


def test_revoke_missing_session(client, tenant_headers):
    response = client.post("/v1/sessions/nope/revoke", headers=tenant_headers)
    assert response.status_code == 404


def test_detection_route(client, tenant_headers):
    _record_failures(client, tenant_headers)

    response = client.post(
        "/v1/detection/anomalies",
        json={"from": "2026-03-02T11:00:00Z", "to": "2026-03-02T12:00:00Z"},
        headers=tenant_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["partial"] is False
    assert [f["type"] for f in body["findings"]] == ["failed_logins"]
    assert body["window"]["tenant_id"] == "tenant-a"


def test_cases_need_platform_scope(client, tenant_headers):
    response = client.post(
        "/v1/investigations/cases", json={"title": "x", "case_type": "other"}, headers=tenant_headers
    )
    assert response.status_code == 403


def test_case_workflow_over_http(client, platform_headers):
    created = client.post(
        "/v1/investigations/cases",
        json={"title": "Account takeover", "case_type": "security", "priority": "high"},
        headers=platform_headers,
    )
    assert created.status_code == 201
    case = created.json()
    assert case["status"] == "open"

    bad = client.patch(
        f"/v1/investigations/cases/{case['id']}/status", json={"status": "closed"}, headers=platform_headers
    )
    assert bad.status_code == 409
    assert bad.json()["error"] == "InvalidStateTransition"

    moved = client.patch(
        f"/v1/investigations/cases/{case['id']}/status",
        json={"status": "investigating", "expected_version": 1},
        headers=platform_headers,
    )
    assert moved.json()["version"] == 2

    stale = client.patch(
        f"/v1/investigations/cases/{case['id']}/status",
        json={"status": "open", "expected_version": 1},
        headers=platform_headers,
    )
    assert stale.status_code == 409
    assert stale.json()["error"] == "ConcurrentModificationError"

    note = client.post(
        f"/v1/investigations/cases/{case['id']}/notes", json={"note": "Reset forced"}, headers=platform_headers
    )
    assert note.status_code == 201

    detail = client.get(f"/v1/investigations/cases/{case['id']}", headers=platform_headers).json()
    assert [n["note"] for n in detail["notes"]] == ["Reset forced"]

    listing = client.get("/v1/investigations/cases?status=investigating", headers=platform_headers).json()
    assert listing["total"] == 1


def test_case_export_over_http(client, platform_headers):
    case = client.post(
        "/v1/investigations/cases", json={"title": "Export me", "case_type": "compliance"}, headers=platform_headers
    ).json()

    response = client.get(f"/v1/investigations/cases/{case['id']}/export?format=csv", headers=platform_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert f'filename="{case["case_number"]}.csv"' in response.headers["content-disposition"]
    assert response.text.startswith("generated_at,")


def test_unknown_case_is_404(client, platform_headers):
    assert client.get("/v1/investigations/cases/missing", headers=platform_headers).status_code == 404
    assert client.get("/v1/investigations/cases/missing/export", headers=platform_headers).status_code == 404


def test_evidence_with_dangling_reference_is_404(client, platform_headers):
    case = client.post(
        "/v1/investigations/cases", json={"title": "x", "case_type": "other"}, headers=platform_headers
    ).json()

    response = client.post(
        f"/v1/investigations/cases/{case['id']}/evidence",
        json={"evidence_type": "audit_log", "evidence_id": "nope"},
        headers=platform_headers,
    )

    assert response.status_code == 404
