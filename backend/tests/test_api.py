import pytest
from fastapi.testclient import TestClient

from caseshield.main import create_app, status_code_for
from caseshield.core.exceptions import (
    CaseShieldError,
    CommitteeFormationError,
    DuplicateApprovalError,
    NotFoundError,
    StateError,
    UnauthorizedError,
    ValidationError,
)

from fakes import JUSTIFICATION

CLINICAL = {
    "baseline_severity": 8,
    "outcome_severity": 3,
    "duration_days": 30,
    "cost_usd": 450.0,
}


@pytest.fixture
def client(settings, services):
    app = create_app(settings, services)
    with TestClient(app) as client:
        yield client


def _submit(client, record_id="rec-1", **overrides):
    body = {
        "record_id": record_id,
        "submitter": "patient-1",
        "encrypted_payload": (b"\x13" * 512).hex(),
        "clinical": CLINICAL,
    }
    body.update(overrides)
    return client.post("/privacy/records", json=body)


def _open_session(client, threshold=2):
    response = client.post("/privacy/access", json={
        "requester": "researcher-1",
        "record_id": "rec-1",
        "justification": JUSTIFICATION,
        "preferred_threshold": threshold,
    })
    assert response.status_code == 200
    return response.json()["access_request"]["session"]


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR MAPPING
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("exc,code", [
    (ValidationError("bad"), 422),
    (CommitteeFormationError("short"), 422),
    (UnauthorizedError("no"), 403),
    (NotFoundError("gone"), 404),
    (StateError("closed"), 409),
    (DuplicateApprovalError("again"), 409),
    (CaseShieldError("other"), 400),
])
def test_status_code_mapping(exc, code):
    assert status_code_for(exc) == code


# ═══════════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "operational"


def test_submit_record(client):
    response = _submit(client)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["privacy_score"] == 70
    assert data["enhanced_record"]["commitment"]["compressed_size"] == 52
    assert "baseline_severity" not in response.text


def test_submit_rejects_bad_hex(client):
    response = _submit(client, encrypted_payload="not-hex")

    assert response.status_code == 422
    assert response.json()["detail"]["details"]["field"] == "encrypted_payload"


@pytest.mark.parametrize("literal", ["Infinity", "NaN"])
def test_submit_with_non_finite_cost_reports_failed_proof(client, literal):
    payload = (b"x" * 64).hex()
    # json= would refuse to encode a non-finite float
    body = (
        '{"record_id": "rec-1", "submitter": "patient-1", '
        f'"encrypted_payload": "{payload}", '
        '"clinical": {"baseline_severity": 8, "outcome_severity": 3, '
        f'"duration_days": 30, "cost_usd": {literal}}}}}'
    )
    response = client.post(
        "/privacy/records", content=body, headers={"content-type": "application/json"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["operations"][0]["status"] == "failed"
    assert data["operations"][0]["metadata"]["error"]["error_code"] == "VALIDATION_ERROR"


def test_resubmit_conflicts(client):
    _submit(client)
    response = _submit(client)
    assert response.status_code == 409
    assert response.json()["detail"]["error_code"] == "STATE_ERROR"


def test_score_and_validation(client):
    assert client.get("/privacy/records/rec-1/score").status_code == 404

    _submit(client)
    score = client.get("/privacy/records/rec-1/score").json()
    assert score == {"record_id": "rec-1", "privacy_score": 70, "privacy_level": "High"}

    response = client.post("/privacy/records/rec-1/validations", json={
        "validator": "validator-0",
        "approve": True,
        "clinical": CLINICAL,
    })
    assert response.status_code == 200
    assert response.json()["privacy_score"] == 50


def test_committee_flow_over_http(client):
    _submit(client)
    session = _open_session(client, threshold=2)
    sid = session["id"]
    members = [m["validator_id"] for m in session["committee"]]

    assert client.post(f"/privacy/access/{sid}/decrypt", json={"requester": "researcher-1"}).status_code == 409

    first = client.post(f"/privacy/access/{sid}/approve", json={
        "validator": members[0], "share_commitment": "cafe",
    })
    assert first.json()["status"] == "active"
    assert first.json()["committee"][0]["share_commitment"] == "cafe"

    again = client.post(f"/privacy/access/{sid}/approve", json={"validator": members[0]})
    assert again.status_code == 409
    assert again.json()["detail"]["error_code"] == "DUPLICATE_APPROVAL"

    outsider = client.post(f"/privacy/access/{sid}/approve", json={"validator": "validator-7"})
    assert outsider.status_code == 403

    second = client.post(f"/privacy/access/{sid}/approve", json={"validator": members[1]})
    assert second.json()["status"] == "approved"

    committee = client.get(f"/privacy/access/{sid}/committee").json()
    assert committee["progress"] == 100.0

    wrong = client.post(f"/privacy/access/{sid}/decrypt", json={"requester": "researcher-2"})
    assert wrong.status_code == 403

    decrypted = client.post(f"/privacy/access/{sid}/decrypt", json={"requester": "researcher-1"})
    assert decrypted.status_code == 200
    assert decrypted.json()["approved_by"] == members[:2]

    assert client.get("/privacy/records/rec-1/score").json()["privacy_score"] == 100


def test_get_session_reports_time_remaining(client):
    session = _open_session(client)
    data = client.get(f"/privacy/access/{session['id']}").json()

    assert data["time_remaining"] == "24h 0m"
    assert data["status"] == "pending"
    assert client.get("/privacy/access/missing").status_code == 404


def test_reject_and_cancel(client):
    rejected = _open_session(client)
    response = client.post(f"/privacy/access/{rejected['id']}/reject", json={
        "validator": rejected["committee"][0]["validator_id"], "reason": "scope",
    })
    assert response.json()["status"] == "rejected"

    cancelled = _open_session(client)
    assert client.delete(
        f"/privacy/access/{cancelled['id']}", params={"requester": "researcher-2"},
    ).status_code == 403
    response = client.delete(f"/privacy/access/{cancelled['id']}", params={"requester": "researcher-1"})
    assert response.json() == {"session_id": cancelled["id"], "cancelled": True}
    assert client.get(f"/privacy/access/{cancelled['id']}").status_code == 404


def test_short_justification_is_422(client):
    response = client.post("/privacy/access", json={
        "requester": "researcher-1", "record_id": "rec-1", "justification": "because",
    })
    assert response.status_code == 422
    assert response.json()["detail"]["error_code"] == "VALIDATION_ERROR"


def test_status_endpoint(client):
    data = client.get("/privacy/status").json()

    assert data["sweeper_running"] is True
    assert data["configuration"]["valid"] is True
    assert data["services"]["compression"]["backend"] == "simulated"
