"""Interview session lifecycle through the API."""

from datetime import date, datetime, timedelta
from pathlib import Path

from app.core.database import get_db


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def create_session(client, token, client_id, **overrides):
    payload = {
        "clientId": client_id,
        "sessionType": "monitoring",
        "sessionDate": datetime.now().replace(microsecond=0).isoformat(),
        "recordingConsent": True,
        "aiProcessingConsent": True,
        "consentBy": "山田 一郎",
        "consentRelationship": "本人",
    }
    payload.update(overrides)
    return client.post("/interview-sessions", json=payload, headers=auth_header(token))


def upload(client, token, session_id, content_type="audio/mpeg", name="recording.mp3"):
    return client.post(
        f"/interview-sessions/{session_id}/media",
        files={"file": (name, b"ID3 fake audio bytes", content_type)},
        headers=auth_header(token),
    )


def test_full_pipeline(api_client, staff_token, client_ids):
    response = create_session(api_client, staff_token, client_ids["C001"])
    assert response.status_code == 201, response.text
    session = response.json()
    assert session["status"] == "draft"
    assert session["consentDate"] is not None
    session_id = session["id"]

    response = upload(api_client, staff_token, session_id)
    assert response.status_code == 201
    assert response.json()["sessionStatus"] == "recording"
    assert response.json()["mediaAsset"]["fileName"].endswith(".mp3")

    response = api_client.post(f"/interview-sessions/{session_id}/transcribe", headers=auth_header(staff_token))
    assert response.status_code == 201
    assert response.json()["sessionStatus"] == "transcribing"
    assert response.json()["transcript"]["version"] == 1
    assert response.json()["transcript"]["segments"][0]["speaker"] == "staff"

    # Re-running keeps the status and adds a version
    response = api_client.post(f"/interview-sessions/{session_id}/transcribe", headers=auth_header(staff_token))
    assert response.json()["transcript"]["version"] == 2
    assert response.json()["sessionStatus"] == "transcribing"

    response = api_client.post(f"/interview-sessions/{session_id}/summarize", headers=auth_header(staff_token))
    assert response.status_code == 201
    assert response.json()["sessionStatus"] == "processing"
    assert response.json()["summary"]["summaryShort"]

    response = api_client.post(f"/interview-sessions/{session_id}/extract", headers=auth_header(staff_token))
    assert response.status_code == 201
    assert response.json()["sessionStatus"] == "completed"
    extracted = response.json()["extraction"]["extractedData"]
    assert set(extracted) >= {"clientIntentions", "goals", "supportContents", "citations"}
    assert all(c["segmentIndex"] > 1 for c in extracted["citations"])

    detail = api_client.get(f"/interview-sessions/{session_id}", headers=auth_header(staff_token)).json()
    assert detail["status"] == "completed"
    assert detail["allowedTransitions"] == ["archived"]
    assert [t["version"] for t in detail["transcripts"]] == [2, 1]
    assert len(detail["mediaAssets"]) == 1
    assert len(detail["summaries"]) == 1
    assert len(detail["extractions"]) == 1

    # Completed sessions are read-only
    response = api_client.put(
        f"/interview-sessions/{session_id}", json={"notes": "late edit"}, headers=auth_header(staff_token)
    )
    assert response.status_code == 409
    assert upload(api_client, staff_token, session_id).status_code == 409
    response = api_client.post(f"/interview-sessions/{session_id}/transcribe", headers=auth_header(staff_token))
    assert response.status_code == 409


def test_illegal_status_change(api_client, staff_token, client_ids):
    session_id = create_session(api_client, staff_token, client_ids["C001"]).json()["id"]

    response = api_client.post(
        f"/interview-sessions/{session_id}/status",
        json={"status": "completed"},
        headers=auth_header(staff_token),
    )
    assert response.status_code == 409
    body = response.json()
    assert body["currentStatus"] == "draft"
    assert body["allowedTransitions"] == ["scheduled", "recording", "archived"]

    response = api_client.put(
        f"/interview-sessions/{session_id}/status",
        json={"status": "scheduled", "reason": "日程確定"},
        headers=auth_header(staff_token),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "scheduled"

    with get_db() as conn:
        row = conn.execute(
            "SELECT details FROM audit_logs WHERE action = 'status_change' AND resource_id = ?", (session_id,)
        ).fetchone()
    assert "日程確定" in row['details']


def test_consent_is_required(api_client, staff_token, client_ids):
    session_id = create_session(
        api_client, staff_token, client_ids["C001"], recordingConsent=False, aiProcessingConsent=False
    ).json()["id"]

    response = api_client.post(
        f"/interview-sessions/{session_id}/status", json={"status": "recording"}, headers=auth_header(staff_token)
    )
    assert response.status_code == 409
    assert upload(api_client, staff_token, session_id).status_code == 409

    # Granting recording consent allows the upload but not AI processing
    response = api_client.put(
        f"/interview-sessions/{session_id}", json={"recordingConsent": True}, headers=auth_header(staff_token)
    )
    assert response.status_code == 200
    assert response.json()["consentDate"] is not None
    assert upload(api_client, staff_token, session_id).status_code == 201

    response = api_client.post(f"/interview-sessions/{session_id}/transcribe", headers=auth_header(staff_token))
    assert response.status_code == 409


def test_transcribe_needs_a_recording(api_client, staff_token, client_ids):
    session_id = create_session(api_client, staff_token, client_ids["C001"]).json()["id"]
    response = api_client.post(f"/interview-sessions/{session_id}/transcribe", headers=auth_header(staff_token))
    assert response.status_code == 409

    response = api_client.post(f"/interview-sessions/{session_id}/summarize", headers=auth_header(staff_token))
    assert response.status_code == 409


def test_upload_rejects_unsupported_types(api_client, staff_token, client_ids):
    session_id = create_session(api_client, staff_token, client_ids["C001"]).json()["id"]
    response = upload(api_client, staff_token, session_id, content_type="text/plain", name="notes.txt")
    assert response.status_code == 400


def test_create_validation(api_client, staff_token, client_ids):
    too_old = (date.today() - timedelta(days=365)).isoformat() + "T10:00:00"
    assert create_session(api_client, staff_token, client_ids["C001"], sessionDate=too_old).status_code == 400
    assert create_session(api_client, staff_token, client_ids["C001"], status="completed").status_code == 400
    assert create_session(api_client, staff_token, client_ids["C001"], sessionType="party").status_code == 400
    assert create_session(api_client, staff_token, client_ids["C001"], location="x" * 201).status_code == 400
    assert create_session(api_client, staff_token, "unknown-client").status_code == 404

    response = create_session(api_client, staff_token, client_ids["C001"], status="scheduled")
    assert response.status_code == 201
    assert response.json()["status"] == "scheduled"


def test_list_sessions_filters(api_client, staff_token, client_ids):
    create_session(api_client, staff_token, client_ids["C001"])
    create_session(api_client, staff_token, client_ids["C002"], status="scheduled")

    response = api_client.get("/interview-sessions", headers=auth_header(staff_token))
    assert response.json()["total"] == 2

    response = api_client.get(
        "/interview-sessions", params={"status": "scheduled"}, headers=auth_header(staff_token)
    )
    sessions = response.json()["sessions"]
    assert len(sessions) == 1
    assert sessions[0]["clientId"] == client_ids["C002"]
    assert sessions[0]["statusLabel"] == "予定"

    response = api_client.get("/interview-sessions", params={"limit": 0}, headers=auth_header(staff_token))
    assert response.status_code == 400


def test_delete_completed_session_needs_admin(api_client, staff_token, admin_token, client_ids):
    session_id = create_session(api_client, staff_token, client_ids["C001"]).json()["id"]
    upload(api_client, staff_token, session_id)
    for operation in ("transcribe", "summarize", "extract"):
        api_client.post(f"/interview-sessions/{session_id}/{operation}", headers=auth_header(staff_token))

    with get_db() as conn:
        media_path = conn.execute(
            "SELECT storage_path FROM media_assets WHERE session_id = ?", (session_id,)
        ).fetchone()['storage_path']
    assert Path(media_path).exists()

    response = api_client.delete(f"/interview-sessions/{session_id}", headers=auth_header(staff_token))
    assert response.status_code == 403

    response = api_client.delete(f"/interview-sessions/{session_id}", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert not Path(media_path).exists()

    response = api_client.get(f"/interview-sessions/{session_id}", headers=auth_header(admin_token))
    assert response.status_code == 404


def test_status_transition_table_endpoint(api_client, staff_token):
    response = api_client.get("/interview-sessions/status-transitions", headers=auth_header(staff_token))
    assert response.status_code == 200
    assert response.json()["transitions"]["archived"] == ["draft"]
