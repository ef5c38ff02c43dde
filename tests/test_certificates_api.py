from datetime import date, timedelta

from app.core.database import get_db, new_id


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def days_from_today(days):
    return (date.today() + timedelta(days=days)).isoformat()


def create_certificate(client, token, client_id, valid_until, **overrides):
    payload = {
        "clientId": client_id,
        "type": "recipient_certificate",
        "typeName": "受給者証",
        "number": "1234567890",
        "validUntil": valid_until,
    }
    payload.update(overrides)
    return client.post("/certificates", json=payload, headers=auth_header(token))


def test_status_is_derived_from_expiry(api_client, staff_token, client_ids):
    cases = [(-1, "expired"), (10, "expiring_soon"), (100, "valid")]
    for days, expected in cases:
        response = create_certificate(api_client, staff_token, client_ids["C001"], days_from_today(days))
        assert response.status_code == 201
        assert response.json()["status"] == expected
        assert response.json()["client"]["clientNumber"] == "C001"


def test_expiring_report_groups_by_urgency(api_client, staff_token, client_ids):
    for days in (-5, 7, 45, 200):
        create_certificate(api_client, staff_token, client_ids["C002"], days_from_today(days))

    response = api_client.get("/certificates/expiring", headers=auth_header(staff_token))
    assert response.status_code == 200
    body = response.json()
    assert body["counts"] == {"expired": 1, "expiringSoon": 1, "expiring": 1}
    assert body["days"] == 90

    response = api_client.get("/certificates/expiring", params={"days": 10}, headers=auth_header(staff_token))
    assert response.json()["counts"] == {"expired": 1, "expiringSoon": 1, "expiring": 0}


def test_stale_status_is_refreshed_on_read(api_client, staff_token, client_ids):
    certificate_id = new_id()
    with get_db() as conn:
        conn.execute('''
            INSERT INTO certificates (id, client_id, type, type_name, valid_until, status)
            VALUES (?, ?, 'recipient_certificate', '受給者証', ?, 'valid')
        ''', (certificate_id, client_ids["C003"], days_from_today(-2)))
        conn.commit()

    response = api_client.get("/certificates", params={"status": "expired"}, headers=auth_header(staff_token))
    assert [c["id"] for c in response.json()["certificates"]] == [certificate_id]

    with get_db() as conn:
        stored = conn.execute("SELECT status FROM certificates WHERE id = ?", (certificate_id,)).fetchone()
    assert stored['status'] == "expired"


def test_pending_renewal_survives_reads_and_edits(api_client, staff_token, client_ids):
    certificate_id = create_certificate(
        api_client, staff_token, client_ids["C001"], days_from_today(-3)
    ).json()["id"]

    response = api_client.put(
        f"/certificates/{certificate_id}", json={"status": "pending_renewal"}, headers=auth_header(staff_token)
    )
    assert response.json()["status"] == "pending_renewal"

    response = api_client.put(
        f"/certificates/{certificate_id}", json={"notes": "申請中"}, headers=auth_header(staff_token)
    )
    assert response.json()["status"] == "pending_renewal"

    response = api_client.get(f"/certificates/{certificate_id}", headers=auth_header(staff_token))
    assert response.json()["status"] == "pending_renewal"

    # A renewed expiry date goes back to date-based status
    response = api_client.put(
        f"/certificates/{certificate_id}", json={"validUntil": days_from_today(365)}, headers=auth_header(staff_token)
    )
    assert response.json()["status"] == "valid"


def test_certificate_validation(api_client, staff_token, client_ids):
    response = create_certificate(api_client, staff_token, client_ids["C001"], "not-a-date")
    assert response.status_code == 400
    response = create_certificate(api_client, staff_token, client_ids["C001"], days_from_today(10), status="lost")
    assert response.status_code == 400
    response = create_certificate(api_client, staff_token, "unknown", days_from_today(10))
    assert response.status_code == 404
    response = api_client.get("/certificates", params={"expiringWithinDays": -1}, headers=auth_header(staff_token))
    assert response.status_code == 400


def test_delete_certificate(api_client, staff_token, client_ids):
    certificate_id = create_certificate(
        api_client, staff_token, client_ids["C001"], days_from_today(10)
    ).json()["id"]
    assert api_client.delete(f"/certificates/{certificate_id}", headers=auth_header(staff_token)).status_code == 200
    assert api_client.get(f"/certificates/{certificate_id}", headers=auth_header(staff_token)).status_code == 404
