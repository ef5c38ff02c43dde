from app.core.database import get_db


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def report(client, token, day, status="present", **fields):
    return client.post(
        "/attendance/report",
        json={"date": day, "status": status, **fields},
        headers=auth_header(token),
    )


def confirm(client, token, client_id, day, status="present", **fields):
    return client.post(
        "/attendance/confirm",
        json={"clientId": client_id, "date": day, "status": status, **fields},
        headers=auth_header(token),
    )


def test_client_report_is_upserted(api_client, client_token, client_ids):
    response = report(api_client, client_token, "2024-06-03", checkInTime="09:10", healthCondition="good")
    assert response.status_code == 200
    assert response.json()["report"]["clientId"] == client_ids["C001"]

    response = report(api_client, client_token, "2024-06-03", status="late", checkInTime="10:30")
    assert response.json()["report"]["status"] == "late"

    with get_db() as conn:
        count = conn.execute("SELECT COUNT(*) FROM attendance_reports").fetchone()[0]
    assert count == 1


def test_report_validation_and_roles(api_client, client_token, staff_token):
    assert report(api_client, client_token, "2024-06-03", status="napping").status_code == 400
    assert report(api_client, client_token, "2024/06/03").status_code == 400
    assert report(
        api_client, client_token, "2024-06-03", checkInTime="15:00", checkOutTime="09:00"
    ).status_code == 400
    assert report(api_client, staff_token, "2024-06-03").status_code == 403


def test_daily_board_tracks_pending_confirmations(api_client, client_token, staff_token, client_ids):
    report(api_client, client_token, "2024-06-03", checkInTime="09:00")

    response = api_client.get("/attendance/daily", params={"date": "2024-06-03"}, headers=auth_header(staff_token))
    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == {"total": 3, "reported": 1, "confirmed": 0, "pending": 1}
    row = next(r for r in body["clients"] if r["client"]["id"] == client_ids["C001"])
    assert row["needsConfirmation"] is True

    response = confirm(api_client, staff_token, client_ids["C001"], "2024-06-03",
                       checkInTime="09:00", checkOutTime="15:00")
    assert response.status_code == 200
    assert response.json()["confirmation"]["confirmedById"] is not None

    body = api_client.get(
        "/attendance/daily", params={"date": "2024-06-03"}, headers=auth_header(staff_token)
    ).json()
    assert body["summary"]["pending"] == 0
    assert body["summary"]["confirmed"] == 1


def test_second_confirmation_overwrites_first(api_client, staff_token, client_ids):
    confirm(api_client, staff_token, client_ids["C002"], "2024-06-03")
    response = confirm(api_client, staff_token, client_ids["C002"], "2024-06-03", status="sick", notes="発熱")
    assert response.json()["confirmation"]["status"] == "sick"

    with get_db() as conn:
        rows = conn.execute("SELECT status FROM attendance_confirmations").fetchall()
    assert [r['status'] for r in rows] == ["sick"]


def test_confirm_validation(api_client, staff_token, client_ids):
    c001 = client_ids["C001"]
    assert confirm(api_client, staff_token, c001, "2024-06-03",
                   checkInTime="15:00", checkOutTime="09:00").status_code == 400
    assert confirm(api_client, staff_token, c001, "2024-06-03", actualMinutes=-5).status_code == 400
    assert confirm(api_client, staff_token, c001, "2024-06-03", checkInTime="25:99").status_code == 400
    assert confirm(api_client, staff_token, "unknown", "2024-06-03").status_code == 404


def test_bare_time_mixed_with_offset_timestamp(api_client, staff_token, client_ids):
    c001 = client_ids["C001"]
    response = confirm(api_client, staff_token, c001, "2025-06-02",
                       checkInTime="09:00", checkOutTime="2025-06-02T15:00:00+09:00")
    assert response.status_code == 200

    response = confirm(api_client, staff_token, c001, "2025-06-03",
                       checkInTime="2025-06-03T15:00:00+09:00", checkOutTime="09:00")
    assert response.status_code == 400

    response = api_client.get(
        "/attendance/monthly", params={"month": "2025-06", "clientId": c001}, headers=auth_header(staff_token)
    )
    assert response.status_code == 200
    by_client = {c["clientId"]: c for c in response.json()["clients"]}
    assert by_client[c001]["presentMinutes"] == 360


def test_bulk_confirm_is_all_or_nothing(api_client, staff_token, client_ids):
    response = api_client.post(
        "/attendance/confirm-bulk",
        json={
            "date": "2024-06-04",
            "entries": [
                {"clientId": client_ids["C001"], "status": "present"},
                {"clientId": "unknown", "status": "present"},
            ],
        },
        headers=auth_header(staff_token),
    )
    assert response.status_code == 404
    with get_db() as conn:
        assert conn.execute("SELECT COUNT(*) FROM attendance_confirmations").fetchone()[0] == 0

    response = api_client.post(
        "/attendance/confirm-bulk",
        json={
            "date": "2024-06-04",
            "entries": [
                {"clientId": client_ids["C001"], "status": "present", "actualMinutes": 300},
                {"clientId": client_ids["C002"], "status": "absent"},
            ],
        },
        headers=auth_header(staff_token),
    )
    assert response.status_code == 200
    assert response.json()["count"] == 2


def test_monthly_view_and_utilization(api_client, staff_token, client_ids):
    c001, c002 = client_ids["C001"], client_ids["C002"]
    for day in ("2024-06-03", "2024-06-04", "2024-06-05"):
        confirm(api_client, staff_token, c001, day)
    confirm(api_client, staff_token, c002, "2024-06-03")
    confirm(api_client, staff_token, c002, "2024-06-04", status="sick")
    confirm(api_client, staff_token, c002, "2024-07-01")

    response = api_client.get("/attendance/monthly", params={"month": "2024-06"}, headers=auth_header(staff_token))
    assert response.status_code == 200
    body = response.json()
    assert body["openDays"] == 20
    by_client = {c["clientId"]: c for c in body["clients"]}
    assert by_client[c001]["present"] == 3
    assert by_client[c002]["present"] == 1
    assert by_client[c002]["absent"] == 1
    assert len(body["confirmations"]) == 5

    response = api_client.get(
        "/attendance/utilization", params={"month": "2024-06"}, headers=auth_header(staff_token)
    )
    body = response.json()
    assert body["presentDays"] == 4
    assert body["capacity"] == 20
    assert body["utilization"] == 1.0

    response = api_client.get(
        "/attendance/utilization", params={"month": "2024-06", "clientId": c001}, headers=auth_header(staff_token)
    )
    assert response.json()["presentDays"] == 3


def test_my_history(api_client, client_token, staff_token, client_ids):
    report(api_client, client_token, "2024-06-03")
    confirm(api_client, staff_token, client_ids["C001"], "2024-06-03")
    confirm(api_client, staff_token, client_ids["C002"], "2024-06-03")

    response = api_client.get(
        "/attendance/my-history", params={"month": "2024-06"}, headers=auth_header(client_token)
    )
    assert response.status_code == 200
    body = response.json()
    assert len(body["reports"]) == 1
    assert [c["clientId"] for c in body["confirmations"]] == [client_ids["C001"]]
