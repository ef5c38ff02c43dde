"""Payroll runs end to end through the API."""

import pytest

from app.core.database import get_db


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def confirm(client, token, client_id, day, status="present", **fields):
    response = client.post(
        "/attendance/confirm",
        json={"clientId": client_id, "date": day, "status": status, **fields},
        headers=auth_header(token),
    )
    assert response.status_code == 200, response.text


@pytest.fixture
def june_attendance(api_client, staff_token, client_ids):
    """C001 works two six-hour days and assembles ten pieces in June 2024."""

    c001 = client_ids["C001"]
    confirm(api_client, staff_token, c001, "2024-06-03", checkInTime="09:00", checkOutTime="15:00")
    confirm(api_client, staff_token, c001, "2024-06-04", checkInTime="09:00", checkOutTime="15:00")
    confirm(api_client, staff_token, c001, "2024-06-05", status="absent")
    confirm(api_client, staff_token, client_ids["C002"], "2024-06-03", status="sick")

    response = api_client.post(
        "/wages/work-logs",
        json={"clientId": c001, "date": "2024-06-04", "workType": "assembly", "quantity": 10},
        headers=auth_header(staff_token),
    )
    assert response.status_code == 201


def create_run(client, token, month="2024-06"):
    return client.post("/payroll", json={"month": month}, headers=auth_header(token))


def test_create_run_computes_lines(api_client, manager_token, client_ids, june_attendance):
    response = create_run(api_client, manager_token)
    assert response.status_code == 201, response.text

    run = response.json()
    assert run["status"] == "draft"
    assert run["periodStart"] == "2024-06-01"
    assert run["periodEnd"] == "2024-06-30"

    # Only clients with present days get a line
    assert len(run["lines"]) == 1
    line = run["lines"][0]
    assert line["clientId"] == client_ids["C001"]
    assert line["workDays"] == 2
    assert line["totalMinutes"] == 720
    assert line["baseAmount"] == 3000
    assert line["pieceAmount"] == 500
    assert line["netAmount"] == 3500
    assert line["breakdown"]["calculationType"] == "mixed"
    assert line["breakdown"]["pieceDetails"][0]["workType"] == "assembly"

    assert run["summary"]["totalNetAmount"] == 3500
    assert run["summary"]["totalWorkDays"] == 2


def test_duplicate_period_conflicts(api_client, manager_token, june_attendance):
    first = create_run(api_client, manager_token).json()

    response = create_run(api_client, manager_token)
    assert response.status_code == 409
    assert response.json()["existingId"] == first["id"]

    with get_db() as conn:
        assert conn.execute("SELECT COUNT(*) FROM payroll_runs").fetchone()[0] == 1


def test_support_staff_cannot_create_runs(api_client, staff_token):
    assert create_run(api_client, staff_token).status_code == 403


def test_invalid_month(api_client, manager_token):
    assert create_run(api_client, manager_token, "2024-13").status_code == 400
    assert create_run(api_client, manager_token, "June").status_code == 400


def test_status_moves_forward_only(api_client, manager_token, june_attendance):
    run_id = create_run(api_client, manager_token).json()["id"]

    response = api_client.post(f"/payroll/{run_id}/paid", headers=auth_header(manager_token))
    assert response.status_code == 409
    assert response.json()["currentStatus"] == "draft"

    response = api_client.post(f"/payroll/{run_id}/confirm", headers=auth_header(manager_token))
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"
    assert response.json()["confirmedAt"] is not None

    response = api_client.post(f"/payroll/{run_id}/confirm", headers=auth_header(manager_token))
    assert response.status_code == 409
    assert response.json()["currentStatus"] == "confirmed"

    response = api_client.put(f"/payroll/{run_id}/paid", headers=auth_header(manager_token))
    assert response.status_code == 200
    assert response.json()["status"] == "paid"
    assert response.json()["paidAt"] is not None


def test_client_rule_overrides_default(api_client, manager_token, staff_token, client_ids, june_attendance):
    c002 = client_ids["C002"]
    response = api_client.post(
        "/wages/rules",
        json={
            "name": "佐藤さん日額",
            "clientId": c002,
            "calculationType": "daily",
            "dailyRate": 1200,
            "deductions": [{"name": "昼食代", "type": "fixed", "amount": 200}],
            "validFrom": "2024-06-01",
        },
        headers=auth_header(manager_token),
    )
    assert response.status_code == 201
    rule_id = response.json()["id"]

    confirm(api_client, staff_token, c002, "2024-06-06")
    confirm(api_client, staff_token, c002, "2024-06-07")

    run = create_run(api_client, manager_token).json()
    line = next(l for l in run["lines"] if l["clientId"] == c002)
    assert line["wageRuleId"] == rule_id
    assert line["baseAmount"] == 2400
    assert line["deductions"] == 200
    assert line["netAmount"] == 2200

    # Rules referenced by a run cannot be deleted
    response = api_client.delete(f"/wages/rules/{rule_id}", headers=auth_header(manager_token))
    assert response.status_code == 409


def test_list_runs_with_filters(api_client, manager_token, staff_token, june_attendance):
    run_id = create_run(api_client, manager_token).json()["id"]

    response = api_client.get("/payroll", params={"month": "2024-06"}, headers=auth_header(staff_token))
    assert response.status_code == 200
    runs = response.json()["payrollRuns"]
    assert [r["id"] for r in runs] == [run_id]
    assert runs[0]["summary"]["clientCount"] == 1

    response = api_client.get("/payroll", params={"status": "paid"}, headers=auth_header(staff_token))
    assert response.json()["payrollRuns"] == []

    response = api_client.get("/payroll", params={"status": "bogus"}, headers=auth_header(staff_token))
    assert response.status_code == 400


def test_stored_lines_are_stable(api_client, manager_token, staff_token, june_attendance):
    run_id = create_run(api_client, manager_token).json()["id"]

    first = api_client.get(f"/payroll/{run_id}", headers=auth_header(staff_token)).json()
    # Later attendance does not change an existing run
    confirm(api_client, staff_token, first["lines"][0]["clientId"], "2024-06-10")
    second = api_client.get(f"/payroll/{run_id}", headers=auth_header(staff_token)).json()
    assert first["lines"] == second["lines"]
    assert first["summary"] == second["summary"]


def test_unknown_run_is_404(api_client, staff_token):
    response = api_client.get("/payroll/does-not-exist", headers=auth_header(staff_token))
    assert response.status_code == 404


def test_new_default_rule_replaces_previous_default(api_client, manager_token):
    response = api_client.post(
        "/wages/rules",
        json={"name": "新標準", "calculationType": "hourly", "hourlyRate": 300,
              "validFrom": "2024-04-01", "isDefault": True},
        headers=auth_header(manager_token),
    )
    assert response.status_code == 201

    rules = api_client.get("/wages/rules", headers=auth_header(manager_token)).json()["rules"]
    defaults = [r for r in rules if r["isDefault"]]
    assert [r["name"] for r in defaults] == ["新標準"]


def test_wage_rule_validation(api_client, manager_token):
    base = {"name": "x", "validFrom": "2024-01-01"}
    cases = [
        {**base, "calculationType": "weekly"},
        {**base, "calculationType": "hourly", "hourlyRate": -1},
        {**base, "calculationType": "daily", "validUntil": "2023-12-31"},
        {**base, "calculationType": "piece_rate", "pieceRates": [{"unitPrice": 10}]},
        {**base, "calculationType": "daily", "deductions": [{"name": "d", "type": "percentage", "rate": 150}]},
        {"name": "x", "calculationType": "daily"},
    ]
    for payload in cases:
        response = api_client.post("/wages/rules", json=payload, headers=auth_header(manager_token))
        assert response.status_code == 400, payload


def test_bulk_work_logs_skip_invalid_entries(api_client, staff_token, client_ids):
    response = api_client.post(
        "/wages/work-logs/bulk",
        json={
            "date": "2024-06-03",
            "entries": [
                {"clientId": client_ids["C001"], "workType": "assembly", "quantity": 5},
                {"clientId": client_ids["C002"], "workType": "packing", "quantity": 3},
                {"clientId": "unknown", "workType": "packing", "quantity": 3},
                {"clientId": client_ids["C003"], "workType": "", "quantity": 3},
            ],
        },
        headers=auth_header(staff_token),
    )
    assert response.status_code == 201
    assert response.json()["count"] == 2
    assert response.json()["skipped"] == 2

    logs = api_client.get(
        "/wages/work-logs", params={"date": "2024-06-03"}, headers=auth_header(staff_token)
    ).json()["workLogs"]
    assert len(logs) == 2
