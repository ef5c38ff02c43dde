import pytest

from app.core.database import get_db
from app.services.report_service import UTF8_BOM


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def june_run(api_client, staff_token, manager_token, client_ids):
    for day in ("2024-06-03", "2024-06-04"):
        response = api_client.post(
            "/attendance/confirm",
            json={"clientId": client_ids["C001"], "date": day, "status": "present", "actualMinutes": 240},
            headers=auth_header(staff_token),
        )
        assert response.status_code == 200
    response = api_client.post("/payroll", json={"month": "2024-06"}, headers=auth_header(manager_token))
    assert response.status_code == 201
    return response.json()


def test_payroll_csv_download(api_client, staff_token, june_run):
    response = api_client.get(f"/reports/payroll/{june_run['id']}/csv", headers=auth_header(staff_token))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="payroll_2024-06.csv"' in response.headers["content-disposition"]

    text = response.content.decode("utf-8")
    assert text.startswith(UTF8_BOM)
    assert "山田 一郎" in text
    assert "【合計】" in text

    with get_db() as conn:
        exports = conn.execute(
            "SELECT COUNT(*) FROM audit_logs WHERE action = 'export' AND resource_id = ?", (june_run['id'],)
        ).fetchone()[0]
    assert exports == 1


def test_payslip_html(api_client, staff_token, client_ids, june_run):
    response = api_client.get(
        f"/reports/payroll/{june_run['id']}/slip/{client_ids['C001']}", headers=auth_header(staff_token)
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "工賃支払明細書" in response.text
    assert "山田 一郎" in response.text
    assert "2,000" in response.text

    response = api_client.get(
        f"/reports/payroll/{june_run['id']}/slip/{client_ids['C002']}", headers=auth_header(staff_token)
    )
    assert response.status_code == 404


def test_reports_for_unknown_run(api_client, staff_token):
    assert api_client.get("/reports/payroll/nope/csv", headers=auth_header(staff_token)).status_code == 404


def test_monthly_attendance_report(api_client, staff_token, june_run):
    response = api_client.get(
        "/reports/attendance/monthly", params={"month": "2024-06"}, headers=auth_header(staff_token)
    )
    assert response.status_code == 200
    lines = response.content.decode("utf-8").lstrip(UTF8_BOM).splitlines()
    # Header plus one row per active client
    assert len(lines) == 4
    assert lines[1].startswith("C001,山田 一郎,2,0")

    response = api_client.get(
        "/reports/attendance/monthly", params={"month": "2024-06", "format": "html"},
        headers=auth_header(staff_token),
    )
    assert response.headers["content-type"].startswith("text/html")
    assert "勤怠月報" in response.text

    response = api_client.get(
        "/reports/attendance/monthly", params={"month": "2024-06", "format": "pdf"},
        headers=auth_header(staff_token),
    )
    assert response.status_code == 400
