import csv
import io

from app.services.report_service import (
    UTF8_BOM,
    generate_attendance_csv,
    generate_attendance_html,
    generate_payroll_csv,
    generate_payslip_html,
)


def make_line(client_number, last_name, net_amount, minutes=480):
    return {
        "id": f"line-{client_number}",
        "clientId": f"client-{client_number}",
        "client": {
            "clientNumber": client_number,
            "lastName": last_name,
            "firstName": "太郎",
            "serviceType": "employment_continuation_b",
        },
        "workDays": 1,
        "totalMinutes": minutes,
        "baseAmount": net_amount,
        "pieceAmount": 0,
        "deductions": 0,
        "netAmount": net_amount,
        "breakdown": {
            "calculationType": "hourly",
            "wageRuleName": "標準",
            "hourlyRate": 250,
            "hoursWorked": minutes / 60,
            "pieceDetails": [],
            "deductionDetails": [],
        },
    }


def read_csv(content):
    assert content.startswith(UTF8_BOM)
    return list(csv.reader(io.StringIO(content[len(UTF8_BOM):])))


def test_payroll_csv_has_header_rows_and_total():
    rows = read_csv(generate_payroll_csv([make_line("C001", "山田", 2000), make_line("C002", "佐藤", 1000, 240)]))

    assert rows[0][0] == "利用者番号"
    assert rows[1][:3] == ["C001", "山田 太郎", "就労継続支援B型"]
    assert rows[1][4] == "8.0"
    assert rows[-1][1] == "【合計】"
    assert rows[-1][-1] == "3000"
    assert len(rows) == 4


def test_attendance_csv_rows():
    rows = read_csv(generate_attendance_csv([{
        "clientNumber": None,
        "name": "山田 太郎",
        "present": 10,
        "absent": 2,
        "late": 1,
        "earlyLeave": 0,
        "attendanceRate": 55.0,
    }]))
    assert rows[1] == ["", "山田 太郎", "10", "2", "1", "0", "55.0"]


def test_payslip_escapes_names():
    line = make_line("C001", "<b>山田</b>", 2000)
    run = {"periodStart": "2024-06-01", "paidAt": None}
    html = generate_payslip_html("就労支援センター", run, line)

    assert "工賃支払明細書" in html
    assert "2024年06月" in html
    assert "&lt;b&gt;山田&lt;/b&gt;" in html
    assert "<b>山田</b>" not in html
    assert "未確定" in html


def test_attendance_html_totals():
    rows = [
        {"clientNumber": "C001", "name": "山田 太郎", "present": 10, "absent": 1, "late": 0, "earlyLeave": 0, "attendanceRate": 50.0},
        {"clientNumber": "C002", "name": "佐藤 美咲", "present": 6, "absent": 3, "late": 1, "earlyLeave": 1, "attendanceRate": 40.0},
    ]
    html = generate_attendance_html("2024-06", 20, rows)
    assert "2024年6月" in html
    assert "開所日数: 20日" in html
    assert "45.0" in html
