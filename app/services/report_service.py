# app/services/report_service.py
import csv
import io
import logging
from datetime import datetime
from html import escape
from typing import Any, Dict, List, Optional

from app.services.wage_service import round_2

logger = logging.getLogger(__name__)

UTF8_BOM = "\ufeff"

SERVICE_TYPE_LABELS = {
    "employment_transition": "就労移行支援",
    "employment_continuation_a": "就労継続支援A型",
    "employment_continuation_b": "就労継続支援B型",
    "employment_settlement": "就労定着支援",
}

CALCULATION_TYPE_LABELS = {
    "hourly": "時給制",
    "daily": "日額制",
    "piece_rate": "出来高制",
    "mixed": "混合制",
}

def yen(amount) -> str:
    return f"{amount:,.0f}"

def service_type_label(service_type: Optional[str]) -> str:
    return SERVICE_TYPE_LABELS.get(service_type, service_type or "")

def generate_payroll_csv(lines: List[Dict[str, Any]]) -> str:
    """Wage list for one payroll run, with a totals row; Excel-friendly BOM"""

    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")

    # Header
    writer.writerow([
        '利用者番号', '氏名', 'サービス種別', '出勤日数', '労働時間(h)',
        '基本工賃', '出来高工賃', '控除額', '差引支給額'
    ])

    # Data rows
    for line in lines:
        client = line['client']
        writer.writerow([
            client['clientNumber'] or '',
            f"{client['lastName']} {client['firstName']}",
            service_type_label(client['serviceType']),
            line['workDays'],
            round_2(line['totalMinutes'] / 60),
            line['baseAmount'],
            line['pieceAmount'],
            line['deductions'],
            line['netAmount'],
        ])

    writer.writerow([
        '',
        '【合計】',
        '',
        sum(l['workDays'] for l in lines),
        round_2(sum(l['totalMinutes'] for l in lines) / 60),
        sum(l['baseAmount'] for l in lines),
        sum(l['pieceAmount'] for l in lines),
        sum(l['deductions'] for l in lines),
        sum(l['netAmount'] for l in lines),
    ])

    return UTF8_BOM + output.getvalue()

def generate_attendance_csv(rows: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")

    writer.writerow(['利用者番号', '氏名', '出席日数', '欠席日数', '遅刻', '早退', '出席率(%)'])
    for row in rows:
        writer.writerow([
            row['clientNumber'] or '',
            row['name'],
            row['present'],
            row['absent'],
            row['late'],
            row['earlyLeave'],
            row['attendanceRate'],
        ])

    return UTF8_BOM + output.getvalue()

def _printable_page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="ja">
<head>
    <meta charset="UTF-8">
    <title>{escape(title)}</title>
    <style>
        body {{
            font-family: "Hiragino Kaku Gothic ProN", "Noto Sans JP", sans-serif;
            font-size: 10pt;
            color: #1f2937;
            margin: 2rem;
        }}

        .header {{
            text-align: center;
            margin-bottom: 1.5rem;
        }}

        .header h1 {{
            font-size: 16pt;
            margin: 0 0 0.25rem 0;
        }}

        .header .sub {{
            color: #6b7280;
        }}

        .section {{
            margin-bottom: 1.25rem;
        }}

        .section-title {{
            font-weight: bold;
            border-left: 4px solid #374151;
            padding-left: 0.5rem;
            margin-bottom: 0.5rem;
        }}

        table {{
            width: 100%;
            border-collapse: collapse;
        }}

        th, td {{
            border: 1px solid #d1d5db;
            padding: 4px 8px;
        }}

        th {{
            background: #f3f4f6;
            text-align: left;
        }}

        .text-right {{
            text-align: right;
        }}

        .detail {{
            padding-left: 30px;
            font-size: 8pt;
            color: #6b7280;
        }}

        .net-row {{
            border-top: 3px double #333;
            background: #fffff0;
            font-size: 12pt;
            font-weight: bold;
        }}

        .signature-area {{
            display: flex;
            gap: 2rem;
            margin-top: 2rem;
        }}

        .signature-box {{
            flex: 1;
            border-bottom: 1px solid #333;
            height: 40px;
        }}

        @media print {{
            body {{ margin: 0; }}
        }}
    </style>
</head>
<body>
{body}
<div class="footer">出力日時: {datetime.now().strftime('%Y-%m-%d %H:%M')}</div>
</body>
</html>"""

def generate_payslip_html(organization_name: str, run: Dict[str, Any], line: Dict[str, Any]) -> str:
    """Printable wage slip for one client in one payroll run"""
    client = line['client']
    breakdown = line.get('breakdown') or {}
    name = escape(f"{client['lastName']} {client['firstName']}")
    period_label = f"{run['periodStart'][:4]}年{run['periodStart'][5:7]}月"
    paid_label = run['paidAt'][:10] if run.get('paidAt') else "未確定"
    hours, minutes = divmod(line['totalMinutes'], 60)

    rate_rows = ""
    calc_type = breakdown.get('calculationType')
    if calc_type and calc_type != "none":
        rate_rows += f"""
        <tr>
            <th>計算方式</th>
            <td colspan="3">{escape(breakdown.get('wageRuleName') or '-')} ({CALCULATION_TYPE_LABELS.get(calc_type, calc_type)})</td>
        </tr>"""
    if breakdown.get('hourlyRate'):
        rate_rows += f"""
        <tr>
            <th>時給単価</th>
            <td class="text-right">{yen(breakdown['hourlyRate'])} 円</td>
            <th>労働時間</th>
            <td class="text-right">{breakdown.get('hoursWorked', '-')} 時間</td>
        </tr>"""
    if breakdown.get('dailyRate'):
        rate_rows += f"""
        <tr>
            <th>日額単価</th>
            <td class="text-right">{yen(breakdown['dailyRate'])} 円</td>
            <th>出勤日数</th>
            <td class="text-right">{line['workDays']} 日</td>
        </tr>"""

    piece_rows = "".join(f"""
        <tr>
            <td class="detail">└ {escape(str(p['workType']))}: {p['quantity']:g} x {p['unitPrice']:g}円</td>
            <td class="text-right detail">{yen(p['amount'])} 円</td>
        </tr>""" for p in breakdown.get('pieceDetails') or [])

    deduction_rows = "".join(f"""
        <tr>
            <td class="detail">└ {escape(str(d['name']))} ({'固定' if d['type'] == 'fixed' else '割合'})</td>
            <td class="text-right detail">- {yen(d['amount'])} 円</td>
        </tr>""" for d in breakdown.get('deductionDetails') or [])

    body = f"""
<div class="header">
    <h1>工賃支払明細書</h1>
    <div class="sub">{escape(organization_name or '')}</div>
</div>

<div class="section">
    <table>
        <tr>
            <th>対象月</th><td>{period_label}</td>
            <th>支払日</th><td>{paid_label}</td>
        </tr>
        <tr>
            <th>利用者氏名</th><td>{name}</td>
            <th>利用者番号</th><td>{escape(client['clientNumber'] or '-')}</td>
        </tr>
        <tr>
            <th>サービス種別</th><td colspan="3">{service_type_label(client['serviceType'])}</td>
        </tr>
    </table>
</div>

<div class="section">
    <div class="section-title">勤務実績</div>
    <table>
        <tr>
            <th>出勤日数</th><td class="text-right">{line['workDays']} 日</td>
            <th>総労働時間</th><td class="text-right">{hours}時間{minutes}分</td>
        </tr>{rate_rows}
    </table>
</div>

<div class="section">
    <div class="section-title">工賃明細</div>
    <table>
        <tr><th>基本工賃</th><td class="text-right">{yen(line['baseAmount'])} 円</td></tr>
        <tr><th>出来高工賃</th><td class="text-right">{yen(line['pieceAmount'])} 円</td></tr>{piece_rows}
        <tr><th>小計</th><td class="text-right">{yen(line['baseAmount'] + line['pieceAmount'])} 円</td></tr>
        <tr><th>控除額</th><td class="text-right">- {yen(line['deductions'])} 円</td></tr>{deduction_rows}
        <tr class="net-row"><th>差引支給額</th><td class="text-right">{yen(line['netAmount'])} 円</td></tr>
    </table>
</div>

<div class="signature-area">
    <div>受領者署名<div class="signature-box"></div></div>
    <div>事業所確認<div class="signature-box"></div></div>
</div>"""

    return _printable_page(f"工賃明細書 - {client['lastName']}{client['firstName']}", body)

def generate_attendance_html(month: str, open_days: int, rows: List[Dict[str, Any]]) -> str:
    year, mon = month.split("-")
    body_rows = "".join(f"""
        <tr>
            <td>{escape(row['clientNumber'] or '-')}</td>
            <td>{escape(row['name'])}</td>
            <td class="text-right">{row['present']}</td>
            <td class="text-right">{row['absent']}</td>
            <td class="text-right">{row['late']}</td>
            <td class="text-right">{row['earlyLeave']}</td>
            <td class="text-right">{row['attendanceRate']}</td>
        </tr>""" for row in rows)

    average_rate = (
        f"{sum(r['attendanceRate'] for r in rows) / len(rows):.1f}" if rows else "0"
    )

    body = f"""
<div class="header">
    <h1>勤怠月報</h1>
    <div class="sub">対象月: {int(year)}年{int(mon)}月 ／ 開所日数: {open_days}日</div>
</div>

<table>
    <thead>
        <tr>
            <th>利用者番号</th><th>氏名</th>
            <th class="text-right">出席日数</th><th class="text-right">欠席日数</th>
            <th class="text-right">遅刻</th><th class="text-right">早退</th>
            <th class="text-right">出席率(%)</th>
        </tr>
    </thead>
    <tbody>{body_rows}
    </tbody>
    <tfoot>
        <tr>
            <th colspan="2">合計 / 平均</th>
            <td class="text-right">{sum(r['present'] for r in rows)}</td>
            <td class="text-right">{sum(r['absent'] for r in rows)}</td>
            <td class="text-right">{sum(r['late'] for r in rows)}</td>
            <td class="text-right">{sum(r['earlyLeave'] for r in rows)}</td>
            <td class="text-right">{average_rate}</td>
        </tr>
    </tfoot>
</table>"""

    return _printable_page(f"勤怠月報 {month}", body)
