from datetime import date

from app.services.support_plan_service import (
    add_months,
    bucket_monitoring,
    decode_content,
    encode_content,
    monitoring_frequency,
    plan_content_from_extraction,
)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 4, 1), 6) == date(2024, 10, 1)
    assert add_months(date(2024, 8, 31), 6) == date(2025, 2, 28)
    assert add_months(date(2023, 11, 30), 3) == date(2024, 2, 29)
    assert add_months(date(2024, 3, 15), -3) == date(2023, 12, 15)


def test_monitoring_frequency_by_service_type():
    assert monitoring_frequency("employment_transition") == 3
    assert monitoring_frequency("employment_continuation_b") == 6
    assert monitoring_frequency(None) == 6


def test_content_round_trip_keeps_plain_text():
    assert encode_content("自由記述") == "自由記述"
    assert decode_content("自由記述") == "自由記述"
    assert decode_content(encode_content({"goals": ["通所"]})) == {"goals": ["通所"]}
    assert decode_content(None) is None


def test_bucket_monitoring():
    today = date(2024, 6, 15)
    plans = [
        {"id": "late", "nextMonitoringDate": "2024-06-14"},
        {"id": "today", "nextMonitoringDate": "2024-06-15"},
        {"id": "unscheduled", "nextMonitoringDate": None},
    ]
    buckets = bucket_monitoring(plans, today)
    assert [p["id"] for p in buckets["overdue"]] == ["late"]
    assert [p["id"] for p in buckets["upcoming"]] == ["today"]


def test_plan_content_from_extraction_fills_missing_sections():
    extraction = {"version": 2, "extracted_data": {"goals": {"longTerm": ["就労継続"]}}}
    session = {"id": "s-1", "session_date": "2024-06-01T10:00:00"}

    content = plan_content_from_extraction(extraction, session)
    assert content["goals"] == {"longTerm": ["就労継続"]}
    assert content["strengths"] == {}
    assert content["supportContents"] == []
    assert content["generatedFrom"] == {
        "sessionId": "s-1",
        "sessionDate": "2024-06-01T10:00:00",
        "extractionVersion": 2,
    }
