"""Interview session workflow rules."""

import pytest

from app.core.errors import ConflictError
from app.services import session_state


def session(status, recording=True, ai=True):
    return {
        "id": "s-1",
        "status": status,
        "recording_consent": recording,
        "ai_processing_consent": ai,
    }


def test_transition_table_only_names_known_statuses():
    for source, targets in session_state.TRANSITIONS.items():
        assert source in session_state.SESSION_STATUSES
        for target in targets:
            assert target in session_state.SESSION_STATUSES
            assert target != source


def test_allowed_and_forbidden_moves():
    assert session_state.can_transition("draft", "scheduled")
    assert session_state.can_transition("processing", "transcribing")
    assert session_state.can_transition("archived", "draft")
    assert not session_state.can_transition("draft", "completed")
    assert not session_state.can_transition("completed", "draft")
    assert session_state.allowed_transitions("completed") == ("archived",)


def test_illegal_transition_reports_allowed_targets():
    with pytest.raises(ConflictError) as excinfo:
        session_state.validate_transition(session("draft"), "completed")

    error = excinfo.value
    assert error.status_code == 409
    assert error.extra["currentStatus"] == "draft"
    assert error.extra["targetStatus"] == "completed"
    assert error.extra["allowedTransitions"] == ["scheduled", "recording", "archived"]


def test_recording_needs_recording_consent():
    with pytest.raises(ConflictError):
        session_state.validate_transition(session("draft", recording=False), "recording")
    session_state.validate_transition(session("draft"), "recording")


def test_ai_stages_need_ai_consent():
    with pytest.raises(ConflictError):
        session_state.validate_transition(session("recording", ai=False), "transcribing")
    with pytest.raises(ConflictError):
        session_state.validate_transition(session("transcribing", ai=False), "processing")
    # Leaving the AI stages needs no consent
    session_state.validate_transition(session("transcribing", ai=False), "recording")


def test_auto_advance_targets():
    assert session_state.auto_advance_target("draft", "upload") == "recording"
    assert session_state.auto_advance_target("recording", "upload") is None
    assert session_state.auto_advance_target("recording", "transcribe") == "transcribing"
    assert session_state.auto_advance_target("transcribing", "transcribe") is None
    assert session_state.auto_advance_target("transcribing", "summarize") == "processing"
    assert session_state.auto_advance_target("recording", "summarize") is None
    assert session_state.auto_advance_target("processing", "extract") == "completed"
    assert session_state.auto_advance_target("completed", "extract") is None


def test_locked_statuses():
    assert session_state.is_locked("completed")
    assert session_state.is_locked("archived")
    assert not session_state.is_locked("processing")


def test_transition_table_has_a_label_per_status():
    table = session_state.transition_table()
    assert set(table["labels"]) == set(session_state.SESSION_STATUSES)
    assert table["transitions"]["recording"] == ["transcribing", "draft"]
