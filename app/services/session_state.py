# app/services/session_state.py
"""
Interview session workflow.

TRANSITIONS is the single table of legal explicit status changes.
STATUS_GUARDS holds the consent checks that apply whenever a session enters
a status, whether through an explicit transition or an operation's
auto-advance.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.errors import ConflictError

DRAFT = "draft"
SCHEDULED = "scheduled"
RECORDING = "recording"
TRANSCRIBING = "transcribing"
PROCESSING = "processing"
COMPLETED = "completed"
ARCHIVED = "archived"

SESSION_STATUSES = (DRAFT, SCHEDULED, RECORDING, TRANSCRIBING, PROCESSING, COMPLETED, ARCHIVED)

SESSION_TYPES = (
    "initial_assessment",
    "monitoring",
    "review",
    "regular",
    "emergency",
    "family",
    "external",
    "other",
)

STATUS_LABELS = {
    DRAFT: "下書き",
    SCHEDULED: "予定",
    RECORDING: "録音中",
    TRANSCRIBING: "文字起こし中",
    PROCESSING: "処理中",
    COMPLETED: "完了",
    ARCHIVED: "アーカイブ",
}

TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    DRAFT: (SCHEDULED, RECORDING, ARCHIVED),
    SCHEDULED: (RECORDING, DRAFT, ARCHIVED),
    RECORDING: (TRANSCRIBING, DRAFT),
    TRANSCRIBING: (PROCESSING, RECORDING),
    PROCESSING: (COMPLETED, TRANSCRIBING),
    COMPLETED: (ARCHIVED,),
    ARCHIVED: (DRAFT,),
}

# Metadata edits are refused once a session reaches these
LOCKED_STATUSES = (COMPLETED, ARCHIVED)

def _require_recording_consent(session: Dict[str, Any]) -> Optional[str]:
    if not session.get('recording_consent'):
        return "Recording consent has not been given"
    return None

def _require_ai_consent(session: Dict[str, Any]) -> Optional[str]:
    if not session.get('ai_processing_consent'):
        return "AI processing consent has not been given"
    return None

STATUS_GUARDS: Dict[str, List[Callable[[Dict[str, Any]], Optional[str]]]] = {
    RECORDING: [_require_recording_consent],
    TRANSCRIBING: [_require_ai_consent],
    PROCESSING: [_require_ai_consent],
}

# Operation -> (statuses it advances from, status it advances to)
AUTO_ADVANCE: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "upload": ((DRAFT, SCHEDULED), RECORDING),
    "transcribe": ((RECORDING, DRAFT, SCHEDULED), TRANSCRIBING),
    "summarize": ((TRANSCRIBING,), PROCESSING),
    "extract": ((PROCESSING, TRANSCRIBING), COMPLETED),
}

def allowed_transitions(status: str) -> Tuple[str, ...]:
    return TRANSITIONS.get(status, ())

def can_transition(current: str, target: str) -> bool:
    return target in allowed_transitions(current)

def check_guards(session: Dict[str, Any], target: str):
    for guard in STATUS_GUARDS.get(target, []):
        failure = guard(session)
        if failure:
            raise ConflictError(failure, {"targetStatus": target})

def validate_transition(session: Dict[str, Any], target: str):
    """Raise ConflictError unless an explicit move to target is legal"""
    current = session['status']
    if not can_transition(current, target):
        allowed = list(allowed_transitions(current))
        allowed_labels = ", ".join(STATUS_LABELS[s] for s in allowed) or "なし"
        raise ConflictError(
            f"Cannot change status from {STATUS_LABELS.get(current, current)} to "
            f"{STATUS_LABELS.get(target, target)} (allowed: {allowed_labels})",
            {
                "currentStatus": current,
                "targetStatus": target,
                "allowedTransitions": allowed,
            }
        )
    check_guards(session, target)

def auto_advance_target(status: str, operation: str) -> Optional[str]:
    """Status an operation moves the session to, or None to leave it"""
    sources, target = AUTO_ADVANCE[operation]
    if status in sources:
        return target
    return None

def is_locked(status: str) -> bool:
    return status in LOCKED_STATUSES

def transition_table() -> Dict[str, Any]:
    return {
        "transitions": {status: list(targets) for status, targets in TRANSITIONS.items()},
        "labels": dict(STATUS_LABELS),
    }
