from typing import Any, Dict, List

from ideaintake.models import DraftConversation, FinalRequest, Role
from ideaintake.services.state_machine import migrate_state

STAGE_LABELS = {
    "init": "Getting Started",
    "description": "Description",
    "details": "Collecting Details",
    "attachments": "Attachments",
    "summary": "Summary Review",
    "submit": "Ready to Submit",
}

STAGE_PROGRESS = {
    "init": 5,
    "description": 20,
    "details": 50,
    "attachments": 80,
    "summary": 95,
    "submit": 100,
}

STATUS_LABELS = {
    "new": "Submitted - Awaiting Review",
    "in_review": "Under Review",
    "pilot": "Pilot Implementation",
    "completed": "Completed",
    "rejected": "Not Feasible",
}

PREVIEW_CHARS = 100


def _truncate(text: str) -> str:
    return f"{text[:PREVIEW_CHARS]}..." if len(text) > PREVIEW_CHARS else text


def summarize_draft(draft: DraftConversation) -> Dict[str, Any]:
    state = migrate_state(draft.state)
    first_user = next((m.get("content") for m in draft.messages or [] if m.get("role") == Role.USER.value), None)
    preview = state.collectedData.get("processDescription") or first_user or "No message content"
    return {
        "id": draft.id,
        "type": "draft",
        "status": STAGE_LABELS.get(state.stage.value, "In Progress"),
        "statusCode": state.stage.value,
        "preview": draft.title or _truncate(preview),
        "timestamp": draft.updated_at,
        "progress": STAGE_PROGRESS.get(state.stage.value, 0),
    }


def summarize_request(request: FinalRequest) -> Dict[str, Any]:
    fields = request.structured_fields or {}
    return {
        "id": request.id,
        "type": "request",
        "status": STATUS_LABELS.get(request.status, "Unknown Status"),
        "statusCode": request.status,
        "preview": request.title or fields.get("description") or "No description available",
        "timestamp": request.updated_at,
        "complexity": fields.get("complexity", "unknown"),
        "shared": request.shared,
    }


def merge_history(drafts: List[Dict[str, Any]], requests: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    return sorted(drafts + requests, key=lambda item: item["timestamp"], reverse=True)[:limit]
