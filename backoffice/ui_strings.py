from __future__ import annotations

from typing import Dict, List


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "tender": [
        {"key": "draft", "label": "Draft", "description": "Tender prepared but not yet open."},
        {"key": "active", "label": "Active", "description": "Tender open until its deadline."},
        {"key": "closed", "label": "Closed", "description": "Deadline passed or tender resolved."},
        {"key": "cancelled", "label": "Cancelled", "description": "Tender withdrawn by its creator."},
    ],
    "tender_task": [
        {"key": "pending", "label": "Pending", "description": "Waiting for the assignee to submit a file."},
        {"key": "submitted", "label": "Submitted", "description": "File submitted by the assignee."},
        {"key": "deleted", "label": "Deleted", "description": "Task withdrawn."},
    ],
    "rfq": [
        {"key": "active", "label": "Active", "description": "RFQ open until its closing date."},
        {"key": "sent", "label": "Sent", "description": "RFQ resolved and sent out."},
        {"key": "closed", "label": "Closed", "description": "Closing date passed."},
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "assignee_invalid": "Invalid assignee: user not in this company.",
        "auth_required": "Authentication required.",
        "configuration_missing": "No notification sender is configured for this company.",
        "delivery_failed": "The notification could not be delivered.",
        "file_not_found": "No file uploaded for this task.",
        "file_required": "No file uploaded.",
        "file_too_large": "File too large. Maximum file size is 10MB.",
        "file_type_invalid": "Invalid file type. Allowed: PDF, DOC, DOCX, XLS, XLSX, JPG, PNG, ZIP.",
        "not_found": "Resource not found.",
        "permission_denied": "You are not allowed to perform this action.",
        "resolve_after_deadline": "Cannot mark resolved after the closing date.",
        "rfq_fields_required": "Subject, sender address, dates and at least one item are required.",
        "rfq_not_found": "RFQ not found.",
        "status_invalid": "Status is not valid for this entity.",
        "sweep_in_progress": "This reminder job is already running.",
        "sweep_unknown": "Unknown reminder job.",
        "task_fields_required": "Title and assignee are required for a task.",
        "task_not_found": "Task not found.",
        "tender_fields_required": "Title and deadline are required.",
        "tender_not_found": "Tender not found.",
        "timestamp_invalid": "Date value could not be parsed.",
        "unexpected_error": "The operation could not be completed. Please try again shortly.",
        "validation_error": "The request is not valid.",
    },
}


def status_label(group: str, key: str | None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    return str(key or "")


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)
