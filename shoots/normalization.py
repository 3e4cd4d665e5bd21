"""Inbound payload adapter.

Older clients send camelCase keys, nested ``package``/``location``/``payment``
objects and the status under either ``status`` or ``workflowStatus``. Every
write endpoint runs its body through :func:`normalize_payload` so serializers
and services only ever see the canonical snake_case schema. Responses are
always canonical and tagged with ``SCHEMA_VERSION``.
"""
from rest_framework.exceptions import ValidationError

SCHEMA_VERSION = "1"
SCHEMA_VERSION_HEADER = "X-Schema-Version"

FIELD_ALIASES = {
    "workflowStatus": "workflow_status",
    "workflowStage": "workflow_stage",
    "scheduledDate": "scheduled_date",
    "clientId": "client_id",
    "clientName": "client_name",
    "clientEmail": "client_email",
    "clientPhone": "client_phone",
    "photographerId": "photographer_id",
    "editorId": "editor_id",
    "baseQuote": "base_quote",
    "taxRate": "tax_rate",
    "packageName": "package_name",
    "expectedDeliveredCount": "expected_delivered_count",
    "bracketType": "bracket_type",
    "bracketMode": "bracket_mode",
    "shootNotes": "shoot_notes",
    "photographerNotes": "photographer_notes",
    "editingNotes": "editing_notes",
    "uploadType": "upload_type",
    "extraIndices": "extra_indices",
    "fileIds": "file_ids",
    "mediaId": "media_id",
    "assignedToRole": "assigned_to_role",
    "assignedToUserId": "assigned_to_user_id",
    "paymentType": "payment_type",
}

NESTED_ALIASES = {
    "package": {
        "name": "package_name",
        "expectedDeliveredCount": "expected_delivered_count",
        "expected_delivered_count": "expected_delivered_count",
        "bracketMode": "bracket_mode",
        "bracket_mode": "bracket_mode",
    },
    "location": {
        "address": "address",
        "address2": "address2",
        "city": "city",
        "state": "state",
        "zip": "zip",
    },
    "payment": {
        "baseQuote": "base_quote",
        "base_quote": "base_quote",
        "taxRate": "tax_rate",
        "tax_rate": "tax_rate",
    },
}


def _items(data):
    if hasattr(data, "getlist"):
        return [(key, data.get(key)) for key in data.keys()]
    return list(data.items())


def _put(result, sources, canonical, value, source_key):
    if canonical in result and result[canonical] != value:
        raise ValidationError(
            {canonical: [f"Conflicting values sent as '{sources[canonical]}' and '{source_key}'."]}
        )
    result[canonical] = value
    sources.setdefault(canonical, source_key)


def normalize_payload(data):
    """Return a plain dict keyed by canonical field names."""
    if data is None:
        return {}

    result = {}
    sources = {}
    for key, value in _items(data):
        nested = NESTED_ALIASES.get(key)
        if nested is not None and isinstance(value, dict):
            for inner_key, inner_value in value.items():
                canonical = nested.get(inner_key)
                if canonical:
                    _put(result, sources, canonical, inner_value, f"{key}.{inner_key}")
            continue
        _put(result, sources, FIELD_ALIASES.get(key, key), value, key)

    if "workflow_status" in result:
        workflow_status = result.pop("workflow_status")
        _put(result, sources, "status", workflow_status, sources.pop("workflow_status"))

    return result
