"""Cross-app helpers."""
from __future__ import annotations

import json
from typing import Any

from django.core.serializers.json import DjangoJSONEncoder

from core.models import AuditLog


def _jsonable(payload: dict[str, Any] | None) -> dict[str, Any] | None:
    if payload is None:
        return None
    return json.loads(json.dumps(payload, cls=DjangoJSONEncoder))


def create_audit_log(
    actor,
    action: str,
    entity_type: str,
    entity_id,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> AuditLog:
    """Create and return a new :class:`~core.models.AuditLog` entry.

    Decimals, dates and UUIDs in ``before``/``after`` are stored in their
    JSON string form.
    """
    if actor is not None and not getattr(actor, "is_authenticated", False):
        actor = None
    return AuditLog.objects.create(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_jsonable(before),
        after_json=_jsonable(after),
    )
