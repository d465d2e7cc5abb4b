# Overview: Append-only audit trail for document and payment lifecycle events.

from __future__ import annotations

import json
from typing import Any, Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
"""
Audit trail invariants

- Append-only; no updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    document_id: int | None = None,
    payment_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: dict[str, Any] | None = None,
) -> AuditEvent:
    ev = AuditEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        document_id=document_id,
        payment_id=payment_id,
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(*, document_id: int | None = None, payment_id: int | None = None) -> list[AuditEvent]:
    q = db.session.query(AuditEvent)
    if document_id is not None:
        q = q.filter(AuditEvent.document_id == document_id)
    if payment_id is not None:
        q = q.filter(AuditEvent.payment_id == payment_id)
    return q.order_by(AuditEvent.id.asc()).all()
