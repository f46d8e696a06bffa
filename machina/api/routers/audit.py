"""Audit trail API routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from machina.api.dependencies import get_application
from machina.bootstrap import Application
from machina.domain.audit.audit_event import AuditAction, AuditOutcome
from machina.domain.core.exceptions import ValidationError

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("/events", summary="List Audit Events",
            description="Audit events matching every given filter, newest first")
def list_audit_events(
    action: Optional[str] = Query(None, description="Filter by action, e.g. machine.create"),
    outcome: Optional[str] = Query(None, description="Filter by outcome"),
    actor_id: Optional[str] = Query(None, description="Filter by acting user"),
    target_type: Optional[str] = Query(None, description="Filter by target type"),
    target_id: Optional[str] = Query(None, description="Filter by target id"),
    after: Optional[datetime] = Query(None, description="Only events at or after this time"),
    before: Optional[datetime] = Query(None, description="Only events at or before this time"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    app: Application = Depends(get_application),
) -> JSONResponse:
    try:
        if action is not None:
            AuditAction(action)
        if outcome is not None:
            AuditOutcome(outcome)
    except ValueError as e:
        raise ValidationError(str(e), {
            "actions": [a.value for a in AuditAction],
            "outcomes": [o.value for o in AuditOutcome],
        })
    events = app.audit.search(action=action, outcome=outcome, actor_id=actor_id, target_type=target_type,
                              target_id=target_id, after=after, before=before, limit=limit, offset=offset)
    return JSONResponse(content={"events": [e.to_dict() for e in events], "count": len(events),
                                 "limit": limit, "offset": offset})
