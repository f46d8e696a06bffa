"""Deployment API routes."""

import json
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from machina.api.dependencies import get_actor, get_application
from machina.api.models.requests import SubmitDeploymentRequest
from machina.bootstrap import Application

router = APIRouter(prefix="/deployments", tags=["Deployments"])


def _sse(event: str, data: dict, event_id: Optional[int] = None) -> str:
    frame = f"event: {event}\n"
    if event_id is not None:
        frame += f"id: {event_id}\n"
    return frame + f"data: {json.dumps(data)}\n\n"


@router.get("", summary="List Deployments")
def list_deployments(
    machine_id: Optional[str] = Query(None, description="Filter by machine"),
    type: Optional[str] = Query(None, description="Filter by deployment type"),
    state: Optional[str] = Query(None, description="Filter by state"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    app: Application = Depends(get_application),
) -> JSONResponse:
    deployments = app.orchestrator.list(machine_id=machine_id, deployment_type=type, state=state,
                                        limit=limit, offset=offset)
    return JSONResponse(content={"deployments": [d.to_dict() for d in deployments], "count": len(deployments)})


@router.post("", status_code=202, summary="Submit Deployment")
def submit_deployment(
    body: SubmitDeploymentRequest,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    deployment = app.orchestrator.submit(body.type, body.machine_id, body.parameters, actor)
    return JSONResponse(status_code=202, content={"deployment": deployment.to_dict()})


@router.get("/{deployment_id}", summary="Get Deployment")
def get_deployment(deployment_id: str, app: Application = Depends(get_application)) -> JSONResponse:
    return JSONResponse(content={"deployment": app.orchestrator.get(deployment_id).to_dict()})


@router.post("/{deployment_id}/approve", summary="Approve Plan")
def approve_deployment(
    deployment_id: str,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    deployment = app.orchestrator.approve(deployment_id, actor)
    return JSONResponse(content={"deployment": deployment.to_dict()})


@router.post("/{deployment_id}/cancel", summary="Cancel Deployment")
def cancel_deployment(
    deployment_id: str,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    deployment = app.orchestrator.cancel(deployment_id, actor)
    return JSONResponse(content={"deployment": deployment.to_dict()})


@router.get("/{deployment_id}/logs", summary="Deployment Logs",
            description="Stored log lines, or a text/event-stream with stream=true")
def deployment_logs(
    deployment_id: str,
    request: Request,
    stream: bool = Query(False, description="Stream live lines as server-sent events"),
    app: Application = Depends(get_application),
):
    if not stream:
        logs = app.orchestrator.get_logs(deployment_id)
        return JSONResponse(content={"logs": [entry.to_dict() for entry in logs]})

    subscription = app.orchestrator.subscribe(deployment_id)
    keepalive = app.config.server.sse_keepalive_seconds

    def events() -> Iterator[str]:
        try:
            while True:
                entry = subscription.poll(timeout=keepalive)
                if entry is not None:
                    yield _sse("log", entry.to_dict(), entry.sequence)
                elif subscription.finished:
                    break
                else:
                    yield ": keepalive\n\n"
            deployment = app.orchestrator.get(deployment_id)
            yield _sse("complete", {
                "deployment_id": deployment_id,
                "state": deployment.state.value,
                "error_message": deployment.error_message,
            })
        finally:
            subscription.close()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
