"""Machine API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from machina.api.dependencies import get_actor, get_application
from machina.api.models.requests import CreateMachineRequest
from machina.bootstrap import Application

router = APIRouter(prefix="/machines", tags=["Machines"])


@router.get("", summary="List Machines", description="List machines with optional filtering")
def list_machines(
    status: Optional[str] = Query(None, description="Filter by observed status"),
    provider: Optional[str] = Query(None, description="Filter by provider type"),
    region: Optional[str] = Query(None, description="Filter by region"),
    search: Optional[str] = Query(None, description="Match name, id or public IP"),
    app: Application = Depends(get_application),
) -> JSONResponse:
    machines = app.machine_service.list_machines(status=status, provider=provider, region=region, search=search)
    return JSONResponse(content={"machines": [m.to_dict() for m in machines], "count": len(machines)})


@router.post("", status_code=201, summary="Create Machine",
             description="Allocate a machine and queue its create deployment")
def create_machine(
    body: CreateMachineRequest,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    machine, deployment = app.machine_service.create_machine(
        name=body.name,
        provider_account_id=body.provider_account_id,
        region=body.region,
        size=body.size,
        image=body.image,
        tags=body.tags,
        ssh_key_ids=body.ssh_key_ids,
        firewall_profile_id=body.firewall_profile_id,
        bootstrap_profile_id=body.bootstrap_profile_id,
        parameters=body.parameters,
        initiated_by=actor,
    )
    return JSONResponse(status_code=201,
                        content={"machine": machine.to_dict(), "deployment": deployment.to_dict()})


@router.post("/sync", summary="Reconcile Machines",
             description="Compare every machine with its provider and record drift")
def sync_machines(
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    return JSONResponse(content=app.reconciliation.sync(actor).to_dict())


@router.get("/{machine_id}", summary="Get Machine")
def get_machine(machine_id: str, app: Application = Depends(get_application)) -> JSONResponse:
    return JSONResponse(content={"machine": app.machine_service.get_machine(machine_id).to_dict()})


@router.post("/{machine_id}/reboot", status_code=202, summary="Reboot Machine")
def reboot_machine(
    machine_id: str,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    deployment = app.machine_service.reboot_machine(machine_id, actor)
    return JSONResponse(status_code=202, content={"deployment": deployment.to_dict()})


@router.post("/{machine_id}/destroy", status_code=202, summary="Destroy Machine")
def destroy_machine(
    machine_id: str,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    deployment = app.machine_service.destroy_machine(machine_id, actor)
    return JSONResponse(status_code=202, content={"deployment": deployment.to_dict()})
