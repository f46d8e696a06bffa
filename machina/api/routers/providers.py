"""Provider account API routes."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from machina.api.dependencies import get_actor, get_application
from machina.api.models.requests import CreateProviderAccountRequest, UpdateProviderAccountRequest
from machina.bootstrap import Application

router = APIRouter(prefix="/providers", tags=["Providers"])


@router.get("", summary="Supported Providers")
def list_providers(app: Application = Depends(get_application)) -> JSONResponse:
    return JSONResponse(content={"providers": app.provider_service.list_supported_providers()})


@router.get("/accounts", summary="List Provider Accounts")
def list_accounts(app: Application = Depends(get_application)) -> JSONResponse:
    accounts = app.provider_service.list_accounts()
    return JSONResponse(content={"accounts": [a.to_dict() for a in accounts], "count": len(accounts)})


@router.post("/accounts", status_code=201, summary="Link Provider Account")
def create_account(
    body: CreateProviderAccountRequest,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    account = app.provider_service.create_account(
        body.provider_type, body.label, body.credentials, body.metadata, actor
    )
    return JSONResponse(status_code=201, content={"account": account.to_dict()})


@router.get("/accounts/{account_id}", summary="Get Provider Account")
def get_account(account_id: str, app: Application = Depends(get_application)) -> JSONResponse:
    return JSONResponse(content={"account": app.provider_service.get_account(account_id).to_dict()})


@router.put("/accounts/{account_id}", summary="Update Provider Account")
def update_account(
    account_id: str,
    body: UpdateProviderAccountRequest,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    account = app.provider_service.update_account(
        account_id, label=body.label, credentials=body.credentials, metadata=body.metadata, actor_id=actor
    )
    return JSONResponse(content={"account": account.to_dict()})


@router.delete("/accounts/{account_id}", summary="Delete Provider Account")
def delete_account(
    account_id: str,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    app.provider_service.delete_account(account_id, actor)
    return JSONResponse(content={"success": True, "provider_account_id": account_id})


@router.post("/accounts/{account_id}/verify", summary="Verify Credentials")
def verify_account(
    account_id: str,
    app: Application = Depends(get_application),
    actor: str = Depends(get_actor),
) -> JSONResponse:
    account, check = app.provider_service.verify_account(account_id, actor)
    return JSONResponse(content={
        "account": account.to_dict(),
        "valid": check.valid,
        "message": check.message,
    })


@router.get("/accounts/{account_id}/options", summary="Provisioning Options",
            description="Regions, sizes and images available to the account")
def account_options(account_id: str, app: Application = Depends(get_application)) -> JSONResponse:
    return JSONResponse(content=app.provider_service.get_options(account_id))
