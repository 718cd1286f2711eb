from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from konto.config import get_settings
from konto.db.core import get_db, NotFoundError
from konto.models import account as account_models
from konto.services.provider import PowensClient
from konto.services.refresh import (
    AccountNotSyncableError, RefreshOrchestrator, SyncError, SyncResult
)

router = APIRouter(
    prefix="/bank",
    tags=["bank"],
)

# This is a placeholder for a proper authentication dependency.
# In a real app, this would decode a JWT token to get the current user.
def get_current_user_id() -> int:
    return 1

def get_provider() -> PowensClient:
    return PowensClient.from_settings(get_settings())

def get_orchestrator(
    db: Session = Depends(get_db),
    provider=Depends(get_provider)
) -> RefreshOrchestrator:
    return RefreshOrchestrator(db, provider, get_settings())


def _sync_error_response(e: SyncError) -> JSONResponse:
    status_code = status.HTTP_400_BAD_REQUEST if isinstance(e, AccountNotSyncableError) else status.HTTP_404_NOT_FOUND
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(e), "reconnect_required": e.reconnect_required}
    )


def _to_response(result: SyncResult) -> account_models.SyncResponse:
    return account_models.SyncResponse(
        accounts_updated=result.accounts_updated,
        transactions_inserted=result.transactions_inserted
    )


@router.post("/accounts/{account_id}/sync", response_model=account_models.SyncResponse)
def sync_account(
    account_id: int,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
    user_id: int = Depends(get_current_user_id)
):
    """
    Refresh one provider-linked account and import its transactions.
    """
    try:
        return _to_response(orchestrator.sync_account(account_id, user_id))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SyncError as e:
        return _sync_error_response(e)

@router.post("/connections/{connection_id}/sync", response_model=account_models.SyncResponse)
def sync_connection(
    connection_id: int,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
    user_id: int = Depends(get_current_user_id)
):
    """
    Refresh every known account reachable through one bank connection.
    """
    try:
        return _to_response(orchestrator.sync_connection(connection_id, user_id))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SyncError as e:
        return _sync_error_response(e)
