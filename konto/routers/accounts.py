from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from konto.crud import crud_account
from konto.models import account as account_models
from konto.db.core import get_db, NotFoundError

router = APIRouter(
    prefix="/accounts",
    tags=["accounts"],
)

# This is a placeholder for a proper authentication dependency.
# In a real app, this would decode a JWT token to get the current user.
def get_current_user_id() -> int:
    return 1

@router.post("/{account_id}/update-balance", response_model=account_models.AccountResponse)
def update_balance(
    account_id: int,
    update: account_models.AccountBalanceUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Set an account's balance by hand. The account counts as freshly synced.
    """
    try:
        return crud_account.update_account_balance(db=db, account_id=account_id, user_id=user_id, balance=update.balance)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
