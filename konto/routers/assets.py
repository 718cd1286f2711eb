from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from konto.crud import crud_account, crud_asset
from konto.models import asset as asset_models
from konto.db.core import get_db, NotFoundError

router = APIRouter(
    prefix="/assets",
    tags=["assets"],
)

# This is a placeholder for a proper authentication dependency.
# In a real app, this would decode a JWT token to get the current user.
def get_current_user_id() -> int:
    return 1

@router.post("", response_model=asset_models.AssetResponse, status_code=status.HTTP_201_CREATED)
def create_asset(
    asset: asset_models.AssetCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Create an asset with its recurring costs and revenues.
    A linked loan must be one of the user's own accounts.
    """
    if asset.linked_loan_account_id is not None:
        if crud_account.read_db_account(db, asset.linked_loan_account_id, user_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Linked loan account not found")
    return crud_asset.create_db_asset(db=db, user_id=user_id, asset_data=asset)

@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_asset(
    asset_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Delete an asset. Its cost and revenue lines are removed with it.
    """
    try:
        crud_asset.delete_db_asset(db=db, asset_id=asset_id, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
