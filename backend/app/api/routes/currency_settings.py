"""
Currency preference routes.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.models.user import User
from app.schemas.currency_preference import CurrencyPreferenceResponse, CurrencyPreferenceUpdate
from app.api.dependencies import get_current_user
from app.core.exceptions import InvalidPreference
from app.services.currency_preference_service import get_preferences, set_preferences

router = APIRouter(prefix="/settings/currency", tags=["settings"])


@router.get("", response_model=CurrencyPreferenceResponse)
async def get_currency_preferences(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get the current user's currency preferences (defaults if none saved)."""
    return get_preferences(current_user.id, db)


@router.put("", response_model=CurrencyPreferenceResponse)
async def update_currency_preferences(
    update: CurrencyPreferenceUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update the current user's currency preferences. Omitted fields are kept."""
    try:
        return set_preferences(current_user.id, update, db)
    except InvalidPreference as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
