"""
Foreign exchange rates routes.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from datetime import date
from decimal import Decimal
from typing import Dict, Optional
from app.db.session import get_db
from app.models.user import User
from app.schemas.exchange_rate import ConversionResponse, RateResolution
from app.api.dependencies import get_current_admin, get_current_user
from app.core.exceptions import RateUnavailable
from app.services.default_rates import default_rate_table
from app.services.fx_service import RateResolver
from app.services.rate_sources import list_supported_currencies

router = APIRouter(prefix="/fx-rates", tags=["fx-rates"])


@router.get("", response_model=RateResolution)
async def get_exchange_rate(
    from_currency: str = Query("USD", alias="from"),
    to_currency: str = Query("IDR", alias="to"),
    refresh: bool = False,
    as_of: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get the rate for converting 1 unit of ``from`` into ``to``.

    Args:
        refresh: If True, skip cached rates and ask live sources first.
        as_of: Optional date (YYYY-MM-DD) for a historical rate.
    """
    try:
        return await RateResolver(db).resolve(
            current_user.id, from_currency, to_currency, force_refresh=refresh, as_of=as_of
        )
    except RateUnavailable as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )


@router.get("/currencies", response_model=Dict[str, str])
async def get_currencies(
    current_user: User = Depends(get_current_user)
):
    """List supported currency codes with their names."""
    return await list_supported_currencies()


@router.get("/convert", response_model=ConversionResponse)
async def convert_amount(
    amount: Decimal,
    from_currency: str = Query(..., alias="from"),
    to_currency: str = Query(..., alias="to"),
    as_of: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Convert an amount between currencies, optionally at a past date's rate."""
    try:
        return await RateResolver(db).convert(current_user.id, amount, from_currency, to_currency, as_of=as_of)
    except RateUnavailable as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )


@router.get("/defaults", response_model=Dict[str, Dict[str, float]])
async def get_default_rates(
    current_user: User = Depends(get_current_user)
):
    """Get the global default rate table the resolver is using."""
    return default_rate_table.rates


@router.put("/defaults", response_model=Dict[str, Dict[str, float]])
async def update_default_rates(
    rates: Dict[str, Dict[str, float]],
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Replace the global default rate table. Administrators only."""
    try:
        return default_rate_table.update(db, rates)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.errors(include_url=False, include_context=False)
        )
