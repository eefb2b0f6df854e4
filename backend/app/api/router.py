"""
Main API router that includes all route modules.
"""
from fastapi import APIRouter
from app.api.routes import fx_rates, currency_settings

api_router = APIRouter()

# Include all route modules
api_router.include_router(fx_rates.router)
api_router.include_router(currency_settings.router)
