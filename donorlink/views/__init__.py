"""
Views package for organizing API endpoints.
"""
from .health import router as health_router
from .donations import router as donations_router
from .locations import router as locations_router
from .blood_requests import router as blood_requests_router
from .donors import router as donors_router
from .donation_history import router as donation_history_router
from .notifications import router as notifications_router

__all__ = [
    "health_router",
    "donations_router",
    "locations_router",
    "blood_requests_router",
    "donors_router",
    "donation_history_router",
    "notifications_router",
]
