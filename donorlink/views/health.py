"""
Health check and root endpoints.
"""
from fastapi import APIRouter

from ..services.location_watcher import location_watcher
from ..services.notification_hub import notification_hub

router = APIRouter(tags=["Health"])


@router.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/")
def root():
    return {
        "success": True,
        "service": "DonorLink API",
        "watcher_running": location_watcher.is_running,
        "connected_hospitals": notification_hub.connected_clients()["size"],
    }
