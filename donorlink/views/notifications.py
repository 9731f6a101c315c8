"""
Hospital notification endpoints: SSE stream, stored notifications and
connection stats.
"""
from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
import asyncio
import json
import logging

from ..core.config import settings
from ..db import get_db
from ..services.notification_hub import notification_hub, SSEConnection
from ..services.notification_service import notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


async def _event_stream(request: Request, hospital_id: str, connection: SSEConnection):
    yield f"data: {json.dumps({'type': 'connected', 'hospital_id': hospital_id})}\n\n"
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                chunk = await asyncio.wait_for(connection.next_chunk(), timeout=settings.sse_keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if chunk is None:
                break
            yield chunk
    finally:
        connection.close()


@router.get("/clients")
async def get_connected_clients():
    """Open push connections per hospital."""
    return {"success": True, **notification_hub.connected_clients()}


@router.get("/stream/{hospital_id}")
async def stream_notifications(hospital_id: str, request: Request):
    """
    Server-sent events stream of a hospital's notifications.

    Each event is `data: {"type": "notification", "notification": {...}}`.
    """
    connection = SSEConnection()
    notification_hub.subscribe(hospital_id, connection)
    return StreamingResponse(
        _event_stream(request, hospital_id, connection),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.get("/{hospital_id}")
async def list_notifications(hospital_id: str, limit: int = 50, db: Session = Depends(get_db)):
    """Stored notifications for a hospital, newest first."""
    try:
        notifications = notification_service.list_for_hospital(db, hospital_id, limit=limit)
        return {"success": True, "notifications": notifications}

    except Exception as e:
        logger.error(f"Error fetching notifications for hospital {hospital_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch notifications")
