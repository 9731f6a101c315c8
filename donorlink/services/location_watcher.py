"""
Location watcher: turns live location submissions into dashboard notifications.

Tails the location change feed, resolves the request and donor behind each
insert and pushes an ephemeral notification to the hospital. The feed is
informational only; inserts published while the watcher is reconnecting are
not replayed.
"""
import asyncio
import logging
import uuid
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..db import SessionLocal
from ..models import BloodRequest
from ..schemas import Notification
from ..utils.time import utcnow
from .donor_resolver import find_donor_by_phone
from .notification_hub import NotificationHub, notification_hub
from .redis_service import redis_service

logger = logging.getLogger(__name__)


def build_location_notification(db: Session, event: Dict) -> Optional[Notification]:
    """
    Build the notification for one location insert.

    Args:
        db: Database session
        event: Location insert payload from the change feed

    Returns:
        Notification for the request's hospital, or None when the insert has
        no open request to report on
    """
    request_id = event.get("request_id")
    if not request_id:
        logger.debug(f"Location {event.get('id')} has no request, skipping notification")
        return None

    request = db.get(BloodRequest, request_id)
    if request is None:
        logger.warning(f"⚠️ Blood request {request_id} not found, skipping notification")
        return None

    if request.is_closed:
        logger.info(f"🚫 Request {request.id} is already {request.status}. Skipping notification for late submission.")
        return None

    donor = find_donor_by_phone(db, event.get("mobile_number"))
    if donor is None and event.get("mobile_number"):
        logger.debug(f"No donor found with phone number {event.get('mobile_number')}")

    donor_name = donor.name if donor else (event.get("user_name") or "Unknown Donor")
    donor_blood_group = (donor.blood_group if donor else None) or "Unknown"

    return Notification(
        id=f"ephemeral-{uuid.uuid4().hex}",
        hospital_id=request.hospital_id,
        type="success",
        title="📍 New Donor Location Shared",
        message=(
            f"{donor_name} ({donor_blood_group}) has shared their location "
            f"for your {request.blood_group} blood request"
        ),
        meta={
            "donor_name": donor_name,
            "donor_blood_group": donor_blood_group,
            "request_blood_group": request.blood_group,
            "latitude": event.get("latitude"),
            "longitude": event.get("longitude"),
            "location_id": event.get("id"),
            "ephemeral": True,
            "source": "change_stream",
        },
        created_at=utcnow(),
        donor_id=donor.id if donor else None,
        blood_request_id=request.id,
    )


class LocationWatcher:
    """Long-running consumer of the location change feed."""

    def __init__(
        self,
        feed=redis_service,
        hub: NotificationHub = notification_hub,
        session_factory: Callable[[], Session] = SessionLocal,
        restart_delay: Optional[float] = None,
    ):
        self.feed = feed
        self.hub = hub
        self.session_factory = session_factory
        self.restart_delay = settings.watcher_restart_delay_seconds if restart_delay is None else restart_delay
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def handle_insert(self, event: Dict) -> Optional[Notification]:
        """Process one insert. Errors are logged and the event is dropped."""
        try:
            db = self.session_factory()
            try:
                notification = build_location_notification(db, event)
            finally:
                db.close()

            if notification is None:
                return None

            await self.hub.publish(notification)
            return notification

        except Exception as e:
            logger.error(f"❌ Error processing location change: {e}")
            return None

    async def run(self):
        """Consume the feed until stopped, resubscribing after feed errors."""
        self._running = True
        while self._running:
            try:
                async for event in self.feed.listen_location_inserts():
                    logger.info(f"🆕 New location detected: {event.get('user_name')} for request {event.get('request_id')}")
                    await self.handle_insert(event)
                logger.warning("Location feed ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Location feed error: {e}")

            if not self._running:
                break
            logger.info(f"🔄 Restarting location feed in {self.restart_delay}s...")
            await asyncio.sleep(self.restart_delay)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
            logger.info("✅ Location watcher started")
        return self._task

    async def stop(self):
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("🛑 Location watcher stopped")


location_watcher = LocationWatcher()
