"""
Lifecycle notifications for blood requests and donations.

Unlike the ephemeral location notifications, these are stored so a dashboard
can list them later, then pushed through the notification hub.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import BloodRequest, NotificationRecord
from ..schemas import Notification
from .fulfillment_service import DonationReceipt
from .notification_hub import NotificationHub, notification_hub

logger = logging.getLogger(__name__)


def _to_schema(record: NotificationRecord) -> Notification:
    return Notification(
        id=record.id,
        hospital_id=record.hospital_id,
        type=record.type,
        title=record.title,
        message=record.message,
        meta=record.meta or {},
        read=record.read,
        created_at=record.created_at,
        blood_request_id=record.blood_request_id,
    )


class NotificationService:
    """Stores lifecycle notifications and pushes them to dashboards."""

    def __init__(self, hub: NotificationHub = notification_hub):
        self.hub = hub

    async def notify(
        self,
        db: Session,
        hospital_id: Optional[str],
        type: str,
        title: str,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
        blood_request_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        Store a notification and publish it.

        Args:
            db: Database session
            hospital_id: Target hospital, None for every dashboard
            type: info | success | warning | error
            title: Short title
            message: Body text
            meta: Extra payload for the dashboard
            blood_request_id: Related request, if any

        Returns:
            The published notification, or None if it could not be stored
        """
        try:
            record = NotificationRecord(
                hospital_id=hospital_id,
                type=type,
                title=title,
                message=message,
                meta=meta or {},
                blood_request_id=blood_request_id,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to store notification '{title}': {e}")
            return None

        notification = _to_schema(record)
        await self.hub.publish(notification)
        return notification

    async def request_updated(self, db: Session, request: BloodRequest) -> Optional[Notification]:
        return await self.notify(
            db,
            request.hospital_id,
            "info",
            "Blood Request Updated",
            f"Blood request for {request.blood_group} ({request.quantity} units) was updated",
            meta={"blood_request_id": request.id, "status": request.status},
            blood_request_id=request.id,
        )

    async def request_deleted(self, db: Session, hospital_id: str, request_id: str,
                              blood_group: str, quantity: int) -> Optional[Notification]:
        return await self.notify(
            db,
            hospital_id,
            "warning",
            "Blood Request Deleted",
            f"Blood request for {blood_group} ({quantity} units) was deleted",
            meta={"blood_request_id": request_id},
            blood_request_id=request_id,
        )

    async def donation_confirmed(self, db: Session, receipt: DonationReceipt) -> List[Notification]:
        sent = []
        confirmed = await self.notify(
            db,
            receipt.hospital_id,
            "success",
            "Donation Confirmed",
            f"{receipt.donor_name} ({receipt.blood_group}) completed a donation "
            f"({receipt.confirmed_units}/{receipt.quantity} units)",
            meta={
                "donation_id": receipt.donation_id,
                "confirmed_units": receipt.confirmed_units,
                "quantity": receipt.quantity,
            },
            blood_request_id=receipt.request_id,
        )
        if confirmed:
            sent.append(confirmed)

        if receipt.request_fulfilled:
            fulfilled = await self.notify(
                db,
                receipt.hospital_id,
                "success",
                "Blood Request Fulfilled",
                f"All {receipt.quantity} unit(s) for request {receipt.request_id} have been confirmed",
                meta={"blood_request_id": receipt.request_id, "status": "fulfilled"},
                blood_request_id=receipt.request_id,
            )
            if fulfilled:
                sent.append(fulfilled)
        return sent

    @staticmethod
    def list_for_hospital(db: Session, hospital_id: str, limit: int = 50) -> List[Notification]:
        records = db.execute(
            select(NotificationRecord)
            .where(or_(NotificationRecord.hospital_id == hospital_id, NotificationRecord.hospital_id.is_(None)))
            .order_by(NotificationRecord.created_at.desc())
            .limit(limit)
        ).scalars().all()
        return [_to_schema(r) for r in records]


# Singleton instance
notification_service = NotificationService()
