"""
Blood request lifecycle outside of fulfillment: creation, staff edits,
cancellation and deletion.

Status only moves forward from active. confirmed_units is never written here;
the fulfillment engine owns it.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..models import ActiveToken, BloodRequest, RequestStatus
from ..schemas import BloodRequestIn, BloodRequestUpdate
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    RequestStatus.ACTIVE.value: {
        RequestStatus.FULFILLED.value,
        RequestStatus.CANCELLED.value,
        RequestStatus.EXPIRED.value,
    },
}


class InvalidRequestChange(ValueError):
    pass


def create_request(db: Session, data: BloodRequestIn) -> BloodRequest:
    request = BloodRequest(
        hospital_id=data.hospital_id,
        blood_group=data.blood_group,
        quantity=data.quantity,
        confirmed_units=0,
        urgency=data.urgency,
        status=RequestStatus.ACTIVE.value,
        required_by=data.required_by,
        description=data.description,
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info(f"Created blood request {request.id}: {request.quantity} x {request.blood_group} for {request.hospital_id}")
    return request


def list_requests(db: Session, hospital_id: Optional[str] = None) -> List[BloodRequest]:
    query = select(BloodRequest).order_by(BloodRequest.created_at.desc())
    if hospital_id is not None:
        query = query.where(BloodRequest.hospital_id == hospital_id)
    return list(db.execute(query).scalars().all())


def list_recent_requests(db: Session, days: int = 7, limit: int = 20,
                         now: Optional[datetime] = None) -> List[BloodRequest]:
    """Requests created in the last `days` days, newest first, for the dashboard request picker."""
    since = (now or utcnow()) - timedelta(days=days)
    return list(db.execute(
        select(BloodRequest)
        .where(BloodRequest.created_at >= since)
        .order_by(BloodRequest.created_at.desc())
        .limit(limit)
    ).scalars().all())


def _close(db: Session, request_id: str, status: str) -> bool:
    """Conditional active -> closed transition; clears the active tokens."""
    now = utcnow()
    values = {"status": status, "updated_at": now}
    if status == RequestStatus.FULFILLED.value:
        values["fulfilled_at"] = now
    result = db.execute(
        update(BloodRequest)
        .where(BloodRequest.id == request_id, BloodRequest.status == RequestStatus.ACTIVE.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    db.execute(
        delete(ActiveToken)
        .where(ActiveToken.request_id == request_id)
        .execution_options(synchronize_session=False)
    )
    return True


def update_request(db: Session, request: BloodRequest, changes: BloodRequestUpdate) -> BloodRequest:
    """
    Apply a staff edit to a blood request.

    Args:
        db: Database session
        request: Request being edited
        changes: Fields to change; unset fields are left alone

    Returns:
        The refreshed request

    Raises:
        InvalidRequestChange: illegal status transition, quantity below the
            confirmed units, or a quantity change on a closed request
    """
    data = changes.model_dump(exclude_unset=True)
    new_status = data.pop("status", None)
    new_quantity = data.pop("quantity", None)

    if new_status is not None and new_status != request.status:
        if new_status not in ALLOWED_TRANSITIONS.get(request.status, set()):
            raise InvalidRequestChange(f"Cannot change status from {request.status} to {new_status}")

    if new_quantity is not None and new_quantity != request.quantity:
        result = db.execute(
            update(BloodRequest)
            .where(
                BloodRequest.id == request.id,
                BloodRequest.status == RequestStatus.ACTIVE.value,
                BloodRequest.confirmed_units <= new_quantity,
            )
            .values(quantity=new_quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise InvalidRequestChange("Quantity can only change on an active request and not below confirmed units")

    for field, value in data.items():
        setattr(request, field, value)
    db.flush()

    if new_status is not None and new_status != request.status:
        if not _close(db, request.id, new_status):
            db.rollback()
            raise InvalidRequestChange(f"Request {request.id} is no longer active")
        logger.info(f"Request {request.id} moved to {new_status}")
    else:
        # a quantity cut to the confirmed count closes the request
        confirmed, quantity = db.execute(
            select(BloodRequest.confirmed_units, BloodRequest.quantity).where(BloodRequest.id == request.id)
        ).one()
        if confirmed >= quantity and _close(db, request.id, RequestStatus.FULFILLED.value):
            logger.info(f"Request {request.id} fulfilled by quantity change")

    db.commit()
    db.refresh(request)
    return request


def delete_request(db: Session, request: BloodRequest) -> None:
    request_id = request.id
    db.delete(request)
    db.commit()
    logger.info(f"Deleted blood request {request_id}")
