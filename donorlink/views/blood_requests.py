"""
Blood request endpoints for hospital dashboards.
"""
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.orm import Session
import logging
from typing import Optional

from ..db import get_db
from ..models import BloodRequest, RequestStatus
from ..schemas import BloodRequestIn, BloodRequestUpdate, BloodRequestOut, InviteDonorsIn
from ..services import request_service
from ..services.invitation_service import invitation_service
from ..services.notification_service import notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/blood-requests", tags=["blood-requests"])


def _get_or_404(db: Session, request_id: str) -> BloodRequest:
    request = db.get(BloodRequest, request_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Blood request not found")
    return request


@router.post("", response_model=BloodRequestOut)
async def create_blood_request(request_data: BloodRequestIn, db: Session = Depends(get_db)):
    """
    Create a blood request.

    - **hospital_id**: Requesting hospital
    - **blood_group**: Blood group needed
    - **quantity**: Units needed (at least 1)
    - **urgency**: low, medium or high
    - **required_by**: Deadline after which the request expires
    """
    try:
        request = request_service.create_request(db, request_data)
        return BloodRequestOut.model_validate(request)

    except Exception as e:
        logger.error(f"Error creating blood request: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to create blood request")


@router.get("/all")
async def list_all_blood_requests(db: Session = Depends(get_db)):
    """All blood requests, newest first."""
    try:
        requests = request_service.list_requests(db)
        return {"success": True, "blood_requests": [BloodRequestOut.model_validate(r) for r in requests]}

    except Exception as e:
        logger.error(f"Error fetching all blood requests: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch blood requests")


@router.get("/hospital/{hospital_id}")
async def list_hospital_blood_requests(hospital_id: str, db: Session = Depends(get_db)):
    """Blood requests of one hospital, newest first."""
    try:
        requests = request_service.list_requests(db, hospital_id=hospital_id)
        return {"success": True, "blood_requests": [BloodRequestOut.model_validate(r) for r in requests]}

    except Exception as e:
        logger.error(f"Error fetching blood requests for hospital {hospital_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch blood requests")


@router.get("/{request_id}", response_model=BloodRequestOut)
async def get_blood_request(request_id: str, db: Session = Depends(get_db)):
    return BloodRequestOut.model_validate(_get_or_404(db, request_id))


@router.put("/{request_id}")
async def update_blood_request(
    request_id: str,
    changes: BloodRequestUpdate,
    db: Session = Depends(get_db)
):
    """
    Edit a blood request.

    Status can only move from active to fulfilled, cancelled or expired.
    Confirmed units are not editable.
    """
    try:
        request = _get_or_404(db, request_id)
        request = request_service.update_request(db, request, changes)
        await notification_service.request_updated(db, request)

        return {
            "success": True,
            "message": "Blood request updated successfully",
            "blood_request": BloodRequestOut.model_validate(request),
        }

    except request_service.InvalidRequestChange as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating blood request {request_id}: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to update blood request")


@router.delete("/{request_id}")
async def delete_blood_request(request_id: str, db: Session = Depends(get_db)):
    """Delete a blood request and notify its hospital."""
    try:
        request = _get_or_404(db, request_id)
        hospital_id, blood_group, quantity = request.hospital_id, request.blood_group, request.quantity
        request_service.delete_request(db, request)
        await notification_service.request_deleted(db, hospital_id, request_id, blood_group, quantity)

        return {"success": True, "message": "Blood request deleted successfully"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting blood request {request_id}: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to delete blood request")


@router.post("/{request_id}/invite")
def invite_donors(
    request_id: str,
    payload: Optional[InviteDonorsIn] = None,
    db: Session = Depends(get_db)
):
    """
    Text response links to donors for an active request.

    - **hospital_name**: Name shown in the SMS
    - **donor_ids**: Donors to invite; defaults to every donor of the request's blood group
    """
    try:
        request = _get_or_404(db, request_id)
        if request.status != RequestStatus.ACTIVE.value:
            raise HTTPException(status_code=400, detail=f"Blood request is {request.status}")

        payload = payload or InviteDonorsIn()
        result = invitation_service.invite_donors(
            db,
            request,
            hospital_name=payload.hospital_name,
            donor_ids=payload.donor_ids,
        )
        return {"success": True, **result}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error inviting donors for request {request_id}: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to invite donors")
