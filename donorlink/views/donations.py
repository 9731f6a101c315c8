"""
Donation confirmation endpoints used by the kiosk and staff dashboard.
"""
from fastapi import APIRouter, HTTPException, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import logging

from ..core.errors import FailureKind
from ..db import get_db
from ..schemas import MarkDonationIn, DonationHistoryOut
from ..services.fulfillment_service import fulfillment_engine
from ..services.location_service import location_service, SubmissionRejected
from ..services.notification_service import notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["donations"])

FAILURE_STATUS = {
    FailureKind.ALREADY_DONATED: 400,
    FailureKind.ALREADY_PROCESSING: 409,
    FailureKind.DONOR_NOT_FOUND: 404,
    FailureKind.REQUEST_NOT_FOUND: 404,
    FailureKind.REQUEST_EXPIRED: 410,
    FailureKind.RESERVATION_CONFLICT: 409,
    FailureKind.PERSISTENCE_FAILURE: 500,
}


@router.post("/mark-donation")
async def mark_donation(payload: MarkDonationIn, db: Session = Depends(get_db)):
    """
    Confirm a completed donation for a donor on the live map.

    - **donor_id**: Stable donor id (from the QR code / live map)
    - **donor_name**: Name typed at the kiosk, used as a fallback
    - **request_id**: Blood request to fulfil, if known
    """
    donor_id = payload.donor_id.strip()
    if not donor_id:
        raise HTTPException(status_code=400, detail="Donor ID is required")

    outcome = await run_in_threadpool(
        fulfillment_engine.confirm_donation,
        db,
        donor_id,
        request_id=payload.request_id,
        donor_name=payload.donor_name,
    )

    if not outcome.ok:
        return JSONResponse(
            status_code=FAILURE_STATUS.get(outcome.failure, 500),
            content={
                "success": False,
                "reason": outcome.failure.value,
                "error": outcome.message,
            },
        )

    await notification_service.donation_confirmed(db, outcome.receipt)

    return {
        "success": True,
        "message": outcome.message,
        "donation_history": outcome.receipt.to_dict(),
        "request": {
            "id": outcome.receipt.request_id,
            "confirmed_units": outcome.receipt.confirmed_units,
            "quantity": outcome.receipt.quantity,
            "fulfilled": outcome.receipt.request_fulfilled,
        },
    }


@router.get("/verify-location/{donor_id}")
async def verify_location(donor_id: str, db: Session = Depends(get_db)):
    """Check that a donor has shared a location before confirming."""
    try:
        result = location_service.verify_location(db, donor_id)
        return {"success": True, **result}

    except SubmissionRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error verifying donor location: {e}")
        raise HTTPException(status_code=500, detail="Failed to verify donor")


@router.get("/recent-donations")
async def recent_donations(db: Session = Depends(get_db)):
    """Last 50 completed donations."""
    try:
        donations = location_service.recent_donations(db)
        return {
            "success": True,
            "donations": [DonationHistoryOut.model_validate(d) for d in donations],
        }

    except Exception as e:
        logger.error(f"Error fetching recent donations: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch recent donations")
