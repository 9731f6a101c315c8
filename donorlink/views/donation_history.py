"""
Donation history endpoints: accepted donors and completed donations.
"""
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging
from typing import Optional

from ..db import get_db
from ..models import BloodRequest, DonationHistory, DonationStatus
from ..schemas import AcceptDonorIn, DonationHistoryOut
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["donation-history"])


@router.get("/donation-history")
async def get_donation_history(hospital_id: Optional[str] = None, db: Session = Depends(get_db)):
    """Last 100 donation records, completed ones first by completion time."""
    try:
        query = select(DonationHistory).order_by(
            DonationHistory.completed_at.desc(),
            DonationHistory.accepted_at.desc(),
            DonationHistory.created_at.desc(),
        )
        if hospital_id:
            query = query.where(DonationHistory.hospital_id == hospital_id)
        records = db.execute(query.limit(100)).scalars().all()

        return {
            "success": True,
            "donation_history": [DonationHistoryOut.model_validate(r) for r in records],
            "total": len(records),
        }

    except Exception as e:
        logger.error(f"Error fetching donation history: {e}")
        raise HTTPException(status_code=500, detail="Server error while fetching donation history")


@router.post("/accept-donor")
async def accept_donor(payload: AcceptDonorIn, db: Session = Depends(get_db)):
    """
    Accept a donor for a blood request.

    The record stays `accepted` until the donation is confirmed at the
    kiosk, which promotes it to `completed`.
    """
    try:
        hospital_id = None
        if payload.blood_request_id:
            request = db.get(BloodRequest, payload.blood_request_id)
            if request is None:
                raise HTTPException(status_code=404, detail="Blood request not found")
            hospital_id = request.hospital_id

        existing = db.execute(
            select(DonationHistory).where(
                DonationHistory.donor_id == payload.donor_id,
                DonationHistory.blood_request_id == payload.blood_request_id,
                DonationHistory.status == DonationStatus.ACCEPTED.value,
            )
        ).scalars().first()
        if existing:
            raise HTTPException(status_code=400, detail="Donor already accepted for this blood request")

        record = DonationHistory(
            donor_id=payload.donor_id,
            blood_request_id=payload.blood_request_id,
            hospital_id=hospital_id,
            donor_name=payload.donor_name,
            donor_phone=payload.donor_phone,
            donor_blood_group=payload.donor_blood_group,
            status=DonationStatus.ACCEPTED.value,
            accepted_at=utcnow(),
            latitude=payload.latitude,
            longitude=payload.longitude,
            address=payload.address,
            notes=payload.notes,
        )
        db.add(record)
        db.commit()
        db.refresh(record)

        logger.info(f"Accepted donor {payload.donor_id} for request {payload.blood_request_id}")
        return {
            "success": True,
            "message": "Donor accepted successfully",
            "donation": DonationHistoryOut.model_validate(record),
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error accepting donor: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to accept donor")


@router.get("/accepted-donors/{request_id}")
async def get_accepted_donors(request_id: str, db: Session = Depends(get_db)):
    """Donors accepted for a request and not yet confirmed."""
    try:
        records = db.execute(
            select(DonationHistory)
            .where(
                DonationHistory.blood_request_id == request_id,
                DonationHistory.status == DonationStatus.ACCEPTED.value,
            )
            .order_by(DonationHistory.accepted_at.desc())
        ).scalars().all()

        return {
            "success": True,
            "accepted_donors": [DonationHistoryOut.model_validate(r) for r in records],
        }

    except Exception as e:
        logger.error(f"Error fetching accepted donors for request {request_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch accepted donors")
