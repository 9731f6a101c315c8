"""
Donor registry endpoints.
"""
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging
from typing import Optional

from ..db import get_db
from ..models import Donor
from ..schemas import DonorIn, DonorOut
from ..services.location_service import location_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["donors"])


@router.post("/donors", response_model=DonorOut)
async def register_donor(donor_data: DonorIn, db: Session = Depends(get_db)):
    """
    Register a donor.

    - **name** / **phone**: Contact details used for SMS invitations
    - **blood_group**: Used to match donors to requests
    - **unique_id**: Stable donor id printed on the donor card (e.g. DON-0001)
    """
    try:
        if donor_data.unique_id:
            existing = db.execute(
                select(Donor).where(Donor.unique_id == donor_data.unique_id)
            ).scalars().first()
            if existing:
                raise HTTPException(status_code=400, detail=f"Donor {donor_data.unique_id} already exists")

        donor = Donor(**donor_data.model_dump())
        db.add(donor)
        db.commit()
        db.refresh(donor)

        logger.info(f"Registered donor {donor.unique_id or donor.id} ({donor.blood_group})")
        return donor

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error registering donor: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to register donor")


@router.get("/donors")
async def list_donors(blood_group: Optional[str] = None, db: Session = Depends(get_db)):
    """List registered donors, optionally filtered by blood group."""
    try:
        query = select(Donor).order_by(Donor.created_at.desc())
        if blood_group:
            query = query.where(Donor.blood_group == blood_group)
        donors = db.execute(query).scalars().all()
        return {
            "success": True,
            "donors": [DonorOut.model_validate(d) for d in donors],
            "total": len(donors),
        }

    except Exception as e:
        logger.error(f"Error listing donors: {e}")
        raise HTTPException(status_code=500, detail="Failed to list donors")


@router.get("/available-donors")
async def available_donors(db: Session = Depends(get_db)):
    """Donors with the live location each one shared, located donors first."""
    try:
        return {"success": True, **location_service.available_donors(db)}

    except Exception as e:
        logger.error(f"Error fetching available donors: {e}")
        raise HTTPException(status_code=500, detail="Error fetching available donors")
