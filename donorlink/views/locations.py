"""
Donor location endpoints: SMS link responses, direct shares, the live map
and the recent request picker.
"""
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.orm import Session
import logging

from ..db import get_db
from ..schemas import BloodRequestOut, DonorOut, TokenResponseIn, DirectLocationIn
from ..services import request_service
from ..services.location_service import location_service, SubmissionRejected
from ..services.redis_service import redis_service
from ..utils.time import as_utc

logger = logging.getLogger(__name__)

router = APIRouter(tags=["locations"])


@router.get("/r/{token}")
async def get_token_response(token: str, db: Session = Depends(get_db)):
    """Details behind a donor's SMS response link."""
    try:
        details = location_service.token_details(db, token)
        donor = details["donor"]
        return {
            "success": True,
            "data": {
                "token": details["token"],
                "request": BloodRequestOut.model_validate(details["request"]),
                "donor": DonorOut.model_validate(donor) if donor else None,
                "is_fulfilled": details["is_fulfilled"],
                "status_message": details["status_message"],
            },
        }

    except SubmissionRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error fetching token {token}: {e}")
        raise HTTPException(status_code=500, detail="Server error")


@router.post("/r/{token}/respond")
async def respond_to_token(token: str, payload: TokenResponseIn, db: Session = Depends(get_db)):
    """
    Submit the donor's location through their response link.

    - **latitude** / **longitude**: Current position
    - **is_available**: Whether the donor can come in
    - **address**: Optional human-readable address
    """
    try:
        location = location_service.submit_token_response(db, token, payload)
        await redis_service.publish_location_insert(location.to_feed_payload())
        return {
            "success": True,
            "message": "Response recorded successfully",
            "data": {
                "location_id": location.id,
                "donor_id": location.donor_id,
                "request_id": location.request_id,
                "latitude": location.latitude,
                "longitude": location.longitude,
                "is_available": location.is_available,
                "address": location.address,
                "response_time": location.response_time,
            },
        }

    except SubmissionRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error recording response for token {token}: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to record response")


@router.post("/api/donor-location")
async def share_donor_location(payload: DirectLocationIn, db: Session = Depends(get_db)):
    """Direct location share from the donor page (no SMS token)."""
    try:
        location = location_service.share_direct_location(db, payload)
        await redis_service.publish_location_insert(location.to_feed_payload())
        return {
            "success": True,
            "message": "Location shared successfully",
            "data": {
                "location_id": location.id,
                "request_id": location.request_id,
                "donor_id": location.donor_id,
                "coordinates": {"lat": location.latitude, "lng": location.longitude},
            },
        }

    except SubmissionRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error in direct location sharing: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to save location")


@router.get("/api/locations")
async def get_locations(db: Session = Depends(get_db)):
    """Live map: locations shared within the freshness window."""
    try:
        return {"success": True, **location_service.live_map(db)}

    except Exception as e:
        logger.error(f"Error fetching locations: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch locations")


@router.get("/api/responses/{request_id}")
async def get_request_responses(request_id: str, db: Session = Depends(get_db)):
    """Live donor responses for one blood request."""
    try:
        return {"success": True, **location_service.responses_for_request(db, request_id)}

    except SubmissionRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error fetching responses for request {request_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch responses")


@router.get("/api/recent-requests")
async def get_recent_requests(db: Session = Depends(get_db)):
    """Blood requests from the last 7 days for the dashboard's request picker."""
    try:
        requests = request_service.list_recent_requests(db)
        formatted = [
            {
                "id": request.id,
                "label": (
                    f"{request.blood_group} - {request.quantity} unit(s) - {request.hospital_id} - "
                    f"{as_utc(request.created_at):%d/%m/%Y}"
                ),
                "blood_group": request.blood_group,
                "quantity": request.quantity,
                "urgency": request.urgency,
                "hospital_id": request.hospital_id,
                "created_at": request.created_at,
                "status": request.status,
            }
            for request in requests
        ]
        logger.info(f"Found {len(formatted)} recent blood requests")
        return {"success": True, "requests": formatted, "total": len(formatted)}

    except Exception as e:
        logger.error(f"Error fetching recent requests: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch recent requests")
