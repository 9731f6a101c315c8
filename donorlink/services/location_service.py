"""
Donor location submissions and the live map built from them.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models import BloodRequest, DonationHistory, DonationStatus, Donor, Location, RequestStatus, ResponseToken
from ..schemas import DirectLocationIn, TokenResponseIn
from ..utils.location_filter import add_expiry_info, effective_time, filter_live, recent_location_clause
from ..utils.phone import phones_match
from ..utils.time import as_utc, utcnow
from .invitation_service import consume_token

logger = logging.getLogger(__name__)

ALREADY_FULFILLED_MESSAGE = (
    "Thank you for your willingness to help, but this blood request has already been fulfilled."
)


class SubmissionRejected(Exception):
    """A location submission or lookup that the caller must answer with `status_code`."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _find_donor(db: Session, donor_id: str) -> Optional[Donor]:
    donor = db.get(Donor, donor_id)
    if donor is None:
        donor = db.execute(select(Donor).where(Donor.unique_id == donor_id)).scalars().first()
    return donor


def _match_donor(location: Location, donors: List[Donor]) -> Optional[Donor]:
    for donor in donors:
        if phones_match(donor.phone, location.mobile_number):
            return donor
    return None


def _map_entry(location: Location, donor: Optional[Donor]) -> Dict[str, Any]:
    return {
        "id": location.id,
        "name": donor.name if donor else (location.user_name or "Unknown User"),
        "phone": donor.phone if donor else (location.mobile_number or "No phone"),
        "donor_id": location.donor_id or location.roll_number or "No ID",
        "blood_group": (donor.blood_group if donor else None) or "Unknown",
        "location": {"lat": location.latitude, "lng": location.longitude},
        "status": "responded" if location.is_available is not False else "unavailable",
        "response_time": location.response_time or location.timestamp,
        "timestamp": location.timestamp,
        "address": location.address,
        "request_id": location.request_id,
        "is_available": location.is_available is not False,
        "direct": bool(location.direct),
        "matched_donor": {
            "id": donor.id,
            "name": donor.name,
            "blood_group": donor.blood_group,
        } if donor else None,
    }


class LocationService:
    """Service for donor location submissions and live map reads."""

    @staticmethod
    def token_details(db: Session, token: str) -> Dict[str, Any]:
        """
        Look up an unused response token for the donor response page.

        Raises:
            SubmissionRejected: token unknown or already used, or its request
                no longer exists
        """
        response_token = db.execute(
            select(ResponseToken).where(ResponseToken.token == token, ResponseToken.is_used.is_(False))
        ).scalars().first()
        if response_token is None:
            raise SubmissionRejected(404, "Invalid or expired response link")

        request = db.get(BloodRequest, response_token.request_id)
        if request is None:
            raise SubmissionRejected(404, "Blood request no longer exists")

        closed = request.is_closed or request.status != RequestStatus.ACTIVE.value
        return {
            "token": response_token.token,
            "request": request,
            "donor": db.get(Donor, response_token.donor_id),
            "is_fulfilled": closed,
            "status_message": (
                "This blood request has already been fulfilled. Thank you for your support!" if closed else None
            ),
        }

    @staticmethod
    def submit_token_response(
        db: Session,
        token: str,
        data: TokenResponseIn,
        now: Optional[datetime] = None,
    ) -> Location:
        """
        Record the location a donor submitted through their SMS link.

        The token is spent in the same transaction as the insert, so a link
        can produce at most one location.

        Args:
            db: Database session
            token: Response token from the link
            data: Submitted coordinates and availability
            now: Submission time (defaults to current UTC time)

        Returns:
            The stored Location

        Raises:
            SubmissionRejected: 404 for unknown/used tokens, missing request or
                donor; 400 when the request no longer accepts responses
        """
        now = now or utcnow()
        response_token = db.execute(
            select(ResponseToken).where(ResponseToken.token == token, ResponseToken.is_used.is_(False))
        ).scalars().first()
        if response_token is None:
            raise SubmissionRejected(404, "Invalid or expired response link")

        request = db.get(BloodRequest, response_token.request_id)
        if request is None:
            raise SubmissionRejected(404, "Blood request not found")
        if request.status != RequestStatus.ACTIVE.value:
            raise SubmissionRejected(400, ALREADY_FULFILLED_MESSAGE)

        donor = db.get(Donor, response_token.donor_id)
        if donor is None:
            raise SubmissionRejected(404, "Donor not found")

        if not consume_token(db, token):
            db.rollback()
            raise SubmissionRejected(404, "Invalid or expired response link")

        location = Location(
            donor_id=donor.unique_id or donor.id,
            user_name=donor.name,
            mobile_number=donor.phone,
            roll_number=donor.roll_number or "",
            address=data.address or f"{donor.name} - Response Location",
            latitude=data.latitude,
            longitude=data.longitude,
            accuracy=0.0,
            request_id=request.id,
            token=token,
            direct=False,
            is_available=data.is_available,
            timestamp=now,
            response_time=now,
        )
        db.add(location)
        db.commit()
        db.refresh(location)
        logger.info(f"📍 Location response saved for donor {donor.name} on request {request.id}")
        return location

    @staticmethod
    def share_direct_location(db: Session, data: DirectLocationIn, now: Optional[datetime] = None) -> Location:
        """Store a location shared from the donor page without an SMS token."""
        now = now or utcnow()
        request = db.get(BloodRequest, data.request_id)
        if request is None:
            raise SubmissionRejected(404, "Blood request not found")
        if request.status != RequestStatus.ACTIVE.value:
            logger.info(f"❌ Location rejected: request {request.id} is {request.status}")
            raise SubmissionRejected(400, ALREADY_FULFILLED_MESSAGE)

        donor = _find_donor(db, data.donor_id)
        if donor is None:
            logger.warning(f"Donor {data.donor_id} not registered, storing location only")

        location = Location(
            donor_id=data.donor_id,
            user_name=donor.name if donor else f"Donor {data.donor_id}",
            mobile_number=donor.phone if donor else "",
            roll_number=(donor.roll_number or "") if donor else "",
            address=f"{donor.name} - Current Location" if donor else "Direct location share",
            latitude=data.lat,
            longitude=data.lng,
            accuracy=0.0,
            request_id=request.id,
            direct=True,
            is_available=True,
            timestamp=now,
            response_time=now,
        )
        db.add(location)
        db.commit()
        db.refresh(location)
        logger.info(f"📍 Direct location saved for donor {data.donor_id} on request {request.id}")
        return location

    @staticmethod
    def live_map(db: Session, now: Optional[datetime] = None, max_age_hours: Optional[float] = None) -> Dict[str, Any]:
        """
        Live donor locations with matched donor details and expiry info.

        Returns:
            Dict with 'responses', a 'summary' of matched/unmatched/expiring
            counts, and 'filter_info' describing the recency window
        """
        now = now or utcnow()
        max_age_hours = settings.location_max_age_hours if max_age_hours is None else max_age_hours

        all_locations = db.execute(select(Location).order_by(Location.timestamp.desc())).scalars().all()
        live = filter_live(all_locations, max_age_hours, now)
        donors = db.execute(select(Donor)).scalars().all()

        responses = [
            add_expiry_info(
                _map_entry(location, _match_donor(location, donors)),
                max_age_hours,
                now,
                settings.expiring_soon_minutes,
            )
            for location in live
        ]
        matched = sum(1 for r in responses if r["matched_donor"] is not None)
        logger.debug(f"Live map: {len(responses)} of {len(all_locations)} locations within {max_age_hours}h")

        return {
            "responses": responses,
            "summary": {
                "total": len(responses),
                "matched": matched,
                "unmatched": len(responses) - matched,
                "expiring_soon": sum(1 for r in responses if r["expiry_info"]["is_expiring_soon"]),
            },
            "filter_info": {
                "max_age_hours": max_age_hours,
                "total_before_filter": len(all_locations),
                "filtered_out": len(all_locations) - len(live),
            },
        }

    @staticmethod
    def responses_for_request(
        db: Session,
        request_id: str,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Live locations answering one request.

        Includes locations tagged with the request and untagged locations
        shared after it was created. A closed request returns no responses so
        dashboards clear its map.
        """
        now = now or utcnow()
        request = db.get(BloodRequest, request_id)
        if request is None:
            raise SubmissionRejected(404, "Blood request not found")

        closed = request.is_closed or request.status != RequestStatus.ACTIVE.value
        request_info = {
            "request_id": request.id,
            "created_at": request.created_at,
            "blood_group": request.blood_group,
            "status": request.status,
            "is_fulfilled": closed,
        }
        if closed:
            logger.info(f"🚫 Request {request_id} is {request.status}, returning no responses")
            return {"responses": [], "request_info": request_info}

        created_at = as_utc(request.created_at)
        candidates = db.execute(
            select(Location)
            .where(or_(
                Location.request_id == request.id,
                and_(Location.request_id.is_(None), Location.timestamp >= request.created_at),
            ))
            .order_by(Location.timestamp.desc())
        ).scalars().all()
        live = [
            location for location in filter_live(candidates, settings.location_max_age_hours, now)
            if location.request_id == request.id or effective_time(location) >= created_at
        ]
        donors = db.execute(select(Donor)).scalars().all()

        responses = []
        for location in live:
            entry = _map_entry(location, _match_donor(location, donors))
            responded_at = effective_time(location)
            entry["minutes_since_request"] = round((responded_at - created_at).total_seconds() / 60)
            entry["source"] = "direct" if location.direct else ("token_response" if location.token else "location")
            responses.append(add_expiry_info(entry, settings.location_max_age_hours, now, settings.expiring_soon_minutes))

        return {"responses": responses, "request_info": request_info}

    @staticmethod
    def available_donors(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Registered donors, with the live location each one shared, if any."""
        now = now or utcnow()
        donors = db.execute(select(Donor).order_by(Donor.created_at.desc())).scalars().all()
        live = db.execute(
            select(Location)
            .where(recent_location_clause(settings.location_max_age_hours, now))
            .order_by(Location.timestamp.desc())
        ).scalars().all()

        result = []
        for donor in donors:
            location = None
            matched_by = None
            for candidate in live:
                if phones_match(candidate.mobile_number, donor.phone):
                    location, matched_by = candidate, "phone"
                    break
                if candidate.user_name and donor.name and \
                        candidate.user_name.strip().lower() == donor.name.strip().lower():
                    location, matched_by = candidate, "name"
                    break

            result.append({
                "id": donor.id,
                "unique_id": donor.unique_id,
                "name": donor.name,
                "email": donor.email,
                "phone": donor.phone,
                "blood_group": donor.blood_group,
                "status": "responded" if location else "available",
                "last_donation": donor.last_donation_date,
                "address": location.address if location else None,
                "location": {"lat": location.latitude, "lng": location.longitude} if location else None,
                "response_time": location.timestamp if location else None,
                "has_location_data": location is not None,
                "matched_by": matched_by,
            })

        result.sort(key=lambda d: (not d["has_location_data"], d["name"].lower()))
        with_location = sum(1 for d in result if d["has_location_data"])
        return {
            "donors": result,
            "total": len(result),
            "with_location": with_location,
            "without_location": len(result) - with_location,
        }

    @staticmethod
    def verify_location(db: Session, donor_id: str) -> Dict[str, Any]:
        """
        Check that a donor is on the live map before confirming a donation.

        Raises:
            SubmissionRejected: 404 when the donor has no stored location
        """
        location = db.execute(
            select(Location).where(Location.donor_id == donor_id).order_by(Location.timestamp.desc())
        ).scalars().first()
        if location is None:
            raise SubmissionRejected(
                404,
                f'Donor with ID "{donor_id}" not found on live map. '
                "Please ensure the donor has shared their location.",
            )

        donor = db.execute(select(Donor).where(Donor.unique_id == donor_id)).scalars().first()
        return {
            "location": {
                "donor_id": location.donor_id,
                "user_name": location.user_name,
                "roll_number": location.roll_number,
                "mobile_number": location.mobile_number,
                "address": location.address,
                "latitude": location.latitude,
                "longitude": location.longitude,
                "timestamp": location.timestamp,
                "request_id": location.request_id,
            },
            "donor": {
                "name": donor.name,
                "email": donor.email,
                "phone": donor.phone,
                "blood_group": donor.blood_group,
                "roll_number": donor.roll_number,
            } if donor else None,
        }

    @staticmethod
    def recent_donations(db: Session, limit: int = 50) -> List[DonationHistory]:
        return list(db.execute(
            select(DonationHistory)
            .where(DonationHistory.status == DonationStatus.COMPLETED.value)
            .order_by(DonationHistory.completed_at.desc())
            .limit(limit)
        ).scalars().all())


# Singleton instance
location_service = LocationService()
