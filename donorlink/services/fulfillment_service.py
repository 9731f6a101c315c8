"""
Donation fulfillment: match a donor's live location to a blood request and
reserve one unit of it.

Everything before the ledger increment is read-only resolution and everything
after it is bookkeeping. The increment itself is a single conditional UPDATE,
so two kiosks resolving the same request can never over-fill it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import (
    AlreadyDonated,
    DonorNotFound,
    FailureKind,
    FulfillmentError,
    PersistenceFailure,
    RequestExpired,
    RequestNotFound,
    ReservationConflict,
)
from ..models import (
    ActiveToken,
    BloodRequest,
    Credential,
    DonationHistory,
    DonationStatus,
    Donor,
    Location,
    RequestStatus,
    Tokenized,
)
from ..utils.time import as_utc, utcnow
from .donor_resolver import DonorResolver, donor_resolver
from .duplicate_guard import DuplicateGuard, duplicate_guard

logger = logging.getLogger(__name__)


@dataclass
class DonationReceipt:
    donation_id: str
    donor_name: str
    blood_group: str
    completed_at: datetime
    request_id: str
    hospital_id: str
    confirmed_units: int
    quantity: int
    request_fulfilled: bool

    def to_dict(self) -> dict:
        return {
            "id": self.donation_id,
            "donor_name": self.donor_name,
            "blood_group": self.blood_group,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class FulfillmentOutcome:
    ok: bool
    receipt: Optional[DonationReceipt] = None
    failure: Optional[FailureKind] = None
    message: str = ""

    @classmethod
    def success(cls, receipt: DonationReceipt) -> "FulfillmentOutcome":
        return cls(ok=True, receipt=receipt, message=f"Donation completed for {receipt.donor_name}")

    @classmethod
    def failed(cls, error: FulfillmentError) -> "FulfillmentOutcome":
        return cls(ok=False, failure=error.kind, message=error.message)


def create_walk_in_request(db: Session, blood_group: Optional[str], now: datetime) -> Optional[BloodRequest]:
    """
    Open a placeholder request so a walk-in donation is not lost.

    Returns None when walk-in requests are disabled. Quantity, urgency and
    deadline come from settings.
    """
    if not settings.walk_in_requests_enabled:
        return None

    request = BloodRequest(
        hospital_id=settings.walk_in_hospital_id,
        blood_group=blood_group or settings.walk_in_blood_group,
        quantity=settings.walk_in_quantity,
        confirmed_units=0,
        urgency=settings.walk_in_urgency,
        status=RequestStatus.ACTIVE.value,
        required_by=now + timedelta(hours=settings.walk_in_deadline_hours),
        description="Walk-in donation",
        created_at=now,
    )
    db.add(request)
    db.flush()
    logger.info(f"Created walk-in request {request.id} ({request.blood_group})")
    return request


WalkInPolicy = Callable[[Session, Optional[str], datetime], Optional[BloodRequest]]


class FulfillmentEngine:
    """Confirms donations against the request ledger."""

    def __init__(
        self,
        guard: DuplicateGuard = duplicate_guard,
        resolver: DonorResolver = donor_resolver,
        walk_in_policy: WalkInPolicy = create_walk_in_request,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.guard = guard
        self.resolver = resolver
        self.walk_in_policy = walk_in_policy
        self.clock = clock

    def confirm_donation(
        self,
        db: Session,
        donor_id: str,
        request_id: Optional[str] = None,
        donor_name: Optional[str] = None,
    ) -> FulfillmentOutcome:
        """
        Confirm one donation for `donor_id`.

        Args:
            db: Database session
            donor_id: Stable donor id as shown on the live map / QR code
            request_id: Optional explicit blood request to fulfil
            donor_name: Name typed at the kiosk, used only when neither the
                donor profile nor the location carries one

        Returns:
            FulfillmentOutcome with a receipt on success or a failure kind.
            The donor stays locked in the duplicate guard after a success.
        """
        try:
            self.guard.try_acquire(donor_id)
        except FulfillmentError as e:
            return FulfillmentOutcome.failed(e)

        try:
            receipt, profile_id = self._fulfill(db, donor_id, request_id, donor_name)
        except FulfillmentError as e:
            db.rollback()
            self.guard.release(donor_id)
            logger.warning(f"❌ Donation for {donor_id} rejected: {e.kind.value} ({e.message})")
            return FulfillmentOutcome.failed(e)
        except SQLAlchemyError as e:
            db.rollback()
            self.guard.release(donor_id)
            logger.error(f"❌ Database error confirming donation for {donor_id}: {e}")
            return FulfillmentOutcome.failed(PersistenceFailure("Database update failed"))
        except Exception as e:
            db.rollback()
            self.guard.release(donor_id)
            logger.error(f"❌ Unexpected error confirming donation for {donor_id}: {e}")
            return FulfillmentOutcome.failed(PersistenceFailure("Donation could not be recorded"))

        logger.info(
            f"✅ Donation {receipt.donation_id} saved for {receipt.donor_name} "
            f"({receipt.confirmed_units}/{receipt.quantity} on request {receipt.request_id})"
        )
        self._touch_donor(db, profile_id, receipt.completed_at)
        return FulfillmentOutcome.success(receipt)

    def _fulfill(self, db: Session, donor_id: str, explicit_request_id: Optional[str], donor_name: Optional[str]):
        if self._has_completed_donation(db, donor_id):
            raise AlreadyDonated("Already donated")

        location = db.execute(
            select(Location)
            .where(Location.donor_id == donor_id)
            .order_by(Location.timestamp.desc())
        ).scalars().first()
        if location is None:
            raise DonorNotFound(
                f'Donor with ID "{donor_id}" not found on live map. '
                "Please ensure the donor has shared their location."
            )

        donor = self.resolver.resolve(db, donor_id, location)
        now = self.clock()
        request = self._resolve_request(
            db, explicit_request_id, location, donor.blood_group if donor else None, now
        )

        if request.status == RequestStatus.ACTIVE.value and request.required_by is not None:
            if now > as_utc(request.required_by):
                self._expire(db, request.id, now)
                raise RequestExpired("Blood request has expired.")

        confirmed_units, quantity = self._reserve_unit(db, request.id, location.credential, now)

        fulfilled = confirmed_units >= quantity
        if fulfilled:
            self._close_fulfilled(db, request.id, now)

        history = self._record_history(db, donor_id, donor, location, request, donor_name, now)
        receipt = DonationReceipt(
            donation_id=history.id,
            donor_name=history.donor_name,
            blood_group=history.donor_blood_group,
            completed_at=now,
            request_id=request.id,
            hospital_id=request.hospital_id,
            confirmed_units=confirmed_units,
            quantity=quantity,
            request_fulfilled=fulfilled,
        )
        profile_id = donor.id if donor else None

        # consumed submission leaves the live map
        db.delete(location)
        db.commit()
        return receipt, profile_id

    @staticmethod
    def _has_completed_donation(db: Session, donor_id: str) -> bool:
        return db.execute(
            select(DonationHistory.id).where(
                DonationHistory.donor_id == donor_id,
                DonationHistory.status == DonationStatus.COMPLETED.value,
            )
        ).first() is not None

    def _resolve_request(
        self,
        db: Session,
        explicit_request_id: Optional[str],
        location: Location,
        blood_group: Optional[str],
        now: datetime,
    ) -> BloodRequest:
        for candidate in (explicit_request_id, location.request_id):
            if not candidate:
                continue
            request = db.get(BloodRequest, candidate)
            if request is not None:
                return request
            logger.warning(f"Blood request {candidate} not found, trying next match")

        if blood_group:
            request = db.execute(
                select(BloodRequest)
                .where(
                    BloodRequest.blood_group == blood_group,
                    BloodRequest.status == RequestStatus.ACTIVE.value,
                )
                .order_by(BloodRequest.created_at.desc())
            ).scalars().first()
            if request is not None:
                logger.info(f"Matched pending {blood_group} request {request.id}")
                return request

        request = self.walk_in_policy(db, blood_group, now) if self.walk_in_policy else None
        if request is None:
            raise RequestNotFound("No blood request matches this donation")
        return request

    @staticmethod
    def _expire(db: Session, request_id: str, now: datetime) -> None:
        db.execute(
            update(BloodRequest)
            .where(BloodRequest.id == request_id, BloodRequest.status == RequestStatus.ACTIVE.value)
            .values(status=RequestStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            delete(ActiveToken)
            .where(ActiveToken.request_id == request_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info(f"⌛ Request {request_id} expired")

    @staticmethod
    def _reserve_unit(db: Session, request_id: str, credential: Optional[Credential], now: datetime):
        """Test-and-increment on the ledger. The only writer of confirmed_units."""
        stmt = (
            update(BloodRequest)
            .where(
                BloodRequest.id == request_id,
                BloodRequest.status == RequestStatus.ACTIVE.value,
                BloodRequest.confirmed_units < BloodRequest.quantity,
            )
            .values(confirmed_units=BloodRequest.confirmed_units + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if isinstance(credential, Tokenized):
            stmt = stmt.where(
                select(ActiveToken.id)
                .where(ActiveToken.request_id == request_id, ActiveToken.token == credential.token)
                .exists()
            )

        result = db.execute(stmt)
        if result.rowcount != 1:
            raise ReservationConflict("Blood request already fulfilled or expired.")

        row = db.execute(
            select(BloodRequest.confirmed_units, BloodRequest.quantity).where(BloodRequest.id == request_id)
        ).one()
        return row.confirmed_units, row.quantity

    @staticmethod
    def _close_fulfilled(db: Session, request_id: str, now: datetime) -> None:
        db.execute(
            update(BloodRequest)
            .where(BloodRequest.id == request_id, BloodRequest.status == RequestStatus.ACTIVE.value)
            .values(status=RequestStatus.FULFILLED.value, fulfilled_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            delete(ActiveToken)
            .where(ActiveToken.request_id == request_id)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"✅ Request {request_id} fulfilled and locked")

    @staticmethod
    def _record_history(
        db: Session,
        donor_id: str,
        donor: Optional[Donor],
        location: Location,
        request: BloodRequest,
        donor_name: Optional[str],
        now: datetime,
    ) -> DonationHistory:
        history = db.execute(
            select(DonationHistory).where(
                DonationHistory.donor_id == donor_id,
                DonationHistory.blood_request_id == request.id,
                DonationHistory.status == DonationStatus.ACCEPTED.value,
            )
        ).scalars().first()

        if history is None:
            history = DonationHistory(donor_id=donor_id, blood_request_id=request.id, accepted_at=now)
            db.add(history)

        history.hospital_id = request.hospital_id
        history.donor_profile_id = donor.id if donor else None
        history.donor_name = donor.name if donor else (location.user_name or donor_name or "Unknown Donor")
        history.donor_phone = donor.phone if donor else location.mobile_number
        history.donor_blood_group = (donor.blood_group if donor else None) or "Unknown"
        history.status = DonationStatus.COMPLETED.value
        history.completed_at = now
        history.latitude = location.latitude or 0.0
        history.longitude = location.longitude or 0.0
        history.address = location.address or "Location Shared"
        history.notes = history.notes or f"Confirmed at kiosk: {donor_id}"
        db.flush()
        return history

    @staticmethod
    def _touch_donor(db: Session, profile_id: Optional[str], when: datetime) -> None:
        if not profile_id:
            return
        try:
            db.execute(
                update(Donor)
                .where(Donor.id == profile_id)
                .values(last_donation_date=when)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not update last donation date for donor {profile_id}: {e}")


fulfillment_engine = FulfillmentEngine()
