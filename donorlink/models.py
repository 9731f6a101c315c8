import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base
from .utils.time import utcnow


def _new_id() -> str:
    return uuid.uuid4().hex


class RequestStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class DonationStatus(str, Enum):
    ACCEPTED = "accepted"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Tokenized:
    """Location submitted through a single-use SMS response link."""
    token: str


@dataclass(frozen=True)
class Direct:
    """Location shared directly from the donor page; no token to validate."""


DIRECT = Direct()

Credential = Union[Tokenized, Direct]


class BloodRequest(Base):
    __tablename__ = "blood_requests"

    id = Column(String(32), primary_key=True, default=_new_id)
    hospital_id = Column(String, index=True, nullable=False)
    blood_group = Column(String(8), index=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    confirmed_units = Column(Integer, nullable=False, default=0)
    urgency = Column(String, nullable=False, default="medium")
    status = Column(String, nullable=False, default=RequestStatus.ACTIVE.value, index=True)
    required_by = Column(DateTime(timezone=True), nullable=True)
    description = Column(String, nullable=True)
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    active_tokens = relationship(
        "ActiveToken",
        cascade="all, delete-orphan",
        order_by="ActiveToken.id",
    )

    @property
    def token_values(self) -> list[str]:
        return [t.token for t in self.active_tokens]

    @property
    def is_closed(self) -> bool:
        """Closed for new donor responses: fulfilled, cancelled or quota met."""
        return (
            self.status in (RequestStatus.FULFILLED.value, RequestStatus.CANCELLED.value)
            or (self.confirmed_units or 0) >= self.quantity
        )


class ActiveToken(Base):
    __tablename__ = "request_active_tokens"
    __table_args__ = (UniqueConstraint("request_id", "token", name="uq_request_token"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(
        String(32), ForeignKey("blood_requests.id", ondelete="CASCADE"), index=True, nullable=False
    )
    token = Column(String, index=True, nullable=False)


class Donor(Base):
    __tablename__ = "donors"

    id = Column(String(32), primary_key=True, default=_new_id)
    unique_id = Column(String, unique=True, index=True, nullable=True)  # e.g. DON-0001
    name = Column(String, nullable=False)
    phone = Column(String, index=True, nullable=False)
    email = Column(String, nullable=True)
    blood_group = Column(String(8), index=True, nullable=True)
    roll_number = Column(String, nullable=True)
    last_donation_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class Location(Base):
    __tablename__ = "locations"

    id = Column(String(32), primary_key=True, default=_new_id)
    donor_id = Column(String, index=True, nullable=True)
    user_name = Column(String, nullable=True)
    mobile_number = Column(String, nullable=True)
    roll_number = Column(String, nullable=True)
    address = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)
    request_id = Column(String(32), index=True, nullable=True)
    token = Column(String, nullable=True)
    direct = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, default=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    response_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def credential(self) -> Optional[Credential]:
        if self.direct:
            return DIRECT
        if self.token:
            return Tokenized(self.token)
        return None

    def to_feed_payload(self) -> dict:
        """Insert event shape published on the location change feed."""
        return {
            "id": self.id,
            "donor_id": self.donor_id,
            "user_name": self.user_name,
            "mobile_number": self.mobile_number,
            "request_id": self.request_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class DonationHistory(Base):
    __tablename__ = "donation_history"

    id = Column(String(32), primary_key=True, default=_new_id)
    donor_id = Column(String, index=True, nullable=False)
    donor_profile_id = Column(String(32), nullable=True)
    blood_request_id = Column(String(32), index=True, nullable=True)
    hospital_id = Column(String, index=True, nullable=True)
    donor_name = Column(String, nullable=False)
    donor_phone = Column(String, nullable=True)
    donor_blood_group = Column(String(8), nullable=True)
    status = Column(String, nullable=False, default=DonationStatus.ACCEPTED.value, index=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ResponseToken(Base):
    __tablename__ = "response_tokens"

    token = Column(String, primary_key=True)
    donor_id = Column(String(32), index=True, nullable=False)
    request_id = Column(String(32), index=True, nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class NotificationRecord(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=_new_id)
    hospital_id = Column(String, index=True, nullable=True)
    type = Column(String, nullable=False, default="info")
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    meta = Column(JSON, nullable=True)
    read = Column(Boolean, default=False)
    blood_request_id = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
