from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Notification(BaseModel):
    id: str
    hospital_id: Optional[str] = None
    type: Literal["info", "success", "warning", "error"] = "info"
    title: str
    message: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime
    donor_id: Optional[str] = None
    blood_request_id: Optional[str] = None


class MarkDonationIn(BaseModel):
    donor_id: str
    donor_name: Optional[str] = None
    request_id: Optional[str] = None


class BloodRequestIn(BaseModel):
    hospital_id: str
    blood_group: str
    quantity: int = Field(default=1, ge=1)
    urgency: Literal["low", "medium", "high"] = "medium"
    required_by: Optional[datetime] = None
    description: Optional[str] = None


class BloodRequestUpdate(BaseModel):
    blood_group: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    urgency: Optional[Literal["low", "medium", "high"]] = None
    required_by: Optional[datetime] = None
    description: Optional[str] = None
    status: Optional[Literal["active", "fulfilled", "cancelled", "expired"]] = None


class BloodRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    hospital_id: str
    blood_group: str
    quantity: int
    confirmed_units: int
    urgency: str
    status: str
    required_by: Optional[datetime] = None
    description: Optional[str] = None
    fulfilled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    active_tokens: List[str] = Field(default_factory=list, validation_alias="token_values")


class DonorIn(BaseModel):
    name: str
    phone: str
    blood_group: Optional[str] = None
    email: Optional[str] = None
    unique_id: Optional[str] = None
    roll_number: Optional[str] = None


class DonorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    unique_id: Optional[str] = None
    name: str
    phone: str
    email: Optional[str] = None
    blood_group: Optional[str] = None
    last_donation_date: Optional[datetime] = None


class TokenResponseIn(BaseModel):
    latitude: float
    longitude: float
    is_available: bool = True
    address: Optional[str] = None


class DirectLocationIn(BaseModel):
    request_id: str
    donor_id: str
    lat: float
    lng: float


class AcceptDonorIn(BaseModel):
    donor_id: str
    donor_name: str
    donor_phone: str
    donor_blood_group: str
    blood_request_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class DonationHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    donor_id: str
    blood_request_id: Optional[str] = None
    hospital_id: Optional[str] = None
    donor_name: str
    donor_phone: Optional[str] = None
    donor_blood_group: Optional[str] = None
    status: str
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class InviteDonorsIn(BaseModel):
    hospital_name: Optional[str] = None
    donor_ids: Optional[List[str]] = None
