"""
Resolve a registered donor profile for a location submission.

Lookups run in priority order (stable id, phone, name) and the first hit wins.
No match is a normal result: callers fall back to the identity fields carried
by the location record itself.
"""
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..models import Donor, Location
from ..utils.phone import phone_variants

logger = logging.getLogger(__name__)

Lookup = Callable[[Session, Optional[str], Location], Optional[Donor]]


def by_stable_id(db: Session, donor_id: Optional[str], location: Location) -> Optional[Donor]:
    if not donor_id:
        return None
    return db.execute(
        select(Donor).where(or_(Donor.unique_id == donor_id, Donor.id == donor_id))
    ).scalars().first()


def by_phone(db: Session, donor_id: Optional[str], location: Location) -> Optional[Donor]:
    return find_donor_by_phone(db, location.mobile_number)


def by_name(db: Session, donor_id: Optional[str], location: Location) -> Optional[Donor]:
    name = (location.user_name or "").strip()
    if not name:
        return None
    return db.execute(
        select(Donor).where(func.lower(Donor.name) == name.lower())
    ).scalars().first()


DEFAULT_LOOKUPS: Tuple[Tuple[str, Lookup], ...] = (
    ("id", by_stable_id),
    ("phone", by_phone),
    ("name", by_name),
)


class DonorResolver:
    """Prioritised fallback resolver over donor lookups."""

    def __init__(self, lookups: Sequence[Tuple[str, Lookup]] = DEFAULT_LOOKUPS):
        self.lookups: List[Tuple[str, Lookup]] = list(lookups)

    def resolve(self, db: Session, donor_id: Optional[str], location: Location) -> Optional[Donor]:
        for name, lookup in self.lookups:
            donor = lookup(db, donor_id, location)
            if donor is not None:
                logger.debug(f"Donor for {donor_id} matched by {name}: {donor.name} ({donor.blood_group})")
                return donor
        logger.debug(f"No registered donor for {donor_id}, using location data")
        return None


def find_donor_by_phone(db: Session, phone: Optional[str]) -> Optional[Donor]:
    """Phone-only match used when a live submission arrives on the change feed."""
    variants = phone_variants(phone)
    if not variants:
        return None
    return db.execute(select(Donor).where(Donor.phone.in_(variants))).scalars().first()


donor_resolver = DonorResolver()
