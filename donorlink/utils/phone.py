"""
Phone number normalisation for matching location submissions to donors.
"""
import re
from typing import List, Optional

from ..core.config import settings

_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def digits_only(phone: Optional[str]) -> str:
    return _NON_DIGITS.sub("", phone or "")


def phone_variants(phone: Optional[str], country_code: Optional[str] = None) -> List[str]:
    """
    Build the stored forms a phone number may have been registered under.

    Args:
        phone: Raw number as typed by the donor
        country_code: Country calling code without '+' (defaults to settings)

    Returns:
        Distinct candidates in match order: raw, whitespace-stripped, digits,
        '+' + country code + digits, '+' + digits, and the local number when the
        raw value already carries the country code.
    """
    if not phone or not phone.strip():
        return []
    cc = settings.default_country_code if country_code is None else country_code
    raw = phone.strip()
    digits = digits_only(raw)

    candidates = [raw, _WHITESPACE.sub("", raw)]
    if digits:
        candidates += [digits, f"+{cc}{digits}", f"+{digits}"]
        if cc and digits.startswith(cc) and len(digits) > len(cc):
            local = digits[len(cc):]
            candidates += [local, f"+{cc}{local}"]

    seen = []
    for candidate in candidates:
        if candidate and candidate not in seen:
            seen.append(candidate)
    return seen


def phones_match(a: Optional[str], b: Optional[str], country_code: Optional[str] = None) -> bool:
    """Compare two numbers by digits, tolerating a missing country-code prefix."""
    if not a or not b:
        return False
    if a == b:
        return True
    cc = settings.default_country_code if country_code is None else country_code
    da, db = digits_only(a), digits_only(b)
    if not da or not db:
        return False
    return da == db or da == f"{cc}{db}" or db == f"{cc}{da}"
