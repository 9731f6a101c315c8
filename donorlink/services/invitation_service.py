"""
Donor invitations: mint single-use response tokens and text the links.
"""
import logging
import secrets
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models import ActiveToken, BloodRequest, Donor, RequestStatus, ResponseToken
from .sms_service import SMSService, format_sms_message, get_sms_template, sms_service

logger = logging.getLogger(__name__)


def mint_token() -> str:
    return secrets.token_urlsafe(16)


def response_url(token: str, base_url: Optional[str] = None) -> str:
    return f"{(base_url or settings.public_base_url).rstrip('/')}/r/{token}"


def issue_token(db: Session, request: BloodRequest, donor: Donor) -> ResponseToken:
    """Create a response token for one donor and add it to the request's active tokens."""
    token = ResponseToken(token=mint_token(), donor_id=donor.id, request_id=request.id, is_used=False)
    db.add(token)
    db.add(ActiveToken(request_id=request.id, token=token.token))
    return token


def consume_token(db: Session, token: str) -> bool:
    """
    Mark a response token as used.

    Returns:
        True only for the first caller; the token is then spent
    """
    result = db.execute(
        update(ResponseToken)
        .where(ResponseToken.token == token, ResponseToken.is_used.is_(False))
        .values(is_used=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class InvitationService:
    """Invites matching donors to respond to a blood request."""

    def __init__(self, sms: SMSService = sms_service):
        self.sms = sms

    def invite_donors(
        self,
        db: Session,
        request: BloodRequest,
        hospital_name: Optional[str] = None,
        donor_ids: Optional[List[str]] = None,
    ) -> Dict:
        """
        Send SMS invitations for an active request.

        Args:
            db: Database session
            request: Blood request donors are invited to
            hospital_name: Name shown in the SMS
            donor_ids: Restrict to these donors; defaults to every donor with
                the request's blood group

        Returns:
            Dict with 'invited', 'sent' and 'failed' counts
        """
        if request.status != RequestStatus.ACTIVE.value:
            logger.warning(f"Request {request.id} is {request.status}, no invitations sent")
            return {'invited': 0, 'sent': 0, 'failed': 0}

        query = select(Donor)
        if donor_ids:
            query = query.where(Donor.id.in_(donor_ids))
        else:
            query = query.where(Donor.blood_group == request.blood_group)
        donors = db.execute(query).scalars().all()

        tokens = [(donor, issue_token(db, request, donor)) for donor in donors]
        db.commit()

        template = get_sms_template(request.urgency)
        sent = failed = 0
        for donor, token in tokens:
            message = format_sms_message(template, {
                'quantity': request.quantity,
                'blood_group': request.blood_group,
                'hospital': hospital_name or 'your nearest hospital',
                'response_url': response_url(token.token),
            })
            result = self.sms.send_sms(donor.phone, message)
            if result.get('success'):
                sent += 1
            else:
                failed += 1

        logger.info(f"Invitations for request {request.id}: {sent} sent, {failed} failed")
        return {'invited': len(tokens), 'sent': sent, 'failed': failed}


# Singleton instance
invitation_service = InvitationService()
