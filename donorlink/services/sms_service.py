"""
SMS Service

Sends donor invitations through the Twilio Messages REST API.
"""
import logging
from typing import Dict, Optional

import requests

from ..core.config import settings

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

HIGH_PRIORITY_TEMPLATE = (
    "🚨 URGENT: {quantity} units {blood_group} blood needed at {hospital}. "
    "Your donation can save a life! Please respond: {response_url}"
)
NORMAL_PRIORITY_TEMPLATE = (
    "Blood donation request from {hospital}. {quantity} units {blood_group} blood needed. "
    "Can you help save a life? Respond: {response_url}"
)


def get_sms_template(urgency: str = "medium") -> str:
    return HIGH_PRIORITY_TEMPLATE if urgency == "high" else NORMAL_PRIORITY_TEMPLATE


def format_sms_message(template: str, variables: Dict[str, object]) -> str:
    """Replace every `{name}` placeholder; unknown placeholders are left as-is."""
    message = template
    for key, value in variables.items():
        message = message.replace("{" + key + "}", str(value))
    return message


class SMSService:
    """
    Thin client over the Twilio REST API.
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
    ):
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_phone_number
        self.session = requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send_sms(self, to: str, message: str) -> Dict:
        """
        Send one SMS.

        Args:
            to: Destination number in E.164 format
            message: Message body

        Returns:
            Dict with 'success' and either the message 'sid' or an 'error'
        """
        if not self.configured:
            logger.error("❌ SMS not configured: missing Twilio account sid, auth token or phone number")
            return {'success': False, 'error': 'SMS not configured'}

        try:
            logger.info(f"📱 Sending SMS to {to} ({len(message)} characters)")
            response = self.session.post(
                TWILIO_MESSAGES_URL.format(sid=self.account_sid),
                data={'To': to, 'From': self.from_number, 'Body': message},
                auth=(self.account_sid, self.auth_token),
                timeout=10
            )
            response.raise_for_status()
            sid = response.json().get('sid')
            logger.info(f"✅ SMS sent successfully: {sid}")
            return {'success': True, 'sid': sid}

        except Exception as e:
            logger.error(f"❌ Error sending SMS to {to}: {e}")
            return {'success': False, 'error': str(e)}


# Global instance
sms_service = SMSService()
