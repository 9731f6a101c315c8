from sqlalchemy import select

from conftest import make_donor, make_request
from donorlink.models import ResponseToken, RequestStatus
from donorlink.services.invitation_service import InvitationService, consume_token, response_url
from donorlink.services.sms_service import (
    HIGH_PRIORITY_TEMPLATE,
    NORMAL_PRIORITY_TEMPLATE,
    SMSService,
    format_sms_message,
    get_sms_template,
)


class FakeSMS:
    def __init__(self, failing_numbers=()):
        self.sent = []
        self.failing_numbers = set(failing_numbers)

    def send_sms(self, to, message):
        if to in self.failing_numbers:
            return {'success': False, 'error': 'undeliverable'}
        self.sent.append((to, message))
        return {'success': True, 'sid': f"SM{len(self.sent)}"}


def test_invites_donors_of_the_request_blood_group(db):
    request = make_request(db, blood_group="A+", quantity=2, urgency="high")
    make_donor(db, unique_id="DON-1", phone="+911111111111", blood_group="A+")
    make_donor(db, unique_id="DON-2", phone="+912222222222", blood_group="A+")
    make_donor(db, unique_id="DON-3", phone="+913333333333", blood_group="O-")
    sms = FakeSMS(failing_numbers={"+912222222222"})

    result = InvitationService(sms=sms).invite_donors(db, request, hospital_name="City Hospital")

    assert result == {'invited': 2, 'sent': 1, 'failed': 1}
    to, message = sms.sent[0]
    assert message.startswith("🚨 URGENT: 2 units A+ blood needed at City Hospital.")
    assert "/r/" in message

    db.expire_all()
    assert len(db.get(type(request), request.id).token_values) == 2
    assert len(db.execute(select(ResponseToken)).scalars().all()) == 2


def test_closed_request_gets_no_invitations(db):
    request = make_request(db, status=RequestStatus.CANCELLED.value)
    make_donor(db)
    sms = FakeSMS()

    result = InvitationService(sms=sms).invite_donors(db, request)

    assert result == {'invited': 0, 'sent': 0, 'failed': 0}
    assert sms.sent == []


def test_token_is_consumed_once(db):
    request = make_request(db)
    donor = make_donor(db)
    db.add(ResponseToken(token="tok-1", donor_id=donor.id, request_id=request.id))
    db.commit()

    assert consume_token(db, "tok-1")
    assert not consume_token(db, "tok-1")
    assert not consume_token(db, "unknown")


def test_response_url():
    assert response_url("abc", base_url="https://donorlink.example/") == "https://donorlink.example/r/abc"


def test_sms_templates():
    assert get_sms_template("high") is HIGH_PRIORITY_TEMPLATE
    assert get_sms_template("low") is NORMAL_PRIORITY_TEMPLATE
    message = format_sms_message("{quantity} x {blood_group} {missing}", {"quantity": 3, "blood_group": "B-"})
    assert message == "3 x B- {missing}"


def test_unconfigured_sms_service_reports_failure():
    service = SMSService(account_sid="", auth_token="", from_number="")
    service.account_sid = service.auth_token = service.from_number = None

    assert service.send_sms("+911111111111", "hello") == {'success': False, 'error': 'SMS not configured'}
