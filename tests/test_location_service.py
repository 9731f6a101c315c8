from datetime import timedelta

import pytest

from conftest import make_donor, make_location, make_request
from donorlink.services.location_service import SubmissionRejected, location_service
from donorlink.utils.time import utcnow


def test_live_map_hides_stale_locations(db):
    now = utcnow()
    make_donor(db)
    make_location(db, timestamp=now - timedelta(minutes=5))
    make_location(db, donor_id="DON-0002", user_name="Old", mobile_number="5550001",
                  timestamp=now - timedelta(hours=3))

    live = location_service.live_map(db, now=now)

    assert [r["donor_id"] for r in live["responses"]] == ["DON-0001"]
    assert live["summary"] == {"total": 1, "matched": 1, "unmatched": 0, "expiring_soon": 0}
    assert live["filter_info"]["filtered_out"] == 1


def test_responses_include_untagged_locations_shared_after_the_request(db):
    now = utcnow()
    request = make_request(db, created_at=now - timedelta(minutes=30))
    make_location(db, donor_id="tagged", request_id=request.id, timestamp=now - timedelta(minutes=10))
    make_location(db, donor_id="untagged", request_id=None, timestamp=now - timedelta(minutes=5))
    make_location(db, donor_id="before", request_id=None, timestamp=now - timedelta(minutes=45))
    other = make_request(db)
    make_location(db, donor_id="elsewhere", request_id=other.id, timestamp=now - timedelta(minutes=5))

    result = location_service.responses_for_request(db, request.id, now=now)

    assert sorted(r["donor_id"] for r in result["responses"]) == ["tagged", "untagged"]
    assert result["request_info"]["is_fulfilled"] is False


def test_responses_for_quota_met_request_are_empty(db):
    request = make_request(db, quantity=1, confirmed_units=1)
    make_location(db, request_id=request.id)

    result = location_service.responses_for_request(db, request.id)

    assert result["responses"] == []
    assert result["request_info"]["is_fulfilled"] is True


def test_unknown_request_is_rejected(db):
    with pytest.raises(SubmissionRejected) as exc:
        location_service.responses_for_request(db, "missing")
    assert exc.value.status_code == 404


def test_available_donors_lists_located_donors_first(db):
    make_donor(db, unique_id="DON-1", name="Zara", phone="+911111111111")
    make_donor(db, unique_id="DON-2", name="Amit", phone="+912222222222")
    make_location(db, donor_id="DON-1", user_name="Zara", mobile_number="1111111111")

    result = location_service.available_donors(db)

    assert [d["name"] for d in result["donors"]] == ["Zara", "Amit"]
    assert result["donors"][0]["matched_by"] == "phone"
    assert result["with_location"] == 1
    assert result["without_location"] == 1


def test_verify_location_requires_a_live_submission(db):
    with pytest.raises(SubmissionRejected) as exc:
        location_service.verify_location(db, "DON-0001")
    assert exc.value.status_code == 404
    assert "not found on live map" in exc.value.message
