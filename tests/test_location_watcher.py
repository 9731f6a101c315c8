import asyncio

from conftest import make_donor, make_request
from donorlink.models import RequestStatus
from donorlink.services.location_watcher import LocationWatcher, build_location_notification
from donorlink.services.notification_hub import NotificationHub


class RecordingConnection:
    def __init__(self):
        self.received = []

    async def write(self, text):
        self.received.append(text)

    def on_close(self, callback):
        pass


class FakeFeed:
    """Each subscription replays the next scripted batch; exceptions are raised in place."""

    def __init__(self, *batches):
        self.batches = list(batches)
        self.subscriptions = 0

    async def listen_location_inserts(self):
        self.subscriptions += 1
        if not self.batches:
            await asyncio.Event().wait()
        for item in self.batches.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item


def _event(request_id, **overrides):
    event = {
        "id": "loc-1",
        "donor_id": "DON-0001",
        "user_name": "Asha",
        "mobile_number": "9876543210",
        "request_id": request_id,
        "latitude": 22.6,
        "longitude": 72.8,
    }
    event.update(overrides)
    return event


async def _run_until(watcher, condition, timeout=5.0):
    watcher.start()
    try:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition() and loop.time() < deadline:
            await asyncio.sleep(0.01)
    finally:
        await watcher.stop()


def test_notification_for_active_request(db):
    request = make_request(db, hospital_id="H1", blood_group="A+")
    make_donor(db, phone="+919876543210", name="Asha Patel", blood_group="A+")

    notification = build_location_notification(db, _event(request.id))

    assert notification.hospital_id == "H1"
    assert notification.id.startswith("ephemeral-")
    assert notification.meta["source"] == "change_stream"
    assert notification.meta["donor_name"] == "Asha Patel"
    assert notification.blood_request_id == request.id


def test_unknown_donor_falls_back_to_event_name(db):
    request = make_request(db)

    notification = build_location_notification(db, _event(request.id, mobile_number="5550000"))

    assert notification.meta["donor_name"] == "Asha"
    assert notification.meta["donor_blood_group"] == "Unknown"


def test_closed_requests_are_suppressed(db):
    fulfilled = make_request(db, status=RequestStatus.FULFILLED.value, confirmed_units=1)
    cancelled = make_request(db, status=RequestStatus.CANCELLED.value)
    quota_met = make_request(db, quantity=2, confirmed_units=2)

    for request in (fulfilled, cancelled, quota_met):
        assert build_location_notification(db, _event(request.id)) is None


def test_events_without_a_known_request_are_skipped(db):
    assert build_location_notification(db, _event(None)) is None
    assert build_location_notification(db, _event("missing")) is None


def test_watcher_publishes_to_the_request_hospital(db, session_factory):
    request = make_request(db, hospital_id="H1")
    hub = NotificationHub()
    connection = RecordingConnection()
    hub.subscribe("H1", connection)
    feed = FakeFeed([_event(request.id)])
    watcher = LocationWatcher(feed=feed, hub=hub, session_factory=session_factory, restart_delay=0)

    asyncio.run(_run_until(watcher, lambda: connection.received))

    assert len(connection.received) == 1
    assert "New Donor Location Shared" in connection.received[0]


def test_watcher_survives_bad_events_and_feed_errors(db, session_factory):
    request = make_request(db, hospital_id="H1")
    hub = NotificationHub()
    connection = RecordingConnection()
    hub.subscribe("H1", connection)
    feed = FakeFeed(
        [{"request_id": ["not", "an", "id"]}, ConnectionError("redis went away")],
        [],
        [_event(request.id)],
    )
    watcher = LocationWatcher(feed=feed, hub=hub, session_factory=session_factory, restart_delay=0)

    asyncio.run(_run_until(watcher, lambda: connection.received))

    assert feed.subscriptions >= 3
    assert len(connection.received) == 1
    assert not watcher.is_running
