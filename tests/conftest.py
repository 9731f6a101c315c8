import os
import tempfile
from datetime import timedelta

# Settings and the default engine are built at import time
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(tempfile.gettempdir(), 'donorlink-test.db')}"
os.environ["WATCHER_ENABLED"] = "false"
os.environ.setdefault("SOCKETIO_REDIS_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from donorlink.db import create_tables
from donorlink.models import BloodRequest, Donor, Location, RequestStatus
from donorlink.services.duplicate_guard import duplicate_guard
from donorlink.services.notification_hub import notification_hub
from donorlink.utils.time import utcnow


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'donorlink.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def reset_process_state():
    duplicate_guard.reset()
    notification_hub.clients.clear()
    yield
    duplicate_guard.reset()
    notification_hub.clients.clear()


def make_request(db, **overrides):
    values = dict(
        hospital_id="H1",
        blood_group="A+",
        quantity=1,
        confirmed_units=0,
        urgency="medium",
        status=RequestStatus.ACTIVE.value,
        required_by=utcnow() + timedelta(days=1),
    )
    values.update(overrides)
    request = BloodRequest(**values)
    db.add(request)
    db.commit()
    db.refresh(request)
    return request


def make_donor(db, **overrides):
    values = dict(unique_id="DON-0001", name="Asha Patel", phone="+919876543210", blood_group="A+")
    values.update(overrides)
    donor = Donor(**values)
    db.add(donor)
    db.commit()
    db.refresh(donor)
    return donor


def make_location(db, **overrides):
    now = utcnow()
    values = dict(
        donor_id="DON-0001",
        user_name="Asha Patel",
        mobile_number="+919876543210",
        latitude=22.6,
        longitude=72.8,
        direct=True,
        timestamp=now,
        response_time=now,
    )
    values.update(overrides)
    location = Location(**values)
    db.add(location)
    db.commit()
    db.refresh(location)
    return location
