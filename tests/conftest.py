import os
import sys
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import models  # noqa: F401  registers tables on the metadata
import profiles
from models import Role
from store import SQLStore
from notifications import InsertFeed


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    """Each test runs against a fresh sqlite database."""
    import db as db_mod
    new_engine = db_mod.make_engine(f"sqlite:///{tmp_path}/test.db", echo=False)
    monkeypatch.setattr(db_mod, "engine", new_engine)
    db_mod.init_db(new_engine)
    yield new_engine
    db_mod.drop_db(new_engine)


@pytest.fixture
def store():
    return SQLStore(InsertFeed())


def make_user(name="Ana", role=Role.passenger, zone=None):
    email = f"{name.lower().replace(' ', '.')}@{profiles.EMAIL_DOMAIN}"
    p = profiles.register_profile(email, name, zone=zone)
    return profiles.select_role(p.id, role)


def driver_fields(owner_id, day="lunes", time="08:00", origin="residencia",
                  destination="universidad", seats=4, zone=None):
    return {
        "owner_id": owner_id, "day": day, "departure_time": time,
        "origin": origin, "destination": destination, "seats": seats, "zone": zone,
    }


def passenger_fields(owner_id, day="lunes", time="08:00", origin="residencia",
                     destination="universidad", flex=30, zone=None):
    return {
        "owner_id": owner_id, "day": day, "approx_time": time,
        "origin": origin, "destination": destination, "flexibility_minutes": flex, "zone": zone,
    }
