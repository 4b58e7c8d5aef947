"""
Schema and setup tests: the tables built by init_db agree with the alembic
revision, and migrate.py can reset and seed a database.
"""
import importlib.util
import os

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect, func
from sqlmodel import select

import db
import migrate
from models import Profile, DriverSchedule, PassengerSchedule

REVISION = os.path.join(
    os.path.dirname(__file__), "..", "alembic", "versions", "3f7a1c9e2b10_initial_schema.py"
)


def _foreign_keys(engine):
    insp = inspect(engine)
    out = set()
    for table in insp.get_table_names():
        for fk in insp.get_foreign_keys(table):
            for col, target in zip(fk["constrained_columns"], fk["referred_columns"]):
                out.add((table, col, f"{fk['referred_table']}.{target}"))
    return out


def _run_revision(engine):
    spec = importlib.util.spec_from_file_location("initial_schema", REVISION)
    revision = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(revision)
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            revision.upgrade()


# ────────────────────────── schema ──────────────────────────────────────────

def test_models_and_revision_declare_the_same_foreign_keys(tmp_path):
    from_models = db.make_engine(f"sqlite:///{tmp_path}/models.db")
    db.init_db(from_models)
    from_revision = db.make_engine(f"sqlite:///{tmp_path}/alembic.db")
    _run_revision(from_revision)

    fks = _foreign_keys(from_models)
    assert fks == _foreign_keys(from_revision)
    assert ("triprequest", "driver_schedule_id", "driverschedule.id") in fks
    assert ("notification", "user_id", "profile.id") in fks
    assert {t for t, _, _ in fks} == {
        "driverschedule", "passengerschedule", "triprequest", "notification", "vehicle",
    }


def test_init_db_reports_tables(fresh_db):
    tables = db.init_db(fresh_db)
    assert {"profile", "driverschedule", "passengerschedule", "triprequest", "notification"} <= set(tables)
    assert set(tables) <= set(inspect(fresh_db).get_table_names())


def test_get_lock_is_shared_per_name():
    assert db.get_lock("requests") is db.get_lock("requests")
    assert db.get_lock("requests") is not db.get_lock("other")


# ────────────────────────── migrate.py ──────────────────────────────────────

def _count(model):
    with db.get_session() as session:
        return session.exec(select(func.count()).select_from(model)).one()


def test_migrate_seed_then_reset():
    migrate.main(["--seed"])
    assert _count(Profile) == 20
    assert _count(DriverSchedule) + _count(PassengerSchedule) == 40

    tables = migrate.main(["--reset"])
    assert "triprequest" in tables
    assert _count(Profile) == 0
