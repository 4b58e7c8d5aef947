"""Create the UniRide tables outside of alembic.

    python migrate.py            create missing tables
    python migrate.py --reset    drop everything first
    python migrate.py --seed     also load the demo university data

Managed databases should use the revisions under alembic/versions instead.
"""
import argparse
import logging

import db

logger = logging.getLogger("migrate")


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    parser.add_argument("--seed", action="store_true", help="insert sample profiles and schedules")
    args = parser.parse_args(argv)

    if args.reset:
        logger.warning("dropping all tables on %s", db.DATABASE_URL)
        db.drop_db()
    tables = db.init_db()
    logger.info("tables ready: %s", ", ".join(tables))
    if args.seed:
        import sample_data
        sample_data.seed()
    return tables


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    main()
