"""Migrate the configured database and make sure the ops-mode row exists."""

from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from dailydraw.config import load_settings
from dailydraw.db.engine import get_sessionmaker, make_engine
from dailydraw.draw.ops_mode import read_ops_mode

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def bootstrap_ops_config() -> None:
    """Create the ops config singleton (MANUAL) and report the effective mode."""
    settings = load_settings()
    engine = make_engine()
    try:
        Session = get_sessionmaker(engine)
        with Session.begin() as session:
            view = read_ops_mode(session, settings)
            print(
                f"Ops mode: persisted={view.mode.value} "
                f"effective={view.effective_mode.value} "
                f"auto_allowed={view.env_auto_allowed}"
            )
        print("Tables:", ", ".join(sorted(inspect(engine).get_table_names())))
    finally:
        engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("revision", nargs="?", default="head")
    args = parser.parse_args()
    upgrade_db(args.revision)
    bootstrap_ops_config()


if __name__ == "__main__":
    main()
