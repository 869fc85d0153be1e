"""Bootstrap the moderation database using Alembic migrations."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    db_url = os.getenv("NETRIKA_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not db_url:
        raise SystemExit("NETRIKA_DATABASE_URL or DATABASE_URL must be set before running this script")

    root = Path(__file__).resolve().parents[1]
    cfg = Config(str(root / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)

    command.upgrade(cfg, "head")
    logger.info("Moderation database migrated to head")


if __name__ == "__main__":
    main()
