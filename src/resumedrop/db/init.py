from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.engine import make_url

from resumedrop.config import Settings, get_settings
from resumedrop.db.base import Base
from resumedrop.db.session import engine
from resumedrop.db import models  # noqa: F401

logger = logging.getLogger(__name__)


def data_directories(settings: Settings) -> list[Path]:
    directories = [settings.data_dir, settings.upload_dir, settings.extraction_tmp_dir]
    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        directories.append(Path(url.database).parent)
    return directories


def ensure_data_directories() -> None:
    for path in data_directories(get_settings()):
        path.mkdir(parents=True, exist_ok=True)


def init_database() -> dict[str, list[str]]:
    """Create working directories and any missing tables. Safe to call repeatedly."""
    ensure_data_directories()
    Base.metadata.create_all(bind=engine)
    tables = sorted(Base.metadata.tables)
    logger.info("Database ready tables=%s", ",".join(tables))
    return {"tables": tables}
