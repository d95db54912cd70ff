"""Process entry point: logging setup and the storage lifecycle."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from draftsync.database import create_engine, ensure_database_dir, ensure_tables
from draftsync.services.ledger import Ledger
from draftsync.services.offline_storage_service import OfflineStorageService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from draftsync.config import Settings
    from draftsync.services.events import EventEmitter

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def open_storage(
    settings: Settings, *, emitter: EventEmitter | None = None
) -> AsyncGenerator[OfflineStorageService]:
    """Open the ledger database and yield a started storage service.

    The service is closed and the engine disposed on exit.
    """
    logger.info("Opening offline storage (debug=%s)", settings.debug)
    try:
        ensure_database_dir(settings.database_url)
        engine, session_factory = create_engine(settings)
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await ensure_tables(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        await engine.dispose()
        raise

    service = OfflineStorageService(Ledger(session_factory), settings, emitter=emitter)
    try:
        await service.start()
    except Exception as exc:
        logger.critical("Failed to start offline storage: %s.", exc)
        await engine.dispose()
        raise

    try:
        yield service
    finally:
        try:
            await service.close()
        except Exception as exc:
            logger.error("Error stopping offline storage: %s", exc, exc_info=True)
        await engine.dispose()
        logger.info("Offline storage closed")
