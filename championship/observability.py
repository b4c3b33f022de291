"""Logging setup and Logfire cloud observability."""

import logging

import logfire

from championship import __version__
from championship.config import Settings

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings | None = None) -> None:
    """Configure root logging at the configured level (INFO without settings)."""
    level_name = settings.log_level.upper() if settings else "INFO"
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def initialize_logfire(settings: Settings, app=None, engine=None) -> None:
    """
    Initialize Logfire with instrumentation.

    Must be called ONCE at startup, before the first escrow operation runs.

    Instruments:
    - Python logging (bridged through LogfireLoggingHandler)
    - FastAPI routes, when an app is given
    - SQLAlchemy queries, when an engine is given

    Args:
        settings: Application settings containing the Logfire token
        app: Optional FastAPI application
        engine: Optional SQLAlchemy engine backing the store
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="championship",
            service_version=__version__,
            environment=settings.environment,
        )

        # Bridge Python logging to Logfire
        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        if app is not None:
            logfire.instrument_fastapi(app)

        if engine is not None:
            logfire.instrument_sqlalchemy(engine=engine)

        logger.info("✓ Logfire cloud tracking initialized")

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
        # Continue running - observability is optional
