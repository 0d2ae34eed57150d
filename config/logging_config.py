import logging
from typing import Optional

from config.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once for the API process.

    ``level`` falls back to ``settings.LOG_LEVEL``. Uvicorn's own loggers are
    left alone so access logs keep their format.
    """
    resolved = (level or settings.LOG_LEVEL).upper()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        handlers=[handler],
        force=True,
    )
    logging.captureWarnings(True)
    logging.getLogger(__name__).info("Logging configured at %s", resolved)
