# =============================================================================
# Logging Setup
# =============================================================================
# Every module logs through `logging.getLogger(__name__)`. This module only
# installs the root handler, once, for the API process and Celery workers.
# =============================================================================

from __future__ import annotations

import logging
import sys

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.handlers = [handler]

    # SQL echo and HTTP client chatter drown out pipeline progress logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
