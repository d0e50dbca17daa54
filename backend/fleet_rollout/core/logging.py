from __future__ import annotations

import logging
import sys

from fleet_rollout.core.config import get_settings

_LOG_FORMAT = "%(asctime)s level=%(levelname)s logger=%(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    global _configured
    if _configured:
        return

    resolved = (level or get_settings().log_level or "INFO").upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved)

    # SQL statements are only logged when the engine echo flag is set
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
