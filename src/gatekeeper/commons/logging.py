"""
Centralized logging.

Stdlib logging, configured once from `LOG_LEVEL`; every module imports the
same `gatekeeper` logger. Auth events are logged as `EVENT_NAME: details`
and never include tokens or passwords.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from gatekeeper.core.settings import settings


@lru_cache
def initialize_logger() -> logging.Logger:
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=logging.WARNING,
    )
    log = logging.getLogger("gatekeeper")
    log.setLevel(settings.LOG_LEVEL.upper())
    return log


logger = initialize_logger()
