"""One-way warning channel to the user.

Used for problems the engine recovers from locally: a malformed
Authorization header, a missing certificate file, an unsupported scheme.
Sending a warning never raises and never blocks the request.
"""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger("http_runner")

Notifier = Callable[[str], None]


class WarningChannel:
    """Forwards warnings to an optional user callback, logging each one.

    Without a callback the log record is the only delivery, so it is emitted
    at WARNING; with one it is kept at DEBUG to avoid showing it twice.
    """

    def __init__(self, callback: Notifier | None = None) -> None:
        self._callback = callback

    def warn(self, message: str) -> None:
        if self._callback is None:
            logger.warning(message)
            return

        logger.debug("warning: %s", message)
        try:
            self._callback(message)
        except Exception:
            logger.exception("Warning callback failed for message: %s", message)
