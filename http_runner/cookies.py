"""File-backed cookie jar shared by every request that opts into persistence."""

from __future__ import annotations

import logging
import os
from http.cookiejar import LoadError, LWPCookieJar
from pathlib import Path
from threading import Lock

logger = logging.getLogger(__name__)


class CookieStore:
    """Owns one persistent cookie jar bound to a file.

    The jar object is handed to httpx by reference, so cookies set by one
    response are visible to the next request immediately. ``save()`` writes
    the jar to disk; ``clear()`` deletes the file and swaps in an empty jar.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = Lock()
        self._jar = self._open()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def jar(self) -> LWPCookieJar:
        return self._jar

    def save(self) -> None:
        """Write the current jar to disk atomically."""
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(f"{self._path.name}.{os.getpid()}.tmp")
            self._jar.save(str(tmp_path), ignore_discard=True, ignore_expires=True)
            os.replace(tmp_path, self._path)

    def clear(self) -> None:
        """Delete the backing file and start over with an empty jar."""
        with self._lock:
            self._path.unlink(missing_ok=True)
            self._jar = LWPCookieJar(str(self._path))
        logger.debug("Cleared cookie jar at %s", self._path)

    def _open(self) -> LWPCookieJar:
        jar = LWPCookieJar(str(self._path))
        if not self._path.exists():
            return jar
        try:
            jar.load(ignore_discard=True, ignore_expires=True)
        except (LoadError, OSError) as e:
            logger.warning("Ignoring unreadable cookie file %s: %s", self._path, e)
            return LWPCookieJar(str(self._path))
        return jar
