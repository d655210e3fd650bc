"""On-disk feed cache and request log."""
import hashlib
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".ics"


class CacheStore:
    """Stores the raw bytes of each feed, keyed by a hash of its URL.

    The key is always the URL as configured (webcal:// included), so a
    cache survives changes to how the URL is requested. The file mtime
    doubles as the time of the last successful fetch.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path(self, url: str) -> Path:
        """Get path to the cache file for a URL."""
        digest = hashlib.md5(url.encode('utf-8')).hexdigest()
        return self.cache_dir / f"{digest}{CACHE_SUFFIX}"

    def last_modified(self, url: str) -> Optional[datetime]:
        """Time the cache file was last written, or None if there is none."""
        try:
            timestamp = self.path(url).stat().st_mtime
        except OSError:
            return None
        return datetime.fromtimestamp(timestamp)

    def read(self, url: str) -> Optional[bytes]:
        """Read cached content. Returns None when the cache is unavailable."""
        path = self.path(url)
        if not path.exists():
            return None
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            logger.warning(f"Failed to read cache {path}: {e}")
            return None

    def write(self, url: str, content: bytes) -> bool:
        """Atomically replace cached content. Returns False on failure."""
        path = self.path(url)
        tmp_path = path.with_suffix(CACHE_SUFFIX + ".tmp")
        with self._lock:
            try:
                with open(tmp_path, 'wb') as f:
                    f.write(content)
                os.replace(tmp_path, path)
            except OSError as e:
                logger.warning(f"Failed to write cache {path}: {e}")
                return False
        return True


class RequestLog:
    """Append-only log of feed requests, kept for diagnostics only."""

    def __init__(self, log_path: Path):
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger(f"{__name__}.requests.{log_path}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        if not self._logger.handlers:
            handler = logging.FileHandler(log_path, encoding='utf-8', delay=True)
            handler.setFormatter(logging.Formatter(
                "[%(asctime)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            ))
            self._logger.addHandler(handler)

    def record(self, trigger: str, url: str, status: str, error: Optional[str] = None) -> None:
        self._logger.info(
            f"Trigger: {trigger} | URL: {url} | Status: {status} | Error: {error or 'None'}"
        )

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
