"""
In-process cache for rendered public pages.
Purged after content updates and by the revalidate endpoint.
"""

import logging
import os
import threading
import time
from typing import Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class PageCache:
    """TTL cache of rendered HTML keyed by request path."""

    def __init__(self, ttl: Optional[float] = None):
        self.ttl = ttl if ttl is not None else float(os.getenv("PAGE_CACHE_TTL", "60"))
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(path: str) -> str:
        if not path:
            return "/"
        path = "/" + path.strip().lstrip("/")
        return path.rstrip("/") or "/"

    def get(self, path: str) -> Optional[str]:
        """Return cached HTML for a path, or None if missing or expired."""
        if self.ttl <= 0:
            return None

        key = self._normalize(path)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, html = entry
            if time.monotonic() - stored_at > self.ttl:
                del self._entries[key]
                return None
            return html

    def set(self, path: str, html: str) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._entries[self._normalize(path)] = (time.monotonic(), html)

    def purge_paths(self, paths: Iterable[str]) -> int:
        """
        Drop specific paths from the cache.

        Returns:
            Number of entries removed
        """
        removed = 0
        with self._lock:
            for path in paths:
                if self._entries.pop(self._normalize(path), None) is not None:
                    removed += 1
        logger.info(f"✓ Purged {removed} cached page(s)")
        return removed

    def purge_all(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"✓ Purged entire page cache ({count} entries)")

    def purge_post(self, slug: str) -> int:
        """Purge the home page and one article page."""
        return self.purge_paths(["/", f"/post/{slug}"])


page_cache = PageCache()
