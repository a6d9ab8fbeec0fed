"""Caches for raw CI job logs and published commit records.

Caching strategy:
  - Key: (vendor, cache_id) -> <cache-root>/logs/<vendor>/<cache_id>.gz
  - Value: the raw job log text, gzip level 9
  - Trusted forever once written (CI logs are immutable after a job finishes)

The commit record mirror lives next to it under <cache-root>/commits/<sha>.json.gz
and holds exactly the bytes that are (or will be) published.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Tuple

from cache.cache_base import BaseGzipCache

logger = logging.getLogger(__name__)

LogKey = Tuple[str, str]


def log_cache_rel_path(key: LogKey) -> str:
    """Cache-relative path for a job log, e.g. `logs/travis/123.gz`."""
    vendor, cache_id = key
    return f"logs/{vendor}/{cache_id}.gz"


def commit_record_rel_path(sha: str) -> str:
    """Cache-relative (and store-relative) path of a commit record."""
    return f"commits/{sha}.json.gz"


class JobLogCache(BaseGzipCache):
    """Cache of raw job log text keyed by (vendor, job cache id).

    Stats (hit/miss/write) are tracked automatically by BaseGzipCache.
    """

    def get(self, key: LogKey) -> Optional[str]:
        rel = log_cache_rel_path(key)
        data = self.read_bytes(rel)
        if data is None:
            return None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            # Entries are always written as UTF-8; anything else is a foreign file.
            logger.warning(f"Ignoring undecodable cache entry {self.path_for(rel)}: {e}")
            self._bump("corrupt")
            return None

    def put(self, key: LogKey, text: str) -> Path:
        return self.write_bytes(log_cache_rel_path(key), text.encode("utf-8"))

    def get_or_fetch(self, key: LogKey, fetch_fn: Callable[[], str]) -> str:
        """Return the cached log for `key`, calling `fetch_fn` only on a miss.

        Args:
            key: (vendor, cache_id)
            fetch_fn: Zero-argument callable downloading the log text

        Returns:
            The log text, identical to what `fetch_fn` produced when it was cached.

        Raises:
            CacheWriteError: the fetched log could not be persisted.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        text = fetch_fn()
        self.put(key, text)
        logger.debug(f"Cached log {log_cache_rel_path(key)} ({len(text)} chars)")
        return text


class CommitRecordCache(BaseGzipCache):
    """Local mirror of published commit records (already gzip-compressed bytes)."""

    def get_raw(self, sha: str) -> Optional[bytes]:
        return self.read_raw(commit_record_rel_path(sha))

    def put_raw(self, sha: str, raw: bytes) -> Path:
        return self.write_raw(commit_record_rel_path(sha), raw)

    def has(self, sha: str) -> bool:
        return self.exists(commit_record_rel_path(sha))
