#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Base class for gzip-compressed, file-per-entry disk caches.

Shared by:
- cache_job_log.py  (raw CI job logs:      <root>/logs/<vendor>/<id>.gz)
- cache_job_log.py  (published records:    <root>/commits/<sha>.json.gz)

Entries are immutable once written: there is no TTL and no re-validation.
Writes go to a temp file in the destination directory followed by
`os.replace`, so a crashed or failed write never leaves a partial entry
that a later read would trust.
"""

from __future__ import annotations

import gzip
import logging
import os
import tempfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Optional

from ci_providers.exceptions import CacheWriteError

logger = logging.getLogger(__name__)


@dataclass
class BaseCacheStats:
    """Basic cache statistics tracked automatically by BaseGzipCache."""
    hit: int = 0
    miss: int = 0
    write: int = 0
    corrupt: int = 0


class BaseGzipCache:
    """Thread-safe gzip blob cache rooted at one directory.

    Provides:
    - Path derivation (`path_for`) relative to the cache root
    - Lossless read of a compressed entry (`read_bytes`)
    - Atomic compressed write (`write_bytes`, maximum compression)
    - Hit/miss/write stats guarded by a Lock (workers share one instance)

    Distinct keys map to distinct files, so concurrent writers never contend
    on the same path and no file locking is needed.
    """

    COMPRESS_LEVEL = 9

    def __init__(self, *, root: Path):
        self._mu = Lock()
        self.root = Path(root)
        self.stats = BaseCacheStats()

    def path_for(self, rel: str) -> Path:
        return self.root / rel

    def _bump(self, field_name: str) -> None:
        with self._mu:
            setattr(self.stats, field_name, getattr(self.stats, field_name) + 1)

    def exists(self, rel: str) -> bool:
        return self.path_for(rel).is_file()

    def read_bytes(self, rel: str) -> Optional[bytes]:
        """Return the decompressed entry, or None if it is missing or unreadable.

        Unreadable entries (truncated gzip, foreign files) count as `corrupt`
        and are reported as a miss so the caller refetches and overwrites them.
        """
        path = self.path_for(rel)
        if not path.is_file():
            self._bump("miss")
            return None
        try:
            data = gzip.decompress(path.read_bytes())
        except (OSError, EOFError, zlib.error) as e:
            logger.warning(f"Ignoring unreadable cache entry {path}: {e}")
            self._bump("corrupt")
            self._bump("miss")
            return None
        self._bump("hit")
        return data

    def read_raw(self, rel: str) -> Optional[bytes]:
        """Return the stored (still compressed) bytes of an entry, or None."""
        path = self.path_for(rel)
        if not path.is_file():
            return None
        return path.read_bytes()

    def write_bytes(self, rel: str, data: bytes) -> Path:
        """Compress `data` and store it at `rel` atomically."""
        return self.write_raw(rel, gzip.compress(data, compresslevel=self.COMPRESS_LEVEL, mtime=0))

    def write_raw(self, rel: str, raw: bytes) -> Path:
        """Store already-compressed bytes at `rel` atomically (tmp file + rename)."""
        path = self.path_for(rel)
        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
            with os.fdopen(fd, "wb") as fh:
                fh.write(raw)
            os.replace(tmp_name, str(path))
            tmp_name = None
        except OSError as e:
            raise CacheWriteError(path=str(path), message=f"failed to write cache entry {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        self._bump("write")
        return path

    def get_stats(self) -> dict:
        with self._mu:
            return {
                "hit": self.stats.hit,
                "miss": self.stats.miss,
                "write": self.stats.write,
                "corrupt": self.stats.corrupt,
            }
