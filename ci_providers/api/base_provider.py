# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Base class for CI provider build directories.

A build directory maps a commit sha to that vendor's build, lazily paginating
the vendor's build history until the commit shows up or the history runs out.
Each vendor keeps its own cursor (offset, continuation id, or single page).

Shared flow (`lookup`):
    map hit -> return
    else: load_more() until found or exhausted -> None (commit not built there)

Per-run state (the build map and the cursor) is owned by the instance; every run
constructs fresh directories.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, TYPE_CHECKING

from cache.cache_job_log import JobLogCache, log_cache_rel_path
from ..exceptions import DuplicateBuildError

if TYPE_CHECKING:  # pragma: no cover
    from common import ProviderSettings
    from .. import CIHttpClient

logger = logging.getLogger(__name__)


def json_records(value: Any) -> List[Dict[str, Any]]:
    """Objects of a vendor JSON array; anything that is not an object is ignored."""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def json_id(record: Dict[str, Any], key: str) -> Optional[str]:
    """`record[key]` as a non-empty string, or None when the vendor left it out."""
    value = record.get(key)
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value).strip() or None


@dataclass(frozen=True)
class BuildHandle:
    provider: str
    commit_id: str
    build_id: str
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class JobRef:
    provider: str
    build_id: str
    job_id: str
    cache_id: str  # file stem under logs/<provider>/
    url: str  # human-facing job page
    log_url: str  # raw log endpoint

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.provider, self.cache_id)

    @property
    def cache_path(self) -> str:
        return log_cache_rel_path(self.cache_key)


class BuildMap:
    """commit sha -> BuildHandle; grows monotonically, entries are never replaced."""

    def __init__(self) -> None:
        self._builds: Dict[str, BuildHandle] = {}

    def insert(self, build: BuildHandle) -> None:
        existing = self._builds.get(build.commit_id)
        if existing is not None:
            raise DuplicateBuildError(
                commit_id=build.commit_id,
                existing_build_id=existing.build_id,
                new_build_id=build.build_id,
            )
        self._builds[build.commit_id] = build

    def get(self, commit_id: str) -> Optional[BuildHandle]:
        return self._builds.get(commit_id)

    def __contains__(self, commit_id: object) -> bool:
        return commit_id in self._builds

    def __len__(self) -> int:
        return len(self._builds)

    def __iter__(self) -> Iterator[str]:
        return iter(self._builds)


class ProviderDirectory(ABC):
    """Shared lookup/pagination flow for one CI vendor.

    Subclasses implement `_fetch_page` (one page of history, advancing the
    vendor cursor), `list_jobs` and `log_headers`.
    """

    name: str = ""
    # Job-level failures (missing log, unidentifiable job) drop just that job
    # when True; otherwise they fail the whole commit.
    tolerate_job_failures: bool = False

    def __init__(self, client: "CIHttpClient", settings: "ProviderSettings", log_cache: JobLogCache):
        self.client = client
        self.settings = settings
        self.log_cache = log_cache
        self.builds = BuildMap()
        self.pages_loaded = 0
        self.duplicates_rejected = 0
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @abstractmethod
    def _fetch_page(self) -> Tuple[List[BuildHandle], bool]:
        """Fetch the next page of build history.

        Returns:
            (builds on this page, whether more pages may follow)
        """
        ...

    @abstractmethod
    def list_jobs(self, build: BuildHandle) -> List[JobRef]:
        ...

    @abstractmethod
    def api_headers(self) -> Dict[str, str]:
        ...

    def log_headers(self) -> Dict[str, str]:
        return self.api_headers()

    def _get_json(self, url: str, *, label: str) -> Any:
        return self.client.get_json(url, headers=self.api_headers(), label=f"{self.name}.{label}")

    def load_more(self) -> int:
        """Load one more page of history into the build map.

        Returns:
            Number of builds added to the map.
        """
        if self._exhausted:
            return 0
        builds, has_more = self._fetch_page()
        self.pages_loaded += 1
        added = 0
        for build in builds:
            try:
                self.builds.insert(build)
                added += 1
            except DuplicateBuildError as e:
                # Retried builds of one commit: the first (newest) one stays authoritative.
                self.duplicates_rejected += 1
                logger.debug(f"[{self.name}] {e}")
        max_pages = int(self.settings.max_pages or 0)
        if not has_more or (max_pages and self.pages_loaded >= max_pages):
            self._exhausted = True
        logger.debug(
            f"[{self.name}] page {self.pages_loaded}: {len(builds)} builds, {added} new, "
            f"map={len(self.builds)}, exhausted={self._exhausted}"
        )
        return added

    def lookup(self, commit_id: str) -> Optional[BuildHandle]:
        """Return this vendor's build for `commit_id`, or None if it was never built here."""
        while True:
            build = self.builds.get(commit_id)
            if build is not None:
                return build
            if self._exhausted:
                logger.info(f"[{self.name}] no build found for {commit_id} after {self.pages_loaded} pages")
                return None
            self.load_more()

    def fetch_job_log(self, job: JobRef) -> str:
        """Return the raw log of `job`, downloading it only if it is not cached."""
        return self.log_cache.get_or_fetch(
            job.cache_key,
            lambda: self.client.get_text(job.log_url, headers=self.log_headers(), label=f"{self.name}.log"),
        )
