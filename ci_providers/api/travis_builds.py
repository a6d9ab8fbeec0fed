# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Travis CI build directory (API v3).

Resources:
  GET /repo/{slug}/builds?branch.name={branch}&sort_by=started_at:desc&limit={n}&offset={offset}
  GET /build/{build_id}?include=build.jobs
  GET /v3/job/{job_id}/log.txt

Example builds response (truncated):
  {
    "builds": [
      {"id": 112233, "number": "9876", "started_at": "2019-06-01T10:00:00Z",
       "commit": {"id": 445566, "sha": "a1b2c3..."}}
    ]
  }

Pagination: offset counter advanced by the number of builds returned; an empty
page means the history is exhausted.
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Dict, List, Tuple

from .base_provider import BuildHandle, JobRef, ProviderDirectory, json_id, json_records

logger = logging.getLogger(__name__)

API_VERSION = "3"


class TravisDirectory(ProviderDirectory):
    name = "travis"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.offset = 0

    def api_headers(self) -> Dict[str, str]:
        headers = {"Travis-API-Version": API_VERSION}
        if self.settings.token:
            headers["Authorization"] = f"token {self.settings.token}"
        return headers

    @property
    def _api(self) -> str:
        return self.settings.api_base.rstrip("/")

    def _fetch_page(self) -> Tuple[List[BuildHandle], bool]:
        slug = urllib.parse.quote(self.settings.repo, safe="")
        query = urllib.parse.urlencode(
            {
                "branch.name": self.settings.branch,
                "sort_by": "started_at:desc",
                "limit": int(self.settings.page_size),
                "offset": self.offset,
            }
        )
        data = self._get_json(f"{self._api}/repo/{slug}/builds?{query}", label="builds")
        raw_builds = json_records(data.get("builds")) if isinstance(data, dict) else []
        self.offset += len(raw_builds)

        builds: List[BuildHandle] = []
        for b in raw_builds:
            commit = b.get("commit")
            sha = json_id(commit, "sha") if isinstance(commit, dict) else None
            build_id = json_id(b, "id")
            if not sha:
                continue
            if build_id is None:
                logger.warning(f"[{self.name}] ignoring build without an id for {sha}")
                continue
            builds.append(
                BuildHandle(provider=self.name, commit_id=sha, build_id=build_id, extra={"number": b.get("number")})
            )
        return builds, bool(raw_builds)

    def list_jobs(self, build: BuildHandle) -> List[JobRef]:
        data = self._get_json(f"{self._api}/build/{build.build_id}?include=build.jobs", label="build")
        jobs: List[JobRef] = []
        for j in json_records(data.get("jobs")) if isinstance(data, dict) else []:
            job_id = json_id(j, "id")
            if job_id is None:
                logger.warning(f"[{self.name}] ignoring job without an id in build {build.build_id}")
                continue
            jobs.append(
                JobRef(
                    provider=self.name,
                    build_id=build.build_id,
                    job_id=job_id,
                    cache_id=job_id,
                    url=f"https://travis-ci.com/{self.settings.repo}/jobs/{job_id}",
                    log_url=f"{self._api}/v3/job/{job_id}/log.txt",
                )
            )
        return jobs
