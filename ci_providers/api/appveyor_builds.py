# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""AppVeyor build directory.

Resources:
  GET /api/projects/{account}/{project}/history?branch={branch}&recordsNumber={n}[&startBuildId={id}]
  GET /api/projects/{account}/{project}/build/{version}
  GET /api/buildjobs/{job_id}/log

Example history response (truncated):
  {
    "builds": [
      {"buildId": 25000001, "buildNumber": 1234, "version": "1.0.1234",
       "commitId": "a1b2c3...", "branch": "auto"}
    ]
  }

Pagination: continuation id. The next page starts at the id of the last build
of the previous page; an empty page means the history is exhausted.
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Dict, List, Optional, Tuple

from .base_provider import BuildHandle, JobRef, ProviderDirectory, json_id, json_records

logger = logging.getLogger(__name__)


class AppVeyorDirectory(ProviderDirectory):
    name = "appveyor"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.start_build_id: Optional[str] = None

    def api_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        return headers

    def log_headers(self) -> Dict[str, str]:
        headers = self.api_headers()
        headers["Accept"] = "text/plain"
        return headers

    @property
    def _api(self) -> str:
        return self.settings.api_base.rstrip("/")

    @property
    def _project_path(self) -> str:
        return f"{self._api}/api/projects/{self.settings.repo}"

    def _fetch_page(self) -> Tuple[List[BuildHandle], bool]:
        params = {"branch": self.settings.branch, "recordsNumber": int(self.settings.page_size)}
        if self.start_build_id is not None:
            params["startBuildId"] = self.start_build_id
        data = self._get_json(f"{self._project_path}/history?{urllib.parse.urlencode(params)}", label="history")
        raw_builds = json_records(data.get("builds")) if isinstance(data, dict) else []
        build_ids = [json_id(b, "buildId") for b in raw_builds]
        known_ids = [i for i in build_ids if i is not None]
        if not known_ids:
            return [], False
        last_build_id = known_ids[-1]
        # A cursor that does not move would page forever.
        has_more = last_build_id != self.start_build_id
        self.start_build_id = last_build_id

        builds: List[BuildHandle] = []
        for b, build_id in zip(raw_builds, build_ids):
            sha = json_id(b, "commitId")
            if not sha:
                continue
            if build_id is None:
                logger.warning(f"[{self.name}] ignoring build without an id for {sha}")
                continue
            builds.append(
                BuildHandle(
                    provider=self.name,
                    commit_id=sha,
                    build_id=build_id,
                    extra={"version": str(b.get("version") or ""), "number": b.get("buildNumber")},
                )
            )
        return builds, has_more

    def list_jobs(self, build: BuildHandle) -> List[JobRef]:
        version = urllib.parse.quote(str(build.extra.get("version") or ""), safe="")
        data = self._get_json(f"{self._project_path}/build/{version}", label="build")
        detail = data.get("build") if isinstance(data, dict) else None
        raw_jobs = json_records(detail.get("jobs")) if isinstance(detail, dict) else []
        jobs: List[JobRef] = []
        for j in raw_jobs:
            job_id = json_id(j, "jobId")
            if job_id is None:
                logger.warning(f"[{self.name}] ignoring job without an id in build {build.build_id}")
                continue
            jobs.append(
                JobRef(
                    provider=self.name,
                    build_id=build.build_id,
                    job_id=job_id,
                    cache_id=f"{build.build_id}-{job_id}",
                    url=f"https://ci.appveyor.com/project/{self.settings.repo}/builds/{build.build_id}/job/{job_id}",
                    log_url=f"{self._api}/api/buildjobs/{urllib.parse.quote(job_id, safe='')}/log",
                )
            )
        return jobs
