# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Azure Pipelines build directory (REST API 5.0).

Resources:
  GET /{org}/{project}/_apis/build/builds?branchName=refs/heads/{branch}&$top={n}[&definitions={id}]
  GET /{org}/{project}/_apis/build/builds/{build_id}/timeline
  GET /{org}/{project}/_apis/build/builds/{build_id}/logs/{log_id}

Example builds response (truncated):
  {"count": 2, "value": [{"id": 4567, "buildNumber": "20190601.3", "sourceVersion": "a1b2c3..."}]}

Example timeline response (truncated):
  {"records": [
     {"id": "0f1e...", "type": "Job", "name": "x86_64-gnu", "log": {"id": 12, "url": "..."}},
     {"id": "9a8b...", "type": "Task", "name": "Checkout", "log": {"id": 13, "url": "..."}}
  ]}

Pagination: none. Only the first page of history is ever loaded; asking for
more once the build map is populated is a configuration error (the API offers
no documented way to resume). Size `page_size` to cover the history you need.

Logs on this vendor are flaky (missing or not yet uploaded), so job-level
failures drop the job instead of failing the commit.
"""

from __future__ import annotations

import base64
import logging
import urllib.parse
from typing import Dict, List, Tuple

from ..exceptions import ConfigurationError
from .base_provider import BuildHandle, JobRef, ProviderDirectory, json_id, json_records

logger = logging.getLogger(__name__)

API_VERSION = "5.0"


class AzureDirectory(ProviderDirectory):
    name = "azure"
    tolerate_job_failures = True

    def api_headers(self) -> Dict[str, str]:
        headers = {"Accept": f"application/json;api-version={API_VERSION}"}
        if self.settings.token:
            pat = base64.b64encode(f":{self.settings.token}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {pat}"
        return headers

    def log_headers(self) -> Dict[str, str]:
        headers = self.api_headers()
        headers["Accept"] = f"text/plain;api-version={API_VERSION}"
        return headers

    @property
    def _project_api(self) -> str:
        return f"{self.settings.api_base.rstrip('/')}/{self.settings.repo}/_apis"

    @property
    def _project_web(self) -> str:
        return f"{self.settings.api_base.rstrip('/')}/{self.settings.repo}"

    def load_more(self) -> int:
        if len(self.builds) > 0:
            raise ConfigurationError(
                f"[{self.name}] cannot load builds past the first page ({len(self.builds)} builds loaded); "
                f"increase providers.azure.page_size"
            )
        return super().load_more()

    def _fetch_page(self) -> Tuple[List[BuildHandle], bool]:
        params = {"branchName": f"refs/heads/{self.settings.branch}", "$top": int(self.settings.page_size)}
        if self.settings.definition_id is not None:
            params["definitions"] = int(self.settings.definition_id)
        data = self._get_json(f"{self._project_api}/build/builds?{urllib.parse.urlencode(params)}", label="builds")
        raw_builds = json_records(data.get("value")) if isinstance(data, dict) else []

        builds: List[BuildHandle] = []
        for b in raw_builds:
            sha = json_id(b, "sourceVersion")
            build_id = json_id(b, "id")
            if not sha:
                continue
            if build_id is None:
                logger.warning(f"[{self.name}] ignoring build without an id for {sha}")
                continue
            builds.append(
                BuildHandle(provider=self.name, commit_id=sha, build_id=build_id, extra={"number": b.get("buildNumber")})
            )
        # Single page only: there is never a next page to ask for.
        return builds, False

    def list_jobs(self, build: BuildHandle) -> List[JobRef]:
        data = self._get_json(f"{self._project_api}/build/builds/{build.build_id}/timeline", label="timeline")
        records = json_records(data.get("records")) if isinstance(data, dict) else []
        jobs: List[JobRef] = []
        for r in records:
            if r.get("type") != "Job" or not isinstance(r.get("log"), dict):
                continue
            log_id = json_id(r["log"], "id")
            record_id = json_id(r, "id") or ""
            if log_id is None:
                logger.warning(f"[{self.name}] ignoring timeline job {r.get('name')!r} without a log id in build {build.build_id}")
                continue
            query = urllib.parse.urlencode({"buildId": build.build_id, "view": "logs", "j": record_id})
            jobs.append(
                JobRef(
                    provider=self.name,
                    build_id=build.build_id,
                    job_id=record_id,
                    cache_id=f"{build.build_id}-{log_id}",
                    url=f"{self._project_web}/_build/results?{query}",
                    log_url=f"{self._project_api}/build/builds/{build.build_id}/logs/{log_id}",
                )
            )
        return jobs
