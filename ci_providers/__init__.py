# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""CI provider HTTP client and build directories for the CI timing tracker.

Layout:
- `ci_providers/` defines the shared HTTP client + REST stats helpers
- `ci_providers/api/*_builds.py` contains one build directory per CI vendor
  (pagination, job listing, log download through the log cache)
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from .exceptions import TransientFetchError

_logger = logging.getLogger(__name__)

USER_AGENT = "rustc-ci-timing-tracker"


class CIHttpClient:
    """Read-only HTTP client shared by all provider adapters.

    Every request carries the identifying User-Agent. Failures surface as
    TransientFetchError; nothing is retried here (a re-run of the whole
    pipeline is the retry mechanism).
    """

    def __init__(self, *, user_agent: str = USER_AGENT, timeout: int = 60, session: Optional[requests.Session] = None):
        self.user_agent = user_agent
        self.timeout = int(timeout)
        self.session = session or requests.Session()

        self._mu = threading.Lock()
        self._rest_calls_total: int = 0
        self._rest_calls_by_label: Dict[str, int] = {}
        self._rest_success_total: int = 0
        self._rest_errors_total: int = 0
        self._rest_errors_by_status: Dict[int, int] = {}
        self._rest_time_total_s: float = 0.0
        self._rest_time_by_label_s: Dict[str, float] = {}

    def _headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        out = {"User-Agent": self.user_agent}
        out.update(headers or {})
        return out

    def _rest_record(self, *, label: str, status_code: Optional[int], dt_s: float) -> None:
        """Record one REST call in the per-run stats."""
        lbl = str(label or "").strip() or "unknown"
        dt = max(0.0, float(dt_s or 0.0))
        with self._mu:
            self._rest_calls_total += 1
            self._rest_calls_by_label[lbl] = self._rest_calls_by_label.get(lbl, 0) + 1
            self._rest_time_total_s += dt
            self._rest_time_by_label_s[lbl] = self._rest_time_by_label_s.get(lbl, 0.0) + dt
            if status_code is None:
                self._rest_errors_total += 1
            elif 200 <= status_code < 300:
                self._rest_success_total += 1
            elif status_code >= 400:
                self._rest_errors_total += 1
                self._rest_errors_by_status[status_code] = self._rest_errors_by_status.get(status_code, 0) + 1

    def get(self, url: str, *, headers: Optional[Dict[str, str]] = None, label: Optional[str] = None) -> bytes:
        """GET `url` and return the response body, or raise TransientFetchError."""
        t0 = time.monotonic()
        status_code: Optional[int] = None
        _logger.debug(f"GET: {url}")
        try:
            response = self.session.get(url, headers=self._headers(headers), timeout=self.timeout)
            status_code = int(response.status_code)
            if status_code >= 400:
                raise TransientFetchError(
                    status_code=status_code,
                    url=url,
                    message=f"failed to fetch `{url}`: HTTP {status_code}",
                )
            return response.content
        except requests.exceptions.RequestException as e:
            raise TransientFetchError(
                status_code=int(status_code or 0), url=url, message=f"failed to fetch `{url}`: {e}"
            ) from e
        finally:
            self._rest_record(label=label or "get", status_code=status_code, dt_s=time.monotonic() - t0)

    def get_text(self, url: str, *, headers: Optional[Dict[str, str]] = None, label: Optional[str] = None) -> str:
        return self.get(url, headers=headers, label=label).decode("utf-8", errors="replace")

    def get_json(self, url: str, *, headers: Optional[Dict[str, str]] = None, label: Optional[str] = None) -> Any:
        body = self.get(url, headers=headers, label=label)
        try:
            return json.loads(body.decode("utf-8", errors="replace"))
        except ValueError as e:
            raise TransientFetchError(status_code=200, url=url, message=f"invalid JSON from `{url}`: {e}") from e

    def head(self, url: str, *, headers: Optional[Dict[str, str]] = None, label: Optional[str] = None) -> int:
        """HEAD `url` and return the status code (no body is fetched)."""
        t0 = time.monotonic()
        status_code: Optional[int] = None
        _logger.debug(f"HEAD: {url}")
        try:
            response = self.session.head(url, headers=self._headers(headers), timeout=self.timeout, allow_redirects=True)
            status_code = int(response.status_code)
            return status_code
        except requests.exceptions.RequestException as e:
            raise TransientFetchError(status_code=0, url=url, message=f"failed to probe `{url}`: {e}") from e
        finally:
            self._rest_record(label=label or "head", status_code=status_code, dt_s=time.monotonic() - t0)

    def get_rest_call_stats(self) -> Dict[str, Any]:
        """Return REST call stats for the current process/run."""
        with self._mu:
            return {
                "total": int(self._rest_calls_total),
                "success_total": int(self._rest_success_total),
                "error_total": int(self._rest_errors_total),
                "time_total_s": float(self._rest_time_total_s),
                "by_label": dict(sorted(self._rest_calls_by_label.items(), key=lambda kv: (-kv[1], kv[0]))),
                "time_by_label_s": dict(sorted(self._rest_time_by_label_s.items(), key=lambda kv: (-kv[1], kv[0]))),
                "errors_by_status": dict(sorted(self._rest_errors_by_status.items(), key=lambda kv: (-kv[1], kv[0]))),
            }


__all__ = ["CIHttpClient", "USER_AGENT"]
