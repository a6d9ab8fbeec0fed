# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""CI timing tracker error types.

These are intentionally lightweight so provider adapters, the log cache and the
publisher can catch specific error classes without creating import cycles.

Scope of each error (what the pipeline does when it sees one):
- TransientFetchError: network/HTTP failure. Absorbed per job on tolerant
  providers, otherwise fails the commit. Never retried in-process.
- JobNameNotFoundError / MalformedTimingError: one job is unusable.
- CommitBuildError: one commit is unusable; the walk continues.
- CacheWriteError / ConfigurationError / PublishError: abort the run.
"""

from __future__ import annotations

from typing import Optional


class CITimingError(Exception):
    """Base class for all errors raised by the timing tracker."""


class TransientFetchError(CITimingError):
    def __init__(self, *, status_code: int, url: str, message: str):
        super().__init__(message)
        self.status_code = int(status_code)
        self.url = str(url or "")


class NotFoundError(CITimingError):
    pass


class JobNameNotFoundError(NotFoundError):
    def __init__(self, marker: str):
        super().__init__(f"failed to find `{marker}`")
        self.marker = marker


class MalformedTimingError(CITimingError):
    def __init__(self, *, line_no: int, line: str, reason: str):
        super().__init__(f"malformed timing on line {line_no}: {reason}: {line!r}")
        self.line_no = int(line_no)
        self.line = line


class CacheWriteError(CITimingError):
    def __init__(self, *, path: str, message: str):
        super().__init__(message)
        self.path = str(path)


class ConfigurationError(CITimingError):
    pass


class DuplicateBuildError(CITimingError):
    def __init__(self, *, commit_id: str, existing_build_id: str, new_build_id: str):
        super().__init__(
            f"commit {commit_id} already mapped to build {existing_build_id}; refusing build {new_build_id}"
        )
        self.commit_id = commit_id
        self.existing_build_id = existing_build_id
        self.new_build_id = new_build_id


class CommitBuildError(CITimingError):
    def __init__(self, *, commit_id: str, message: str, job_url: Optional[str] = None):
        super().__init__(message)
        self.commit_id = commit_id
        self.job_url = job_url


class PublishError(CITimingError):
    pass


def iter_causes(err: BaseException):
    """Yield the chain of `__cause__`/`__context__` exceptions below `err`."""
    seen = {id(err)}
    cur = err.__cause__ or err.__context__
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        yield cur
        cur = cur.__cause__ or cur.__context__
