#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Common shared record types that must be used by both:
- `publish_commits.py` (ingestion / publish)
- `html_pages/*` site data builders

This module MUST NOT import `common.py` or any html_pages modules to avoid cycles.

Wire format of a published commit record (keys sorted, compact separators):

  {"jobs": {"<job name>": {"cpu_microarch": "skylake" | null,
                           "path": "logs/travis/123.gz",
                           "timings": {"<step>": {"dur": 12.5, "parts": {"<crate>": 3.0}}},
                           "url": "https://travis-ci.com/rust-lang/rust/jobs/123"}}}
"""

from __future__ import annotations

import gzip
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class GitCommit:
    """One bot-authored commit from version-control history."""

    sha: str
    date: str  # strict ISO-8601 author date


@dataclass
class Timing:
    """Directly reported duration of one phase plus attributed sub-phase durations."""

    duration: float = 0.0
    parts: Dict[str, float] = field(default_factory=dict)

    def add(self, duration: float, parts: Optional[Dict[str, float]] = None) -> None:
        self.duration += float(duration)
        for name, value in (parts or {}).items():
            self.parts[name] = self.parts.get(name, 0.0) + float(value)

    def to_dict(self) -> Dict[str, Any]:
        return {"dur": self.duration, "parts": dict(self.parts)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Timing":
        parts = d.get("parts") or {}
        return cls(duration=float(d.get("dur", 0.0) or 0.0), parts={str(k): float(v) for k, v in parts.items()})


@dataclass
class Job:
    url: str
    path: str  # cache-relative raw log path
    cpu_microarch: Optional[str] = None
    timings: Dict[str, Timing] = field(default_factory=dict)

    def total_duration(self, *, exclude: Optional[str] = None) -> float:
        return sum(t.duration for (name, t) in self.timings.items() if name != exclude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "path": self.path,
            "cpu_microarch": self.cpu_microarch,
            "timings": {name: t.to_dict() for name, t in self.timings.items()},
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Job":
        return cls(
            url=str(d.get("url") or ""),
            path=str(d.get("path") or ""),
            cpu_microarch=d.get("cpu_microarch"),
            timings={str(k): Timing.from_dict(v) for k, v in (d.get("timings") or {}).items()},
        )


@dataclass
class Commit:
    """Published per-commit record: canonical job name -> Job."""

    jobs: Dict[str, Job] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"jobs": {name: job.to_dict() for name, job in self.jobs.items()}}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Commit":
        return cls(jobs={str(k): Job.from_dict(v) for k, v in (d.get("jobs") or {}).items()})

    def to_json(self) -> str:
        # sort_keys gives the canonical lexicographic job ordering
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), allow_nan=False)

    @classmethod
    def from_json(cls, text: str) -> "Commit":
        return cls.from_dict(json.loads(text))

    def to_gzip_bytes(self) -> bytes:
        # mtime=0 keeps the gzip header stable so identical records give identical bytes
        return gzip.compress(self.to_json().encode("utf-8"), compresslevel=9, mtime=0)

    @classmethod
    def from_gzip_bytes(cls, raw: bytes) -> "Commit":
        return cls.from_json(gzip.decompress(raw).decode("utf-8"))
