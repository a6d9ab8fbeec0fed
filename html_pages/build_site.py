#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Build the dashboard data files from published commit records.

Outputs (into <out-dir>):
  overall.json     {"commits": [{"sha", "date"}], "series": [{"name", "data": [seconds]}]}
                   both arrays oldest -> newest; one series per job name, slowest
                   job first, 0.0 where the job did not run on that commit
  <sha>.json       the commit record itself, for the per-commit page

Records are read from <cache-dir>/commits/<sha>.json.gz and downloaded from the
bucket when missing locally. Commits without a published record are skipped.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from cache.cache_job_log import CommitRecordCache, commit_record_rel_path
from ci_providers import CIHttpClient
from ci_providers.exceptions import CITimingError, PublishError, TransientFetchError, iter_causes
from common import (
    DEFAULT_DIAGNOSTIC_PHASE,
    DEFAULT_SITE_MAX_COMMITS,
    CommitHistorySource,
    load_config,
    setup_logging,
)
from common_types import Commit, GitCommit

logger = logging.getLogger(__name__)


@dataclass
class JobStats:
    count: int = 0
    total: float = 0.0

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


class SiteAggregator:
    """Cross-commit time series over a window of published commit records.

    The diagnostic phase (`Distcheck` by default) is left out of every job
    total, both for ranking and for the plotted series.
    """

    def __init__(self, *, diagnostic_phase: Optional[str] = DEFAULT_DIAGNOSTIC_PHASE):
        self.diagnostic_phase = diagnostic_phase

    def job_stats(self, records: Sequence[Tuple[GitCommit, Commit]]) -> Dict[str, JobStats]:
        stats: Dict[str, JobStats] = {}
        for _git, commit in records:
            for name, job in commit.jobs.items():
                st = stats.setdefault(name, JobStats())
                st.count += 1
                st.total += job.total_duration(exclude=self.diagnostic_phase)
        return stats

    def slowest_jobs(self, records: Sequence[Tuple[GitCommit, Commit]]) -> List[str]:
        stats = self.job_stats(records)
        return sorted(stats, key=lambda name: (-stats[name].mean, name))

    def overall(self, records: Sequence[Tuple[GitCommit, Commit]]) -> dict:
        """Build the overall.json document.

        Args:
            records: (git commit, record) pairs, newest first as history yields them
        """
        chronological = list(reversed(records))
        series = []
        for name in self.slowest_jobs(records):
            data = []
            for _git, commit in chronological:
                job = commit.jobs.get(name)
                data.append(job.total_duration(exclude=self.diagnostic_phase) if job is not None else 0.0)
            series.append({"name": name, "data": data})
        return {
            "commits": [{"sha": git.sha, "date": git.date} for git, _commit in chronological],
            "series": series,
        }

    def write_overall(self, records: Sequence[Tuple[GitCommit, Commit]], out_dir: Path) -> Path:
        dst = Path(out_dir) / "overall.json"
        dst.write_text(json.dumps(self.overall(records), separators=(",", ":")))
        return dst

    @staticmethod
    def write_each_commit(records: Sequence[Tuple[GitCommit, Commit]], out_dir: Path) -> List[Path]:
        written = []
        for git, commit in records:
            dst = Path(out_dir) / f"{git.sha}.json"
            dst.write_text(commit.to_json())
            written.append(dst)
        return written


def bucket_record_url(*, bucket: str, region: str, sha: str) -> str:
    return f"https://s3-{region}.amazonaws.com/{bucket}/{commit_record_rel_path(sha)}"


def load_records(
    commits: Iterable[GitCommit],
    records: CommitRecordCache,
    *,
    client: Optional[CIHttpClient] = None,
    bucket: Optional[str] = None,
    region: Optional[str] = None,
) -> List[Tuple[GitCommit, Commit]]:
    """Load the record of every commit, downloading missing ones into the local mirror.

    Commits with no published record (HTTP 403/404) are skipped with a warning.
    """
    out: List[Tuple[GitCommit, Commit]] = []
    for git in commits:
        raw = records.get_raw(git.sha)
        if raw is None and client is not None and bucket and region:
            url = bucket_record_url(bucket=bucket, region=region, sha=git.sha)
            try:
                raw = client.get(url, label="s3.record")
            except TransientFetchError as e:
                if e.status_code not in (403, 404):
                    raise
                logger.warning(f"{git.sha}: no published record ({e.status_code}); skipping")
                continue
            records.put_raw(git.sha, raw)
        if raw is None:
            logger.warning(f"{git.sha}: no local record; skipping")
            continue
        logger.debug(f"reading {records.path_for(commit_record_rel_path(git.sha))}")
        try:
            out.append((git, Commit.from_gzip_bytes(raw)))
        except (OSError, EOFError, ValueError, TypeError, AttributeError) as e:
            raise PublishError(f"unreadable record for {git.sha}") from e
    return out


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the site data builder"""
    parser = argparse.ArgumentParser(
        description="Aggregate published commit records into dashboard JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Last 100 commits into ./html
  %(prog)s ./rust ./html --cache-dir ./cache

  # Offline, using only records already in the cache
  %(prog)s ./rust ./html --cache-dir ./cache --offline
        """,
    )
    parser.add_argument("repo_path", type=Path, help="Path to a clone of the tracked repository")
    parser.add_argument("out_dir", type=Path, help="Directory to write overall.json and <sha>.json into")
    parser.add_argument("--cache-dir", type=Path, default=None, help="Cache root (default: $CI_TIMING_CACHE_DIR or ~/.cache/ci-timing-tracker)")
    parser.add_argument("--config", type=Path, help="YAML config file (default: $CI_TIMING_CONFIG)")
    parser.add_argument("--max-commits", type=int, default=DEFAULT_SITE_MAX_COMMITS, help=f"Window size (default: {DEFAULT_SITE_MAX_COMMITS})")
    parser.add_argument(
        "--diagnostic-phase", default=DEFAULT_DIAGNOSTIC_PHASE,
        help=f"Step left out of job totals (default: {DEFAULT_DIAGNOSTIC_PHASE}; empty string to keep all steps)",
    )
    parser.add_argument("--offline", action="store_true", help="Do not download missing records")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output (INFO level logging)")
    parser.add_argument("--debug", action="store_true", help="Enable debug output (DEBUG level logging)")
    args = parser.parse_args(list(argv) if argv is not None else None)

    setup_logging(verbose=args.verbose, debug=args.debug)

    try:
        cfg = load_config(args.config)
        if not args.offline:
            cfg.require("s3_bucket", "s3_region")
        cache_dir = Path(args.cache_dir).expanduser() if args.cache_dir else cfg.cache_dir
        history = CommitHistorySource(args.repo_path, author=cfg.author)
        records = load_records(
            history.iter_commits(max_count=args.max_commits),
            CommitRecordCache(root=cache_dir),
            client=None if args.offline else CIHttpClient(),
            bucket=cfg.s3_bucket,
            region=cfg.s3_region,
        )
        out_dir = Path(args.out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        aggregator = SiteAggregator(diagnostic_phase=args.diagnostic_phase or None)
        aggregator.write_overall(records, out_dir)
        aggregator.write_each_commit(records, out_dir)
    except (CITimingError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        for cause in iter_causes(e):
            print(f"\tcaused by: {cause}", file=sys.stderr)
        return 1

    print(f"Wrote overall.json and {len(records)} commit files to {out_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
