"""
CLI wrapper for ci_timings.

Re-parses cached logs offline (no network):
  - one log file (plain text or the cache's .gz)
  - every job of a published commit record, using each job's cached `path`
"""

from __future__ import annotations

import argparse
import gzip
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from cache.cache_job_log import JobLogCache
from ci_providers.exceptions import CITimingError, MalformedTimingError, NotFoundError
from common import ci_timing_cache_dir
from common_types import Commit

from .analyze import analyze_log, provider_from_log_path

logger = logging.getLogger(__name__)


def _read_log(path: Path) -> str:
    raw = path.read_bytes()
    if path.suffix == ".gz":
        raw = gzip.decompress(raw)
    return raw.decode("utf-8", errors="replace")


def reparse_commit(record: Commit, *, cache_root: Path) -> Commit:
    """Rebuild a commit record from the cached logs its jobs point at.

    Jobs whose log is no longer cached, or no longer parses, keep their
    recorded data (with a warning).
    """
    log_cache = JobLogCache(root=cache_root)
    out = Commit()
    for old_name, job in sorted(record.jobs.items()):
        provider = provider_from_log_path(job.path)
        data = log_cache.read_bytes(job.path)
        if data is None:
            logger.warning(f"{old_name}: log {job.path} is not cached; keeping recorded timings")
            out.jobs[old_name] = job
            continue
        try:
            name, new_job = analyze_log(data.decode("utf-8", errors="replace"), url=job.url, path=job.path, provider=provider)
        except (NotFoundError, MalformedTimingError) as e:
            logger.warning(f"{old_name}: failed to re-parse {job.path}: {e}; keeping recorded timings")
            out.jobs[old_name] = job
            continue
        out.jobs[name] = new_job
    return out


def _cli(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(
        description="Extract job name, CPU and step timings from cached CI job logs.",
        epilog="Examples:\n"
               "  %(prog)s ~/.cache/ci-timing-tracker/logs/travis/123456.gz\n"
               "  %(prog)s --commit-record ~/.cache/ci-timing-tracker/commits/<sha>.json.gz",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("log_path", nargs="?", default="", help="Path to a raw log (plain text or .gz).")
    parser.add_argument(
        "--provider",
        default="",
        help="Provider the log came from (enables the azure job-name fallback). Default: inferred from the path.",
    )
    parser.add_argument("--commit-record", type=Path, help="Re-parse every job of this commit record (.json.gz).")
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=ci_timing_cache_dir(),
        help="Cache root holding logs/<provider>/*.gz (default: ~/.cache/ci-timing-tracker).",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        if args.commit_record:
            record = Commit.from_gzip_bytes(Path(args.commit_record).expanduser().read_bytes())
            commit = reparse_commit(record, cache_root=Path(args.cache_dir).expanduser())
            print(json.dumps(commit.to_dict(), indent=2, sort_keys=True))
            return 0

        if not args.log_path:
            parser.error("a log path or --commit-record is required")
        log_path = Path(args.log_path).expanduser()
        if not log_path.is_file():
            logger.error(f"ERROR: file not found: {log_path}")
            return 2
        provider = args.provider or provider_from_log_path(str(log_path))
        name, job = analyze_log(_read_log(log_path), url="", path=str(log_path), provider=provider)
    except (OSError, ValueError, CITimingError) as e:
        logger.error(f"ERROR: {e}")
        return 1

    print(json.dumps({"name": name, "cpu_microarch": job.cpu_microarch, "timings": job.to_dict()["timings"]}, indent=2, sort_keys=True))
    return 0
