#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Publish per-commit CI timing records.

Walks bot-authored commits newest first. For each commit not yet in the
object store, finds its build on every CI provider, fetches (or reads from the
log cache) every job log, extracts job name, CPU and step timings, and writes
one gzip JSON record to <cache-dir>/commits/<sha>.json.gz. The walk stops at the
first commit that is already published: history is append-only and records are
published oldest first, so everything older is published too. A commit that
fails on a network error halts the walk without publishing anything newer, so
re-running the job retries it.

Exit status: 0 on success, 1 on a run-fatal error or a halted walk (cause chain
on stderr).
"""

from __future__ import annotations

import argparse
import logging
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from cache.cache_job_log import CommitRecordCache, JobLogCache, commit_record_rel_path
from ci_providers import CIHttpClient
from ci_providers.api import JobRef, ProviderDirectory, make_providers
from ci_providers.exceptions import (
    CITimingError,
    CommitBuildError,
    MalformedTimingError,
    NotFoundError,
    PublishError,
    TransientFetchError,
    iter_causes,
)
from ci_timings import analyze_log
from common import (
    DEFAULT_MAX_WORKERS,
    CommitHistorySource,
    load_config,
    setup_logging,
)
from common_types import Commit, GitCommit, Job

logger = logging.getLogger(__name__)

# Errors that make one job unusable without saying anything about the others.
JOB_SCOPED_ERRORS = (TransientFetchError, NotFoundError, MalformedTimingError)


# ======================================================================================
# CommitBuilder
# ======================================================================================

@dataclass
class JobOutcome:
    provider: ProviderDirectory
    job: JobRef
    name: Optional[str] = None
    record: Optional[Job] = None
    error: Optional[BaseException] = None


class CommitBuilder:
    """Build the normalized Commit record of one commit across all providers.

    Per-job work (log fetch through the cache, identification, extraction) runs
    on a bounded thread pool; outcomes are folded into the record on the calling
    thread after every worker finished, in job listing order.
    """

    def __init__(self, providers: Sequence[ProviderDirectory], *, max_workers: int = DEFAULT_MAX_WORKERS):
        self.providers = list(providers)
        self.max_workers = max(1, int(max_workers))

    def _process_job(self, provider: ProviderDirectory, job: JobRef) -> JobOutcome:
        try:
            contents = provider.fetch_job_log(job)
            name, record = analyze_log(contents, url=job.url, path=job.cache_path, provider=provider.name)
        except JOB_SCOPED_ERRORS as e:
            return JobOutcome(provider=provider, job=job, error=e)
        return JobOutcome(provider=provider, job=job, name=name, record=record)

    def _collect_jobs(self, commit_id: str) -> List[Tuple[ProviderDirectory, JobRef]]:
        work: List[Tuple[ProviderDirectory, JobRef]] = []
        builds_found = 0
        for provider in self.providers:
            try:
                build = provider.lookup(commit_id)
                if build is None:
                    continue
                builds_found += 1
                jobs = provider.list_jobs(build)
            except TransientFetchError as e:
                if provider.tolerate_job_failures:
                    logger.warning(f"[{provider.name}] skipping provider for {commit_id}: {e}")
                    continue
                raise CommitBuildError(
                    commit_id=commit_id, message=f"[{provider.name}] failed to list builds for {commit_id}"
                ) from e
            logger.debug(f"[{provider.name}] {commit_id}: build {build.build_id} with {len(jobs)} jobs")
            work.extend((provider, job) for job in jobs)
        if not builds_found:
            raise CommitBuildError(commit_id=commit_id, message=f"no CI build found for {commit_id} on any provider")
        return work

    def build(self, commit_id: str) -> Commit:
        """Return the Commit record for `commit_id`.

        Raises:
            CommitBuildError: the commit cannot be recorded now (retry later if a
                network error is in its cause chain, else skip it)
            CacheWriteError: a fetched log could not be cached (abort the run)
            ConfigurationError: a provider cannot page as far as needed (abort the run)
        """
        work = self._collect_jobs(commit_id)

        with ThreadPoolExecutor(max_workers=self.max_workers) as ex:
            futures = [ex.submit(self._process_job, provider, job) for (provider, job) in work]
            outcomes = [fut.result() for fut in futures]

        commit = Commit()
        for outcome in outcomes:
            if outcome.name is None or outcome.record is None:
                if outcome.provider.tolerate_job_failures or isinstance(outcome.error, MalformedTimingError):
                    logger.warning(f"{commit_id}: dropping job {outcome.job.url}: {outcome.error}")
                    continue
                raise CommitBuildError(
                    commit_id=commit_id,
                    job_url=outcome.job.url,
                    message=f"failed to process job {outcome.job.url}",
                ) from outcome.error
            if outcome.name in commit.jobs:
                logger.debug(
                    f"{commit_id}: job name {outcome.name!r} seen twice; "
                    f"{outcome.job.url} replaces {commit.jobs[outcome.name].url}"
                )
            commit.jobs[outcome.name] = outcome.record
        logger.info(f"{commit_id}: {len(commit.jobs)} jobs from {len(work)} logs")
        return commit


# ======================================================================================
# Object stores + PublishGate
# ======================================================================================

class ObjectStore(ABC):
    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def upload_file(self, key: str, path: Path) -> None:
        ...


class S3ObjectStore(ObjectStore):
    """S3 bucket: anonymous HEAD probe for existence, `aws s3 cp` for uploads."""

    def __init__(self, *, bucket: str, client: CIHttpClient, aws_cli: str = "aws"):
        self.bucket = bucket
        self.client = client
        self.aws_cli = aws_cli

    def url_for(self, key: str) -> str:
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def exists(self, key: str) -> bool:
        status = self.client.head(self.url_for(key), label="s3.head")
        if status == 200:
            return True
        # Buckets without public list permission answer 403 for missing keys.
        if status in (403, 404):
            return False
        raise TransientFetchError(status_code=status, url=self.url_for(key), message=f"unexpected HTTP {status} probing {key}")

    def upload_file(self, key: str, path: Path) -> None:
        cmd = [self.aws_cli, "s3", "cp", "--only-show-errors", str(path), f"s3://{self.bucket}/{key}"]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise PublishError(f"`{self.aws_cli}` not found; cannot upload {key}") from e
        except subprocess.CalledProcessError as e:
            raise PublishError(f"upload of {key} failed (exit {e.returncode}): {(e.stderr or '').strip()}") from e


class LocalDirectoryStore(ObjectStore):
    """A directory standing in for the bucket (same key layout)."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def exists(self, key: str) -> bool:
        return (self.root / key).is_file()

    def upload_file(self, key: str, path: Path) -> None:
        dst = self.root / key
        tmp = dst.with_name(f".{dst.name}.tmp")
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, tmp)
            tmp.replace(dst)
        except OSError as e:
            raise PublishError(f"failed to copy {path} to {dst}: {e}") from e


class PublishGate:
    """Existence probe + idempotent upload of commit records.

    When a log cache is given, the raw logs a record points at (`Job.path`) are
    uploaded under the same keys before the record itself, so a published
    record never references a log the store does not have.
    """

    def __init__(
        self,
        store: ObjectStore,
        records: CommitRecordCache,
        *,
        log_cache: Optional[JobLogCache] = None,
        dry_run: bool = False,
    ):
        self.store = store
        self.records = records
        self.log_cache = log_cache
        self.dry_run = dry_run

    def already_published(self, commit_id: str) -> bool:
        return self.store.exists(commit_record_rel_path(commit_id))

    def _publish_logs(self, commit_id: str, raw: bytes) -> None:
        if self.log_cache is None:
            return
        try:
            record = Commit.from_gzip_bytes(raw)
        except (OSError, EOFError, ValueError, TypeError, AttributeError) as e:
            raise PublishError(f"unreadable record for {commit_id}") from e
        for name, job in sorted(record.jobs.items()):
            if not job.path:
                continue
            if not self.log_cache.exists(job.path):
                logger.warning(f"{commit_id}: log of {name} ({job.path}) is not cached; not uploading it")
                continue
            self.store.upload_file(job.path, self.log_cache.path_for(job.path))

    def publish(self, commit_id: str, raw: bytes) -> None:
        if self.records.get_raw(commit_id) != raw:
            self.records.put_raw(commit_id, raw)
        key = commit_record_rel_path(commit_id)
        if self.dry_run:
            logger.info(f"DRY RUN: Would upload {key}")
            return
        self._publish_logs(commit_id, raw)
        self.store.upload_file(key, self.records.path_for(key))
        logger.info(f"Published {key}")


# ======================================================================================
# The walk
# ======================================================================================

def is_recoverable(err: BaseException) -> bool:
    """True when a network/HTTP failure is anywhere in the cause chain (a re-run may succeed)."""
    return isinstance(err, TransientFetchError) or any(isinstance(c, TransientFetchError) for c in iter_causes(err))


@dataclass
class PublishSummary:
    built: List[str] = field(default_factory=list)
    reused: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    published: List[str] = field(default_factory=list)
    stopped_at: Optional[str] = None
    # Set when a commit failed for a reason a re-run may fix; nothing newer was published.
    halted_at: Optional[str] = None
    halted_by: Optional[CommitBuildError] = None


class TimingPublisher:
    def __init__(self, builder: CommitBuilder, gate: PublishGate, records: CommitRecordCache):
        self.builder = builder
        self.gate = gate
        self.records = records

    @staticmethod
    def _serialize(commit_id: str, record: Commit) -> bytes:
        try:
            return record.to_gzip_bytes()
        except (TypeError, ValueError) as e:
            raise PublishError(f"failed to serialize record of {commit_id}") from e

    def run(self, commits: Iterable[GitCommit]) -> PublishSummary:
        """Record every unpublished commit (newest first), then publish them oldest first.

        Stops inspecting history at the first published commit. A commit whose
        record can never be built (no build anywhere, unidentifiable job) is
        logged and skipped for good. A commit that failed on a network error
        halts the walk instead: nothing newer is published, so the next run
        retries it (newer records are reused from the local mirror).
        """
        summary = PublishSummary()
        pending: List[Tuple[str, bytes]] = []

        for commit in commits:
            sha = commit.sha
            if self.gate.already_published(sha):
                logger.info(f"{sha} already published; stopping")
                summary.stopped_at = sha
                break

            raw = self.records.get_raw(sha)
            if raw is not None:
                logger.debug(f"{sha}: reusing local record")
                summary.reused.append(sha)
            else:
                logger.debug(f"learning about {sha}")
                try:
                    record = self.builder.build(sha)
                except CommitBuildError as e:
                    causes = "".join(f"; caused by: {c}" for c in iter_causes(e))
                    if is_recoverable(e):
                        logger.error(
                            f"halting at {sha}: {e}{causes}; "
                            f"holding back {len(pending)} newer records until it can be built"
                        )
                        summary.halted_at = sha
                        summary.halted_by = e
                        pending.clear()
                        break
                    logger.error(f"skipping {sha}: {e}{causes}")
                    summary.skipped.append(sha)
                    continue
                raw = self._serialize(sha, record)
                self.records.put_raw(sha, raw)
                summary.built.append(sha)
            pending.append((sha, raw))

        for sha, raw in reversed(pending):
            self.gate.publish(sha, raw)
            summary.published.append(sha)
        return summary


# ======================================================================================
# CLI
# ======================================================================================

def _print_error(err: BaseException) -> None:
    print(f"error: {err}", file=sys.stderr)
    for cause in iter_causes(err):
        print(f"\tcaused by: {cause}", file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the commit record publisher"""
    parser = argparse.ArgumentParser(
        description="Collect CI timings for bot-authored commits and publish one record per commit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Collect and publish to $S3_BUCKET
  %(prog)s ./rust ./cache

  # Build records locally without uploading
  %(prog)s ./rust ./cache --dry-run --verbose

  # Use a directory instead of S3 (same key layout)
  %(prog)s ./rust ./cache --local-store ./published
        """,
    )
    parser.add_argument("repo_path", type=Path, help="Path to a clone of the tracked repository")
    parser.add_argument(
        "cache_dir", type=Path, nargs="?", default=None,
        help="Cache root for logs/ and commits/ (default: $CI_TIMING_CACHE_DIR or ~/.cache/ci-timing-tracker)",
    )
    parser.add_argument("--config", type=Path, help="YAML config file (default: $CI_TIMING_CONFIG)")
    parser.add_argument("--max-commits", type=int, default=None, help="Inspect at most this many commits")
    parser.add_argument("--workers", type=int, default=None, help="Parallel log fetches per commit")
    parser.add_argument("--dry-run", action="store_true", help="Build records but do not upload them")
    parser.add_argument("--local-store", type=Path, help="Publish into this directory instead of S3")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output (INFO level logging)")
    parser.add_argument("--debug", action="store_true", help="Enable debug output (DEBUG level logging, shows all API calls)")
    args = parser.parse_args(list(argv) if argv is not None else None)

    setup_logging(verbose=args.verbose, debug=args.debug)

    try:
        cfg = load_config(args.config)
        if args.local_store is None:
            cfg.require("s3_bucket")
        cache_dir = Path(args.cache_dir).expanduser() if args.cache_dir else cfg.cache_dir

        client = CIHttpClient()
        log_cache = JobLogCache(root=cache_dir)
        records = CommitRecordCache(root=cache_dir)
        providers = make_providers(client, cfg.enabled_providers(), log_cache)
        builder = CommitBuilder(providers, max_workers=args.workers or cfg.max_workers)
        if args.local_store is not None:
            store: ObjectStore = LocalDirectoryStore(args.local_store)
        else:
            store = S3ObjectStore(bucket=str(cfg.s3_bucket), client=client)
        gate = PublishGate(store, records, log_cache=log_cache, dry_run=args.dry_run)

        history = CommitHistorySource(args.repo_path, author=cfg.author)
        summary = TimingPublisher(builder, gate, records).run(history.iter_commits(max_count=args.max_commits))
    except CITimingError as e:
        _print_error(e)
        return 1

    print(
        f"built={len(summary.built)} reused={len(summary.reused)} skipped={len(summary.skipped)} "
        f"published={len(summary.published)} stopped_at={summary.stopped_at or '-'} halted_at={summary.halted_at or '-'}"
    )
    rest = client.get_rest_call_stats()
    logger.info(f"REST calls: total={rest['total']} errors={rest['error_total']} by_label={rest['by_label']}")
    logger.info(f"Log cache: {log_cache.get_stats()}")
    for p in providers:
        logger.info(f"[{p.name}] pages={p.pages_loaded} builds={len(p.builds)} duplicates_rejected={p.duplicates_rejected}")
    if summary.halted_by is not None:
        _print_error(summary.halted_by)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
