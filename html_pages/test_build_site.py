"""
Pytest tests for build_site.py (SiteAggregator and record loading).

Run from the repository root:
    pytest html_pages/test_build_site.py -v
"""

import json
import sys
from pathlib import Path

import pytest

# Set up path for imports
parent_dir = Path(__file__).parent.parent
if str(parent_dir) not in sys.path:
    sys.path.insert(0, str(parent_dir))

from cache.cache_job_log import CommitRecordCache
from ci_providers import CIHttpClient
from ci_providers.exceptions import TransientFetchError
from common_types import Commit, GitCommit, Job, Timing
from html_pages.build_site import SiteAggregator, bucket_record_url, load_records


def make_job(**steps):
    return Job(
        url="https://ci.example/job",
        path="logs/travis/1.gz",
        timings={name: Timing(duration=float(v)) for name, v in steps.items()},
    )


def window():
    """Three commits, newest first (as history yields them)."""
    c3 = GitCommit(sha="c3", date="2019-06-03T00:00:00+00:00")
    c2 = GitCommit(sha="c2", date="2019-06-02T00:00:00+00:00")
    c1 = GitCommit(sha="c1", date="2019-06-01T00:00:00+00:00")
    return [
        (c3, Commit(jobs={"slow": make_job(Build=100, Distcheck=900), "fast": make_job(Build=10)})),
        (c2, Commit(jobs={"slow": make_job(Build=80)})),
        (c1, Commit(jobs={"slow": make_job(Build=60), "fast": make_job(Build=20), "medium": make_job(Build=50)})),
    ]


# ============================================================================
# SiteAggregator
# ============================================================================

def test_overall_commits_are_oldest_first():
    doc = SiteAggregator().overall(window())

    assert doc["commits"] == [
        {"sha": "c1", "date": "2019-06-01T00:00:00+00:00"},
        {"sha": "c2", "date": "2019-06-02T00:00:00+00:00"},
        {"sha": "c3", "date": "2019-06-03T00:00:00+00:00"},
    ]


def test_series_are_zero_filled_and_ranked():
    doc = SiteAggregator().overall(window())
    series = {s["name"]: s["data"] for s in doc["series"]}

    # means: slow 80, medium 50, fast 15
    assert [s["name"] for s in doc["series"]] == ["slow", "medium", "fast"]
    assert series["slow"] == [60.0, 80.0, 100.0]
    assert series["fast"] == [20.0, 0.0, 10.0]
    assert series["medium"] == [50.0, 0.0, 0.0]


def test_diagnostic_phase_excluded_from_ranking_and_values():
    records = [
        (GitCommit(sha="c2", date="d2"), Commit(jobs={"a": make_job(Build=10, Distcheck=1000), "b": make_job(Build=20)})),
    ]

    doc = SiteAggregator().overall(records)
    assert [s["name"] for s in doc["series"]] == ["b", "a"]
    assert doc["series"][1]["data"] == [10.0]

    doc = SiteAggregator(diagnostic_phase=None).overall(records)
    assert [s["name"] for s in doc["series"]] == ["a", "b"]
    assert doc["series"][0]["data"] == [1010.0]


def test_equal_means_rank_by_name():
    records = [(GitCommit(sha="c", date="d"), Commit(jobs={"zeta": make_job(Build=5), "alpha": make_job(Build=5)}))]
    assert SiteAggregator().slowest_jobs(records) == ["alpha", "zeta"]


def test_empty_window():
    assert SiteAggregator().overall([]) == {"commits": [], "series": []}


def test_write_outputs(tmp_path):
    aggregator = SiteAggregator()
    records = window()

    overall = aggregator.write_overall(records, tmp_path)
    written = aggregator.write_each_commit(records, tmp_path)

    assert json.loads(overall.read_text()) == aggregator.overall(records)
    assert sorted(p.name for p in written) == ["c1.json", "c2.json", "c3.json"]
    assert Commit.from_json((tmp_path / "c3.json").read_text()) == records[0][1]


# ============================================================================
# load_records()
# ============================================================================

class BucketClient(CIHttpClient):
    def __init__(self, objects):
        super().__init__()
        self.objects = dict(objects)
        self.requests = []

    def get(self, url, *, headers=None, label=None):
        self.requests.append(url)
        payload = self.objects.get(url, 403)
        if isinstance(payload, int):
            raise TransientFetchError(status_code=payload, url=url, message=f"HTTP {payload}")
        return payload


def test_bucket_record_url():
    assert (
        bucket_record_url(bucket="rust-ci", region="us-west-1", sha="abc")
        == "https://s3-us-west-1.amazonaws.com/rust-ci/commits/abc.json.gz"
    )


def test_load_records_prefers_mirror_then_downloads(tmp_path):
    records = CommitRecordCache(root=tmp_path)
    local = Commit(jobs={"local": make_job(Build=1)})
    remote = Commit(jobs={"remote": make_job(Build=2)})
    records.put_raw("c2", local.to_gzip_bytes())
    client = BucketClient({
        bucket_record_url(bucket="b", region="r", sha="c1"): remote.to_gzip_bytes(),
    })
    commits = [
        GitCommit(sha="c3", date="d3"),  # never published
        GitCommit(sha="c2", date="d2"),
        GitCommit(sha="c1", date="d1"),
    ]

    loaded = load_records(commits, records, client=client, bucket="b", region="r")

    assert [(git.sha, list(c.jobs)) for git, c in loaded] == [("c2", ["local"]), ("c1", ["remote"])]
    assert len(client.requests) == 2
    # Downloads land in the mirror.
    assert records.get_raw("c1") == remote.to_gzip_bytes()


def test_load_records_server_error_propagates(tmp_path):
    client = BucketClient({bucket_record_url(bucket="b", region="r", sha="c1"): 500})

    with pytest.raises(TransientFetchError):
        load_records([GitCommit(sha="c1", date="d")], CommitRecordCache(root=tmp_path), client=client, bucket="b", region="r")


def test_load_records_offline_skips_missing(tmp_path):
    loaded = load_records([GitCommit(sha="c1", date="d")], CommitRecordCache(root=tmp_path))
    assert loaded == []
