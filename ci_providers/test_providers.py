"""
Pytest tests for the CI provider build directories and HTTP client.

No network: a CIHttpClient subclass routes URLs to canned payloads.

Run from the repository root:
    pytest ci_providers/test_providers.py -v
"""

import json
import sys
from pathlib import Path

import pytest

# Set up path for imports
parent_dir = Path(__file__).parent.parent
if str(parent_dir) not in sys.path:
    sys.path.insert(0, str(parent_dir))

from cache.cache_job_log import JobLogCache
from ci_providers import USER_AGENT, CIHttpClient
from ci_providers.api import AppVeyorDirectory, AzureDirectory, JobRef, TravisDirectory, make_providers
from ci_providers.exceptions import ConfigurationError, TransientFetchError
from common import ProviderSettings, load_config


class FakeClient(CIHttpClient):
    """Route GETs by URL substring (first match wins) and record every call."""

    def __init__(self, routes):
        super().__init__()
        self.routes = list(routes)
        self.calls = []

    def get(self, url, *, headers=None, label=None):
        self.calls.append((url, dict(headers or {}), label))
        for needle, payload in self.routes:
            if needle in url:
                if isinstance(payload, int):
                    raise TransientFetchError(status_code=payload, url=url, message=f"HTTP {payload}")
                if isinstance(payload, (dict, list)):
                    return json.dumps(payload).encode("utf-8")
                return str(payload).encode("utf-8")
        raise TransientFetchError(status_code=404, url=url, message=f"no route for {url}")


def _settings(name, **kw):
    defaults = {
        "travis": {"api_base": "https://api.travis-ci.com", "page_size": 2},
        "appveyor": {"api_base": "https://ci.appveyor.com", "page_size": 2, "repo": "rust-lang/rust"},
        "azure": {"api_base": "https://dev.azure.com", "page_size": 100, "repo": "rust-lang/rust"},
    }[name]
    defaults.update(kw)
    return ProviderSettings(name=name, **defaults)


def _travis_build(build_id, sha):
    return {"id": build_id, "number": str(build_id), "commit": {"id": build_id * 10, "sha": sha}}


TRAVIS_ROUTES = [
    ("offset=0", {"builds": [_travis_build(12, "c1"), _travis_build(11, "c2")]}),
    ("offset=2", {"builds": [_travis_build(10, "c3")]}),
    ("offset=3", {"builds": []}),
]


# ============================================================================
# Travis: offset pagination
# ============================================================================

def test_travis_lookup_paginates_until_found(tmp_path):
    client = FakeClient(TRAVIS_ROUTES)
    travis = TravisDirectory(client, _settings("travis"), JobLogCache(root=tmp_path))

    build = travis.lookup("c3")
    assert build is not None
    assert build.build_id == "10"
    assert travis.pages_loaded == 2
    assert travis.offset == 3

    first_url, headers, label = client.calls[0]
    assert first_url.startswith("https://api.travis-ci.com/repo/rust-lang%2Frust/builds?")
    assert "branch.name=auto" in first_url
    assert "limit=2" in first_url
    assert headers["Travis-API-Version"] == "3"
    assert label == "travis.builds"

    # Already in the map: no more requests.
    assert travis.lookup("c1").build_id == "12"
    assert len(client.calls) == 2


def test_travis_lookup_exhausted_returns_none(tmp_path):
    client = FakeClient(TRAVIS_ROUTES)
    travis = TravisDirectory(client, _settings("travis"), JobLogCache(root=tmp_path))

    assert travis.lookup("never-built") is None
    assert travis.exhausted
    assert travis.pages_loaded == 3

    # Exhausted directories answer from the map without asking again.
    assert travis.lookup("still-missing") is None
    assert len(client.calls) == 3


def test_max_pages_caps_pagination(tmp_path):
    client = FakeClient(TRAVIS_ROUTES)
    travis = TravisDirectory(client, _settings("travis", max_pages=1), JobLogCache(root=tmp_path))

    assert travis.lookup("c3") is None
    assert travis.pages_loaded == 1


def test_duplicate_builds_keep_the_newest(tmp_path):
    client = FakeClient([
        ("offset=0", {"builds": [_travis_build(21, "dup"), _travis_build(20, "dup")]}),
        ("offset=2", {"builds": []}),
    ])
    travis = TravisDirectory(client, _settings("travis"), JobLogCache(root=tmp_path))

    assert travis.lookup("dup").build_id == "21"
    assert travis.duplicates_rejected == 1
    assert len(travis.builds) == 1


def test_travis_jobs_and_token(tmp_path):
    client = FakeClient([("/build/12?include=build.jobs", {"jobs": [{"id": 1001}, {"id": 1002}]})] + TRAVIS_ROUTES)
    travis = TravisDirectory(client, _settings("travis", token="secret"), JobLogCache(root=tmp_path))

    jobs = travis.list_jobs(travis.lookup("c1"))
    assert [j.job_id for j in jobs] == ["1001", "1002"]
    assert jobs[0].url == "https://travis-ci.com/rust-lang/rust/jobs/1001"
    assert jobs[0].log_url == "https://api.travis-ci.com/v3/job/1001/log.txt"
    assert jobs[0].cache_path == "logs/travis/1001.gz"
    assert all(h["Authorization"] == "token secret" for (_u, h, _l) in client.calls)


def test_fetch_job_log_goes_through_cache(tmp_path):
    client = FakeClient([("/v3/job/1001/log.txt", "[CI_JOB_NAME=x86_64-gnu]\n")] + TRAVIS_ROUTES)
    cache = JobLogCache(root=tmp_path)
    travis = TravisDirectory(client, _settings("travis"), cache)
    ref = JobRef(
        provider="travis", build_id="12", job_id="1001", cache_id="1001",
        url="https://travis-ci.com/rust-lang/rust/jobs/1001",
        log_url="https://api.travis-ci.com/v3/job/1001/log.txt",
    )

    assert travis.fetch_job_log(ref) == "[CI_JOB_NAME=x86_64-gnu]\n"
    assert travis.fetch_job_log(ref) == "[CI_JOB_NAME=x86_64-gnu]\n"
    assert [label for (_u, _h, label) in client.calls] == ["travis.log"]
    assert (tmp_path / "logs" / "travis" / "1001.gz").is_file()


# ============================================================================
# AppVeyor: continuation id
# ============================================================================

def _appveyor_build(build_id, sha):
    return {"buildId": build_id, "buildNumber": build_id, "version": f"1.0.{build_id}", "commitId": sha}


APPVEYOR_ROUTES = [
    ("startBuildId=29", {"builds": [_appveyor_build(28, "a3")]}),
    ("startBuildId=28", {"builds": []}),
    ("/history?", {"builds": [_appveyor_build(30, "a1"), _appveyor_build(29, "a2")]}),
    ("/build/1.0.29", {"build": {"jobs": [{"jobId": "abc123"}, {"jobId": "def456"}]}}),
]


def test_appveyor_continuation_cursor(tmp_path):
    client = FakeClient(APPVEYOR_ROUTES)
    appveyor = AppVeyorDirectory(client, _settings("appveyor"), JobLogCache(root=tmp_path))

    assert appveyor.lookup("a3").build_id == "28"
    urls = [u for (u, _h, _l) in client.calls]
    assert "startBuildId" not in urls[0]
    assert "recordsNumber=2" in urls[0]
    assert "startBuildId=29" in urls[1]

    assert appveyor.lookup("missing") is None
    assert appveyor.pages_loaded == 3


def test_appveyor_jobs(tmp_path):
    client = FakeClient(APPVEYOR_ROUTES)
    appveyor = AppVeyorDirectory(client, _settings("appveyor"), JobLogCache(root=tmp_path))

    jobs = appveyor.list_jobs(appveyor.lookup("a2"))
    assert [j.cache_id for j in jobs] == ["29-abc123", "29-def456"]
    assert jobs[0].url == "https://ci.appveyor.com/project/rust-lang/rust/builds/29/job/abc123"
    assert jobs[0].log_url == "https://ci.appveyor.com/api/buildjobs/abc123/log"
    assert appveyor.log_headers()["Accept"] == "text/plain"


def test_appveyor_stuck_cursor_stops(tmp_path):
    client = FakeClient([("/history?", {"builds": [_appveyor_build(5, "s1")]})])
    appveyor = AppVeyorDirectory(client, _settings("appveyor"), JobLogCache(root=tmp_path))

    assert appveyor.lookup("missing") is None
    assert appveyor.pages_loaded == 2


# ============================================================================
# Azure: single page
# ============================================================================

AZURE_ROUTES = [
    ("/timeline", {"records": [
        {"id": "rec-1", "type": "Job", "name": "x86_64-gnu", "log": {"id": 12}},
        {"id": "rec-2", "type": "Task", "name": "Checkout", "log": {"id": 13}},
        {"id": "rec-3", "type": "Job", "name": "pending", "log": None},
    ]}),
    ("/_apis/build/builds?", {"count": 2, "value": [
        {"id": 4567, "buildNumber": "20190601.3", "sourceVersion": "z1"},
        {"id": 4566, "buildNumber": "20190601.2", "sourceVersion": "z2"},
    ]}),
]


def test_azure_single_page(tmp_path):
    client = FakeClient(AZURE_ROUTES)
    azure = AzureDirectory(client, _settings("azure", definition_id=1), JobLogCache(root=tmp_path))

    assert azure.lookup("z2").build_id == "4566"
    assert azure.lookup("older") is None
    assert len(client.calls) == 1

    url, headers, _label = client.calls[0]
    assert "branchName=refs%2Fheads%2Fauto" in url
    assert "%24top=100" in url
    assert "definitions=1" in url
    assert headers["Accept"] == "application/json;api-version=5.0"

    with pytest.raises(ConfigurationError):
        azure.load_more()


def test_azure_jobs_from_timeline(tmp_path):
    client = FakeClient(AZURE_ROUTES)
    azure = AzureDirectory(client, _settings("azure", token="pat"), JobLogCache(root=tmp_path))

    jobs = azure.list_jobs(azure.lookup("z1"))
    assert len(jobs) == 1
    assert jobs[0].cache_id == "4567-12"
    assert jobs[0].log_url == "https://dev.azure.com/rust-lang/rust/_apis/build/builds/4567/logs/12"
    assert jobs[0].url.startswith("https://dev.azure.com/rust-lang/rust/_build/results?buildId=4567")
    assert "j=rec-1" in jobs[0].url
    assert client.calls[-1][1]["Authorization"].startswith("Basic ")


# ============================================================================
# Vendor records with missing ids are skipped, not fatal
# ============================================================================

def test_azure_timeline_job_without_log_id_is_skipped(tmp_path):
    from publish_commits import CommitBuilder

    client = FakeClient([
        ("/timeline", {"records": [
            {"type": "Job", "log": {"url": "x"}},
            {"id": "rec-1", "type": "Job", "name": "x86_64-gnu", "log": {"id": 12}},
            "not a record",
        ]}),
        ("/logs/12", "[CI_JOB_NAME=x86_64-gnu]\n[TIMING] Std -- 2.0\n"),
    ] + AZURE_ROUTES)
    azure = AzureDirectory(client, _settings("azure"), JobLogCache(root=tmp_path))

    commit = CommitBuilder([azure]).build("z1")

    assert list(commit.jobs) == ["x86_64-gnu"]
    assert commit.jobs["x86_64-gnu"].path == "logs/azure/4567-12.gz"


def test_travis_records_without_ids_are_skipped(tmp_path):
    client = FakeClient([
        ("/build/12?include=build.jobs", {"jobs": [{"state": "passed"}, {"id": 1001}]}),
        ("offset=0", {"builds": [{"number": "13", "commit": {"sha": "c0"}}, _travis_build(12, "c1"), {"id": 9}]}),
        ("offset=3", {"builds": []}),
    ])
    travis = TravisDirectory(client, _settings("travis"), JobLogCache(root=tmp_path))

    assert travis.lookup("c0") is None
    build = travis.lookup("c1")
    assert build.build_id == "12"
    assert [j.job_id for j in travis.list_jobs(build)] == ["1001"]


def test_appveyor_records_without_ids_are_skipped(tmp_path):
    client = FakeClient([
        ("startBuildId=29", {"builds": []}),
        ("/history?", {"builds": [{"commitId": "a0", "version": "1.0.31"}, _appveyor_build(29, "a2")]}),
        ("/build/1.0.29", {"build": {"jobs": [{"name": "no id"}, {"jobId": "abc123"}]}}),
    ])
    appveyor = AppVeyorDirectory(client, _settings("appveyor"), JobLogCache(root=tmp_path))

    assert appveyor.lookup("a0") is None
    assert appveyor.start_build_id == "29"
    jobs = appveyor.list_jobs(appveyor.lookup("a2"))
    assert [j.job_id for j in jobs] == ["abc123"]


# ============================================================================
# Wiring + HTTP client
# ============================================================================

def test_make_providers_respects_enabled(tmp_path):
    cfg = load_config(environ={})
    cfg.providers["appveyor"].enabled = False

    providers = make_providers(FakeClient([]), cfg.enabled_providers(), JobLogCache(root=tmp_path))
    assert [p.name for p in providers] == ["travis", "azure"]
    assert all(len(p.builds) == 0 for p in providers)


class _FakeResponse:
    def __init__(self, status_code, content=b""):
        self.status_code = status_code
        self.content = content


class _FakeSession:
    def __init__(self, response):
        self.response = response
        self.seen_headers = None

    def get(self, url, headers=None, timeout=None):
        self.seen_headers = headers
        return self.response

    def head(self, url, headers=None, timeout=None, allow_redirects=True):
        self.seen_headers = headers
        return self.response


def test_http_client_user_agent_and_stats():
    session = _FakeSession(_FakeResponse(200, b'{"ok": true}'))
    client = CIHttpClient(session=session)

    assert client.get_json("https://example.invalid/x", label="travis.builds") == {"ok": True}
    assert session.seen_headers["User-Agent"] == USER_AGENT == "rustc-ci-timing-tracker"
    stats = client.get_rest_call_stats()
    assert stats["total"] == 1
    assert stats["by_label"] == {"travis.builds": 1}


def test_http_client_error_status():
    client = CIHttpClient(session=_FakeSession(_FakeResponse(503)))

    with pytest.raises(TransientFetchError) as exc_info:
        client.get("https://example.invalid/y")
    assert exc_info.value.status_code == 503
    assert client.get_rest_call_stats()["errors_by_status"] == {503: 1}


def test_http_client_head_returns_status():
    client = CIHttpClient(session=_FakeSession(_FakeResponse(404)))
    assert client.head("https://example.invalid/z") == 404
