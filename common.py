"""
CI timing tracker shared utilities.

Shared constants, configuration loading and git history access for the
publish (`publish_commits.py`) and site (`html_pages/build_site.py`) scripts.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml

from ci_providers.exceptions import ConfigurationError
from common_types import GitCommit

# GitPython is required - hard error if not installed
try:
    import git  # type: ignore[import-not-found]
except ImportError as e:
    raise ImportError("GitPython is required. Install with: pip install gitpython") from e

# Global logger for the module
_logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("travis", "appveyor", "azure")

DEFAULT_AUTHOR = "bors"
DEFAULT_MAX_WORKERS = 8
DEFAULT_SITE_MAX_COMMITS = 100
DEFAULT_DIAGNOSTIC_PHASE = "Distcheck"


# ======================================================================================
# Cache location policy
#
# All persistent caches live under:
#   - $CI_TIMING_CACHE_DIR          (explicit override), else
#   - ~/.cache/ci-timing-tracker    (default)
# unless a cache directory is passed explicitly on the command line.
# ======================================================================================

def ci_timing_cache_dir() -> Path:
    """Return the cache directory for the CI timing tracker.

    Resolution order:
    - CI_TIMING_CACHE_DIR (explicit override)
    - ~/.cache/ci-timing-tracker
    """
    override = os.environ.get("CI_TIMING_CACHE_DIR")
    if override:
        return Path(override).expanduser()

    return Path.home() / ".cache" / "ci-timing-tracker"


def setup_logging(*, verbose: bool = False, debug: bool = False) -> None:
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


# ======================================================================================
# Configuration
# ======================================================================================

@dataclass
class ProviderSettings:
    """Settings for one CI provider.

    `repo` is vendor specific:
    - travis:   "<owner>/<repo>" slug
    - appveyor: "<account>/<project>"
    - azure:    "<organization>/<project>"
    """

    name: str
    enabled: bool = True
    repo: str = "rust-lang/rust"
    branch: str = "auto"
    api_base: str = ""
    page_size: int = 25
    max_pages: int = 0  # 0 = paginate until the vendor runs out of history
    token: Optional[str] = None
    definition_id: Optional[int] = None  # azure only: restrict to one pipeline definition


_PROVIDER_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "travis": {"api_base": "https://api.travis-ci.com", "page_size": 25},
    "appveyor": {"api_base": "https://ci.appveyor.com", "page_size": 100},
    "azure": {"api_base": "https://dev.azure.com", "page_size": 100},
}

_TOKEN_ENV = {
    "travis": "TRAVIS_TOKEN",
    "appveyor": "APPVEYOR_TOKEN",
    "azure": "AZURE_TOKEN",
}


@dataclass
class TrackerConfig:
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    author: str = DEFAULT_AUTHOR
    max_workers: int = DEFAULT_MAX_WORKERS
    cache_dir: Path = field(default_factory=ci_timing_cache_dir)
    providers: Dict[str, ProviderSettings] = field(default_factory=dict)

    def enabled_providers(self) -> List[ProviderSettings]:
        return [self.providers[n] for n in PROVIDER_NAMES if n in self.providers and self.providers[n].enabled]

    def require(self, *names: str) -> None:
        """Raise ConfigurationError if any named setting is missing."""
        missing = [n for n in names if not getattr(self, n, None)]
        if missing:
            env_names = ", ".join(n.upper() for n in missing)
            raise ConfigurationError(f"missing required configuration: {', '.join(missing)} (set {env_names})")


def _provider_from_mapping(name: str, raw: Dict[str, Any]) -> ProviderSettings:
    known = {f.name for f in fields(ProviderSettings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(f"unknown settings for provider {name}: {', '.join(unknown)}")
    values = dict(_PROVIDER_DEFAULTS.get(name, {}))
    values.update({k: v for k, v in raw.items() if k != "name"})
    return ProviderSettings(name=name, **values)


def load_config(path: Optional[Path] = None, *, environ: Optional[Dict[str, str]] = None) -> TrackerConfig:
    """Load configuration: defaults, then an optional YAML file, then the environment.

    The YAML file is `path`, else $CI_TIMING_CONFIG if set. Example:

        author: bors
        max_workers: 8
        providers:
          travis:   {repo: rust-lang/rust, branch: auto, max_pages: 40}
          appveyor: {enabled: false}
          azure:    {repo: rust-lang/rust, definition_id: 1}

    Secrets and deployment targets come from the environment only:
    S3_BUCKET, S3_REGION, TRAVIS_TOKEN, APPVEYOR_TOKEN, AZURE_TOKEN.
    """
    env = os.environ if environ is None else environ
    if path is None and env.get("CI_TIMING_CONFIG"):
        path = Path(env["CI_TIMING_CONFIG"])

    raw: Dict[str, Any] = {}
    if path is not None:
        try:
            with open(Path(path).expanduser()) as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"failed to read config file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"config file {path} must contain a mapping")

    raw_providers = raw.get("providers") or {}
    if not isinstance(raw_providers, dict):
        raise ConfigurationError("`providers` must be a mapping")
    unknown = sorted(set(raw_providers) - set(PROVIDER_NAMES))
    if unknown:
        raise ConfigurationError(f"unknown providers: {', '.join(unknown)}")

    providers: Dict[str, ProviderSettings] = {}
    for name in PROVIDER_NAMES:
        settings = _provider_from_mapping(name, dict(raw_providers.get(name) or {}))
        token = env.get(_TOKEN_ENV[name])
        if token:
            settings.token = token
        providers[name] = settings

    cfg = TrackerConfig(
        s3_bucket=env.get("S3_BUCKET") or None,
        s3_region=env.get("S3_REGION") or None,
        author=str(raw.get("author") or DEFAULT_AUTHOR),
        max_workers=int(raw.get("max_workers") or DEFAULT_MAX_WORKERS),
        providers=providers,
    )
    if env.get("CI_TIMING_CACHE_DIR"):
        cfg.cache_dir = Path(env["CI_TIMING_CACHE_DIR"]).expanduser()
    elif raw.get("cache_dir"):
        cfg.cache_dir = Path(str(raw["cache_dir"])).expanduser()
    return cfg


# ======================================================================================
# Git history
# ======================================================================================

class CommitHistorySource:
    """Bot-authored commits of a repository, newest first (GitPython API only).

    Example:
        history = CommitHistorySource(repo_path="/path/to/rust", author="bors")
        for commit in history.iter_commits(max_count=100):
            print(commit.sha, commit.date)
    """

    def __init__(self, repo_path: Any, *, author: str = DEFAULT_AUTHOR, rev: Optional[str] = None):
        self.repo_path = Path(repo_path)
        self.author = author
        self.rev = rev
        try:
            self.repo = git.Repo(self.repo_path)
        except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
            raise ConfigurationError(f"not a git repository: {self.repo_path}") from e
        _logger.debug(f"Initialized git repo at {self.repo_path}")

    def iter_commits(self, max_count: Optional[int] = None) -> Iterator[GitCommit]:
        kwargs: Dict[str, Any] = {"author": self.author}
        if max_count is not None:
            kwargs["max_count"] = int(max_count)
        # An empty repository or an unknown rev only fails once iteration starts.
        try:
            for c in self.repo.iter_commits(self.rev, **kwargs):
                yield GitCommit(sha=c.hexsha, date=c.authored_datetime.isoformat())
        except (ValueError, git.GitCommandError) as e:
            raise ConfigurationError(f"cannot read history of {self.repo_path} at {self.rev or 'HEAD'}") from e
