"""Turn one raw job log into a (canonical job name, Job) pair."""

from __future__ import annotations

from typing import Tuple

from common_types import Job

from .extract import extract_timings
from .identify import extract_cpu_microarch, identify_job

# Only Azure logs carry the AGENT_JOBNAME fallback.
AGENT_FALLBACK_PROVIDERS = frozenset({"azure"})


def provider_from_log_path(path: str) -> str:
    """`logs/<provider>/<id>.gz` -> `<provider>` (empty string if the path has another shape)."""
    parts = str(path).replace("\\", "/").split("/")
    if len(parts) >= 3 and parts[-3] == "logs":
        return parts[-2]
    return ""


def analyze_log(contents: str, *, url: str, path: str, provider: str) -> Tuple[str, Job]:
    """Identify the job and extract its timings and CPU.

    Raises:
        JobNameNotFoundError: no job name marker in the log
        MalformedTimingError: a timing marker has an unparsable duration
    """
    name = identify_job(contents, allow_agent_fallback=provider in AGENT_FALLBACK_PROVIDERS)
    job = Job(
        url=url,
        path=path,
        cpu_microarch=extract_cpu_microarch(contents),
        timings=extract_timings(contents),
    )
    return name, job
