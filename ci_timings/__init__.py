"""
Timing extraction library for CI job logs (ci-timing-tracker).

This package contains the *implementation* for:
- timing extraction (`[TIMING]` steps with attributed `[RUSTC-TIMING]` parts)
- job identification (`CI_JOB_NAME=` with the Azure `AGENT_JOBNAME=` fallback)
- CPU microarchitecture detection from printed /proc/cpuinfo

It is dependency-light so it can be reused by:
- `publish_commits.py` while building commit records
- `python -m ci_timings` to re-parse cached logs offline

Public API is re-exported from:
- `ci_timings.extract` for timing extraction
- `ci_timings.identify` for job names and CPU detection
- `ci_timings.analyze` for the combined per-log analysis
"""

from .analyze import (  # noqa: F401
    analyze_log,
    provider_from_log_path,
)
from .extract import extract_timings  # noqa: F401
from .identify import (  # noqa: F401
    extract_cpu_microarch,
    identify_job,
)

__all__ = [
    "analyze_log",
    "extract_cpu_microarch",
    "extract_timings",
    "identify_job",
    "provider_from_log_path",
]
