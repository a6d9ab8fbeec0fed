"""Job identification and CPU detection from raw CI job logs."""

from __future__ import annotations

from typing import Optional

from ci_providers.exceptions import JobNameNotFoundError

from .extract import find_get_after
from .markers import (
    AGENT_JOB_NAME_MARKER,
    CPU_FAMILY_MARKER,
    CPU_MODEL_MARKER,
    INTEL_CPU_MODEL_TO_MICROARCH,
    JOB_NAME_MARKER,
    JOB_NAME_TERMINATOR,
    PLACEHOLDER_JOB_NAME_RE,
)


def _first_line_after(contents: str, needle: str) -> Optional[str]:
    for line in contents.split("\n"):
        rest = find_get_after(line, needle)
        if rest is not None:
            return rest
    return None


def identify_job(contents: str, *, allow_agent_fallback: bool = False) -> str:
    """Return the canonical job name echoed in a job log.

    The name is the text between `CI_JOB_NAME=` and the next `]` on the first
    line carrying the marker. With `allow_agent_fallback` (Azure), a generated
    placeholder such as `Job12` is replaced by the second token after
    `AGENT_JOBNAME=`.

    Raises:
        JobNameNotFoundError: the required marker is missing
    """
    rest = _first_line_after(contents, JOB_NAME_MARKER)
    if rest is None:
        raise JobNameNotFoundError(JOB_NAME_MARKER)
    name = rest.split(JOB_NAME_TERMINATOR, 1)[0].strip()

    if allow_agent_fallback and PLACEHOLDER_JOB_NAME_RE.match(name):
        agent = _first_line_after(contents, AGENT_JOB_NAME_MARKER)
        if agent is None:
            raise JobNameNotFoundError(AGENT_JOB_NAME_MARKER)
        tokens = agent.split()
        if len(tokens) < 2:
            raise JobNameNotFoundError(AGENT_JOB_NAME_MARKER)
        name = tokens[1]

    return name


def extract_cpu_microarch(contents: str) -> Optional[str]:
    """Map the first `cpu family` / following `model` pair of /proc/cpuinfo to a microarchitecture.

    Returns None when no cpuinfo is printed or the pair is not in the table.
    """
    family: Optional[str] = None
    for raw_line in contents.split("\n"):
        line = raw_line.strip()
        if family is None:
            family = find_get_after(line, CPU_FAMILY_MARKER)
            continue
        model = find_get_after(line, CPU_MODEL_MARKER)
        if model is not None:
            return INTEL_CPU_MODEL_TO_MICROARCH.get((family, model))
    return None
