"""Timing extraction from raw CI job logs.

Two markers matter (see `markers.py`):

  [RUSTC-TIMING] <name> <seconds>     per-crate time, name may contain spaces
  [TIMING] <step> -- <seconds>        a build step finished

Per-crate times are buffered and attributed to the *next* `[TIMING]` line,
whatever step that is. Repeated steps accumulate. Buffered parts left over at
the end of the log belong to no step and are dropped.
"""

from __future__ import annotations

import math
from typing import Dict, Optional

from ci_providers.exceptions import MalformedTimingError
from common_types import Timing

from .markers import RUSTC_TIMING_MARKER, TIMING_MARKER, TIMING_SEPARATOR


def find_get_after(line: str, needle: str) -> Optional[str]:
    """Return the text after the first occurrence of `needle` in `line`, or None."""
    pos = line.find(needle)
    if pos < 0:
        return None
    return line[pos + len(needle):]


def _parse_seconds(raw: str, *, line_no: int, line: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise MalformedTimingError(line_no=line_no, line=line, reason=f"not a number: {raw!r}") from None
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise MalformedTimingError(line_no=line_no, line=line, reason=f"not a non-negative duration: {raw!r}")
    return value


def extract_timings(contents: str) -> Dict[str, Timing]:
    """Parse `[TIMING]`/`[RUSTC-TIMING]` markers out of a job log.

    Args:
        contents: Full raw log text

    Returns:
        step name -> Timing

    Raises:
        MalformedTimingError: a marker line carries an unparsable duration
    """
    result: Dict[str, Timing] = {}
    pending: Dict[str, float] = {}

    for line_no, raw_line in enumerate(contents.split("\n"), start=1):
        line = raw_line.strip()

        rest = find_get_after(line, RUSTC_TIMING_MARKER)
        if rest is not None:
            name, sep, value = rest.rpartition(" ")
            if not sep:
                raise MalformedTimingError(line_no=line_no, line=line, reason="missing crate name")
            pending[name] = pending.get(name, 0.0) + _parse_seconds(value, line_no=line_no, line=line)

        rest = find_get_after(line, TIMING_MARKER)
        if rest is not None:
            step, sep, value = rest.partition(TIMING_SEPARATOR)
            if not sep:
                continue
            timing = result.setdefault(step, Timing())
            timing.add(_parse_seconds(value, line_no=line_no, line=line), pending)
            pending.clear()

    return result
