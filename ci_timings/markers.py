"""Marker catalog for `ci_timings`.

Log markers are matched as plain substrings (anywhere in a line, so CI
timestamp prefixes are tolerated); only the job-name placeholder check needs a
regex.

This module is intentionally "boring":
- no side effects
- no imports from other `ci_timings` modules (avoid cycles)
"""

from __future__ import annotations

import re
from typing import Dict, Pattern, Tuple

# Emitted by the compiler's bootstrap once per crate compiled:
#   [RUSTC-TIMING] core test:false 12.345
RUSTC_TIMING_MARKER = "[RUSTC-TIMING] "

# Emitted by the build system when a step finishes:
#   [TIMING] Std { stage: 0, target: x86_64-unknown-linux-gnu } -- 41.2
TIMING_MARKER = "[TIMING] "
TIMING_SEPARATOR = " -- "

# Job name echoed by the CI scripts, e.g. `[CI_JOB_NAME=x86_64-gnu-llvm-6.0]`.
JOB_NAME_MARKER = "CI_JOB_NAME="
JOB_NAME_TERMINATOR = "]"

# Azure agent environment dump, e.g. `AGENT_JOBNAME=Linux x86_64-gnu-llvm-6.0`.
AGENT_JOB_NAME_MARKER = "AGENT_JOBNAME="

# Names Azure generates for matrix jobs that did not set a display name.
PLACEHOLDER_JOB_NAME_RE: Pattern[str] = re.compile(r"^Job\d+$")

# /proc/cpuinfo as printed by the CI scripts.
CPU_FAMILY_MARKER = "cpu family\t: "
CPU_MODEL_MARKER = "model\t\t: "

# (cpu family, model) -> microarchitecture name.
# Source: https://en.wikichip.org/wiki/intel/cpuid
INTEL_CPU_MODEL_TO_MICROARCH: Dict[Tuple[str, str], str] = {
    ("6", "45"): "sandybridge",
    ("6", "62"): "ivybridge",
    ("6", "63"): "haswell",
    ("6", "79"): "broadwell",
    ("6", "85"): "skylake",
    ("6", "86"): "broadwell",
}
