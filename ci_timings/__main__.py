#!/usr/bin/env python3
"""Module entrypoint for `ci_timings`.

Usage:
  - `python3 -m ci_timings ~/.cache/ci-timing-tracker/logs/travis/123456.gz`
"""

from __future__ import annotations

from .cli import _cli


if __name__ == "__main__":
    raise SystemExit(_cli())
