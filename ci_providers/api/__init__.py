# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Per-vendor build directories (Travis, AppVeyor, Azure Pipelines)."""

from __future__ import annotations

from typing import Dict, Iterable, List, Type, TYPE_CHECKING

from .appveyor_builds import AppVeyorDirectory
from .azure_builds import AzureDirectory
from .base_provider import BuildHandle, BuildMap, JobRef, ProviderDirectory
from .travis_builds import TravisDirectory

if TYPE_CHECKING:  # pragma: no cover
    from cache.cache_job_log import JobLogCache
    from common import ProviderSettings
    from .. import CIHttpClient

PROVIDER_CLASSES: Dict[str, Type[ProviderDirectory]] = {
    TravisDirectory.name: TravisDirectory,
    AppVeyorDirectory.name: AppVeyorDirectory,
    AzureDirectory.name: AzureDirectory,
}


def make_providers(
    client: "CIHttpClient", settings: Iterable["ProviderSettings"], log_cache: "JobLogCache"
) -> List[ProviderDirectory]:
    """Construct fresh directories (empty build maps) for the given provider settings."""
    return [PROVIDER_CLASSES[s.name](client, s, log_cache) for s in settings]


__all__ = [
    "AppVeyorDirectory",
    "AzureDirectory",
    "BuildHandle",
    "BuildMap",
    "JobRef",
    "PROVIDER_CLASSES",
    "ProviderDirectory",
    "TravisDirectory",
    "make_providers",
]
