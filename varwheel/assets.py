# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Discover optional external simulator libraries shipped next to the wheel.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable

from .common import AssetError, prepend_path
from .context import BuildContext

log = logging.getLogger(__name__)

ASSETS_SCRIPT = "find_wheel_assets.sh"

# Read by the project's build backend to bundle the discovered libraries.
EXTERNAL_ASSETS_ENV = "CUDAQ_EXTERNAL_NVQIR_SIMS"

_SEPARATORS = re.compile(r"[;\s]+")


def parse_assets(lines: Iterable[str]) -> list[str]:
    """
    Split discovery output into identifiers.

    Discovery order is kept and repeated identifiers are dropped.
    """
    found: list[str] = []
    for line in lines:
        for name in _SEPARATORS.split(line.strip()):
            if name and name not in found:
                found.append(name)
    return found


def locate_assets(context: BuildContext) -> list[str]:
    """
    Run the discovery script over the assets directory.

    :raises AssetError: If the discovery script fails
    """
    assets_dir = context.assets_dir()
    if not assets_dir.is_dir():
        log.debug("Assets directory %s does not exist", assets_dir)
        return []
    result = context.run(
        ["bash", str(context.dirs.script(ASSETS_SCRIPT)), str(assets_dir)], tail=0
    )
    if not result.ok:
        raise AssetError(
            f"Asset discovery in {assets_dir} failed (exit status {result.returncode})"
        )
    return parse_assets(result.stdout)


class AssetStage:
    """
    Locate external assets and expose them to the build.

    When anything is found the assets directory is put in front of the
    library search path for the rest of the pipeline.
    """

    name = "assets"

    def enabled(self, context: BuildContext) -> bool:
        return True

    def run(self, context: BuildContext) -> BuildContext:
        assets = locate_assets(context)
        if not assets:
            return context
        log.info("Found external simulator assets: %s", " ".join(assets))
        var = context.profile.lib_path_var
        search_path = prepend_path(context.assets_dir(), context.getenv(var))
        context = context.with_env(
            **{var: search_path, EXTERNAL_ASSETS_ENV: " ".join(assets)}
        )
        return context.replace(assets=assets)
