# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Install the project's build prerequisites.
"""
from __future__ import annotations

import logging

from .common import PrerequisiteError
from .context import BuildContext

log = logging.getLogger(__name__)

PREREQ_SCRIPT = "install_prerequisites.sh"

# Lines of installer output kept when not verbose.
PREREQ_TAIL = 5


def prerequisite_command(context: BuildContext) -> list[str]:
    """
    The command that installs prerequisites, with the toolchain when one was requested.
    """
    cmd = ["bash", str(context.dirs.script(PREREQ_SCRIPT))]
    if context.config.install_toolchain:
        cmd.extend(["-t", context.config.install_toolchain])
    return cmd


class PrerequisiteStage:
    """
    Run the prerequisite installer, only when asked to.
    """

    name = "prerequisites"

    def enabled(self, context: BuildContext) -> bool:
        return context.config.install_prereqs

    def run(self, context: BuildContext) -> BuildContext:
        log.info("Installing prerequisites...")
        result = context.run(prerequisite_command(context), tail=PREREQ_TAIL)
        if not result.ok:
            raise PrerequisiteError(
                f"Failed to install prerequisites (exit status {result.returncode})"
            )
        return context
