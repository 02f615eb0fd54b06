"""The build pass: operator image and component binaries."""

from __future__ import annotations

import structlog

from operator_ci.errors import BuildFailure
from operator_ci.passes.registry import PassContext
from operator_ci.process import render_command

logger = structlog.get_logger(__name__)

# Builder stderr lines kept in the failure message
_STDERR_TAIL = 20


def build(ctx: PassContext) -> None:
    """Run the configured build steps in order.

    Raises:
        BuildFailure: On the first step that exits non-zero.
    """
    values = ctx.settings.template_values()
    for step in ctx.toolchain.build_steps:
        logger.info("build.step_started", step=step.name)
        result = ctx.runner.run(render_command(step.command, values))
        if not result.ok:
            tail = "\n".join(result.stderr.splitlines()[-_STDERR_TAIL:]) or None
            raise BuildFailure(step.name, result.returncode, tail)
        logger.info("build.step_completed", step=step.name)
