"""End-to-end passes.

Each suite runs against the cluster named by KUBECONFIG, inside the
authorization scope that grants the test namespace's service account use
of the cluster's pod security policy. Suite output streams straight to
the terminal.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import structlog

from operator_ci.errors import TestFailure
from operator_ci.passes.registry import PassContext
from operator_ci.process import render_command

logger = structlog.get_logger(__name__)

E2E_REQUIRES: tuple[str, ...] = (
    "operator_image",
    "test_namespace",
    "kubeconfig",
    "test_s3_bucket",
)
UPGRADE_REQUIRES: tuple[str, ...] = (
    *E2E_REQUIRES,
    "upgrade_from_image",
    "upgrade_to_image",
)

# Environment read by the e2e suites themselves
_SUITE_ENV = {
    "test_s3_bucket": "TEST_S3_BUCKET",
    "test_namespace": "TEST_NAMESPACE",
    "operator_image": "OPERATOR_IMAGE",
}


def run_suite(ctx: PassContext, name: str, command: Sequence[str]) -> None:
    """Run one e2e suite inside the authorization scope.

    Raises:
        SetupFailure: If the grant could not be created; the suite does
            not run.
        TestFailure: If the suite exits non-zero.
    """
    settings = ctx.settings
    args = render_command(command, settings.template_values())
    env = {
        variable: getattr(settings, field)
        for field, variable in _SUITE_ENV.items()
        if getattr(settings, field)
    }

    with ctx.authorization(settings).scope() as grant:
        logger.info("e2e.suite_started", suite=name, authorized=grant is not None)
        result = ctx.runner.run(args, capture=False, env=env)

    if not result.ok:
        raise TestFailure(name, result.returncode)
    logger.info("e2e.suite_passed", suite=name)


def suite_pass(
    name: str,
    select: Callable[[PassContext], Sequence[str]],
) -> Callable[[PassContext], None]:
    """Build a pass action running the suite chosen by ``select``."""

    def _run(ctx: PassContext) -> None:
        run_suite(ctx, name, select(ctx))

    _run.__name__ = name.replace("-", "_")
    return _run


e2e_fast = suite_pass("e2e-fast", lambda ctx: ctx.toolchain.e2e_fast)
e2e_slow = suite_pass("e2e-slow", lambda ctx: ctx.toolchain.e2e_slow)
e2e_upgrade = suite_pass("e2e-upgrade", lambda ctx: ctx.toolchain.e2e_upgrade)


__all__ = [
    "E2E_REQUIRES",
    "UPGRADE_REQUIRES",
    "e2e_fast",
    "e2e_slow",
    "e2e_upgrade",
    "run_suite",
]
