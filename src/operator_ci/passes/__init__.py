"""Verification passes and the default pass registry."""

from __future__ import annotations

from pathlib import Path

from operator_ci.authorization import AuthorizationBootstrapper
from operator_ci.passes.build import build
from operator_ci.passes.e2e import E2E_REQUIRES, UPGRADE_REQUIRES, e2e_fast, e2e_slow, e2e_upgrade
from operator_ci.passes.registry import (
    Pass,
    PassAction,
    PassContext,
    PassRegistry,
    PassRunner,
    RunResult,
)
from operator_ci.passes.unit import UNIT_REQUIRES, unit
from operator_ci.passes.verify import format_verify
from operator_ci.process import CommandRunner
from operator_ci.services import DependencyProvisioner, DockerRuntime
from operator_ci.settings import Settings, Toolchain


def create_context(
    settings: Settings,
    toolchain: Toolchain,
    workdir: Path | None = None,
) -> PassContext:
    """Create the pass context for a run against real tools and services.

    Nothing external is contacted here: the docker client and the cluster
    client are created on first use by the passes that need them.
    """
    root = workdir or Path.cwd()

    def _authorization(run_settings: Settings) -> AuthorizationBootstrapper:
        return AuthorizationBootstrapper(
            run_settings.kubeconfig,
            namespace=run_settings.test_namespace or "",
            context=run_settings.kube_context,
        )

    return PassContext(
        settings=settings,
        toolchain=toolchain,
        runner=CommandRunner(cwd=root),
        provisioner=DependencyProvisioner(DockerRuntime()),
        authorization=_authorization,
        workdir=root,
    )


def build_default_registry() -> PassRegistry:
    """Create a registry holding every built-in pass."""
    registry = PassRegistry()
    registry.register(
        "format-verify",
        format_verify,
        description="License headers, gofmt, go vet, static analysis, codegen",
    )
    registry.register(
        "build",
        build,
        description="Build the operator image and component binaries",
        requires=("operator_image",),
    )
    registry.register(
        "e2e-fast",
        e2e_fast,
        description="Fast end-to-end suite",
        requires=E2E_REQUIRES,
    )
    registry.register(
        "e2e-slow",
        e2e_slow,
        description="Slow end-to-end suite",
        requires=E2E_REQUIRES,
    )
    registry.register(
        "e2e-upgrade",
        e2e_upgrade,
        description="Operator upgrade end-to-end suite",
        requires=UPGRADE_REQUIRES,
    )
    registry.register(
        "unit",
        unit,
        description="Unit tests with merged coverage",
        requires=UNIT_REQUIRES,
    )
    return registry


__all__ = [
    "Pass",
    "PassAction",
    "PassContext",
    "PassRegistry",
    "PassRunner",
    "RunResult",
    "build_default_registry",
    "create_context",
]
