"""operator-ci: pass-driven verification for a Kubernetes operator repository.

This package provides:
- PassRegistry, PassRunner: named passes executed in selection order
- DependencyProvisioner: idempotent start of containerized backing services
- AuthorizationBootstrapper: temporary cluster authorization grant for e2e runs
- CoverageAggregator: per-package coverage profiles merged into one report
- Settings, Toolchain: environment settings and external tool command lines
- Errors: exception hierarchy mapped to CLI exit codes

Example:
    >>> from operator_ci import Settings, Toolchain, PassRunner
    >>> from operator_ci.passes import build_default_registry, create_context
    >>> settings = Settings()
    >>> context = create_context(settings, Toolchain.from_yaml(settings.toolchain_file))
    >>> PassRunner(build_default_registry(), context).run(settings.selection())
"""

from __future__ import annotations

__version__ = "0.1.0"

from operator_ci.authorization import AuthorizationBootstrapper, AuthorizationGrant
from operator_ci.coverage import CoverageAggregator, CoverageReport
from operator_ci.errors import (
    BuildFailure,
    ConfigurationError,
    MissingCapabilityError,
    MissingConfigError,
    OperatorCIError,
    ProvisionError,
    RunInterrupted,
    SetupFailure,
    TestFailure,
    UnknownPassError,
    VerificationFailure,
)
from operator_ci.passes import Pass, PassContext, PassRegistry, PassRunner
from operator_ci.services import DependencyProvisioner, ServiceHandle, ServiceSpec
from operator_ci.settings import Settings, Toolchain

__all__ = [
    "__version__",
    # Passes
    "Pass",
    "PassContext",
    "PassRegistry",
    "PassRunner",
    # Services
    "AuthorizationBootstrapper",
    "AuthorizationGrant",
    "CoverageAggregator",
    "CoverageReport",
    "DependencyProvisioner",
    "ServiceHandle",
    "ServiceSpec",
    # Configuration
    "Settings",
    "Toolchain",
    # Errors
    "BuildFailure",
    "ConfigurationError",
    "MissingCapabilityError",
    "MissingConfigError",
    "OperatorCIError",
    "ProvisionError",
    "RunInterrupted",
    "SetupFailure",
    "TestFailure",
    "UnknownPassError",
    "VerificationFailure",
]
