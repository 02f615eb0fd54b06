"""Exception hierarchy for operator-ci.

All exceptions raised by passes and by the services they use inherit from
OperatorCIError, so the CLI can map every failure class to its own exit code.

Exception Hierarchy:
    OperatorCIError (base)
    ├── ConfigurationError       # Invalid selection, toolchain or environment
    │   ├── UnknownPassError     # Selection names an unregistered pass
    │   └── MissingConfigError   # Required variable or credential absent
    ├── MissingCapabilityError   # Required external tool or runtime absent
    ├── VerificationFailure      # Formatting/vet/license/codegen findings
    ├── BuildFailure             # A build step failed
    ├── TestFailure              # A test run exited non-zero
    ├── ProvisionError           # A backing service could not be started
    └── SetupFailure             # Authorization grant could not be created

    RunInterrupted (KeyboardInterrupt)  # SIGTERM/SIGHUP received

Example:
    >>> from operator_ci.errors import MissingConfigError
    >>> raise MissingConfigError(["OPERATOR_IMAGE", "KUBECONFIG"])
    Traceback (most recent call last):
        ...
    MissingConfigError: Missing required environment: OPERATOR_IMAGE, KUBECONFIG
"""

from __future__ import annotations

from collections.abc import Sequence


class OperatorCIError(Exception):
    """Base exception for all operator-ci errors.

    Attributes:
        pass_name: Name of the pass that was running when the error was
            raised. Set by the pass runner; None outside a pass.
    """

    pass_name: str | None = None


class ConfigurationError(OperatorCIError):
    """Raised when the run configuration is invalid.

    Configuration errors are detected before any pass executes and are
    never retried.
    """

    pass


class UnknownPassError(ConfigurationError):
    """Raised when a pass selection names passes that are not registered.

    Attributes:
        unknown: The unregistered names, in selection order.
        available: Names of all registered passes.
    """

    def __init__(self, unknown: Sequence[str], available: Sequence[str]) -> None:
        self.unknown = list(unknown)
        self.available = list(available)
        super().__init__(
            f"Unknown pass(es): {', '.join(self.unknown)} "
            f"(available: {', '.join(self.available)})"
        )


class MissingConfigError(ConfigurationError):
    """Raised when required environment variables or credentials are absent.

    Attributes:
        variables: Names of the missing environment variables.
    """

    def __init__(self, variables: Sequence[str]) -> None:
        self.variables = list(variables)
        super().__init__(f"Missing required environment: {', '.join(self.variables)}")


class MissingCapabilityError(OperatorCIError):
    """Raised when a required external tool or runtime is not available.

    Attributes:
        capability: Name of the missing tool or runtime (e.g. "docker").
        reason: Why it is considered unavailable.
    """

    def __init__(self, capability: str, reason: str = "not found on PATH") -> None:
        self.capability = capability
        self.reason = reason
        super().__init__(f"Required capability '{capability}' unavailable: {reason}")


class VerificationFailure(OperatorCIError):
    """Raised when a verification check reports non-conforming files.

    Attributes:
        check: Name of the check (e.g. "gofmt", "license-header").
        findings: Offending files or issue lines reported by the check.
    """

    def __init__(self, check: str, findings: Sequence[str]) -> None:
        self.check = check
        self.findings = list(findings)
        listing = "\n".join(f"  {finding}" for finding in self.findings)
        message = f"Verification check '{check}' failed"
        if listing:
            message += f":\n{listing}"
        super().__init__(message)


class BuildFailure(OperatorCIError):
    """Raised when a build step exits non-zero.

    Attributes:
        step: Name of the build step.
        returncode: Exit status of the builder.
    """

    def __init__(self, step: str, returncode: int, stderr: str | None = None) -> None:
        self.step = step
        self.returncode = returncode
        self.stderr = stderr
        message = f"Build step '{step}' failed with exit code {returncode}"
        if stderr:
            message += f"\n{stderr}"
        super().__init__(message)


class TestFailure(OperatorCIError):
    """Raised when a test run exits non-zero.

    The CLI exits with the test runner's own status.

    Attributes:
        target: What was being tested (a pass or a package list).
        returncode: Exit status reported by the test runner.
        packages: Packages whose tests failed, when known.
    """

    __test__ = False

    def __init__(
        self,
        target: str,
        returncode: int,
        packages: Sequence[str] = (),
    ) -> None:
        self.target = target
        self.returncode = returncode
        self.packages = list(packages)
        message = f"Tests failed for {target} (exit code {returncode})"
        if self.packages:
            message += f": {', '.join(self.packages)}"
        super().__init__(message)


class ProvisionError(OperatorCIError):
    """Raised when a backing service could not be started or readied.

    Attributes:
        service: Name of the service.
        reason: Why provisioning failed.
    """

    def __init__(self, service: str, reason: str) -> None:
        self.service = service
        self.reason = reason
        super().__init__(f"Failed to provision service '{service}': {reason}")


class SetupFailure(OperatorCIError):
    """Raised when the authorization grant could not be created.

    The wrapped end-to-end execution is aborted rather than run without
    the intended authorization.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Authorization setup failed: {reason}")


class RunInterrupted(KeyboardInterrupt):
    """Raised from a signal handler when the run receives SIGTERM or SIGHUP.

    Derives from KeyboardInterrupt so that ``except Exception`` clauses in
    pass bodies do not swallow it.

    Attributes:
        signum: The signal number that was received.
    """

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")


__all__ = [
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
