"""CLI utility functions and error handling.

Shared helpers for the operator-ci CLI:
- Exit code constants and the exception to exit code mapping
- Output helpers for consistent stderr/stdout usage

Errors are printed as plain text to stderr and the process exits with a
code specific to the failure class, so CI jobs can tell a formatting
violation from a broken build or a failed test run.

Example:
    from operator_ci.cli.utils import error_exit, ExitCode

    if not selection:
        error_exit("Nothing to run", exit_code=ExitCode.CONFIGURATION_ERROR)
"""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import TYPE_CHECKING

import click

from operator_ci.errors import (
    BuildFailure,
    ConfigurationError,
    MissingCapabilityError,
    ProvisionError,
    RunInterrupted,
    SetupFailure,
    TestFailure,
    VerificationFailure,
)

if TYPE_CHECKING:
    from typing import NoReturn


class ExitCode(IntEnum):
    """Exit codes for CLI commands.

    A failed test run exits with the test runner's own status instead of
    one of these codes.
    """

    SUCCESS = 0
    """All selected passes completed."""

    GENERAL_ERROR = 1
    """Unexpected error (catch-all)."""

    USAGE_ERROR = 2
    """Invalid usage (bad arguments, unknown options)."""

    CONFIGURATION_ERROR = 3
    """Unknown pass, invalid toolchain file or missing environment."""

    VERIFICATION_ERROR = 4
    """A verification check reported findings."""

    BUILD_ERROR = 5
    """A build step failed."""

    PROVISION_ERROR = 6
    """A backing service could not be provisioned."""

    SETUP_ERROR = 7
    """The authorization grant could not be created."""

    CAPABILITY_ERROR = 8
    """A required external tool or runtime is missing."""


# Exit status base for signal-terminated runs (shell convention)
SIGNAL_EXIT_BASE = 128

_EXIT_CODES: tuple[tuple[type[Exception], ExitCode], ...] = (
    (ConfigurationError, ExitCode.CONFIGURATION_ERROR),
    (VerificationFailure, ExitCode.VERIFICATION_ERROR),
    (BuildFailure, ExitCode.BUILD_ERROR),
    (ProvisionError, ExitCode.PROVISION_ERROR),
    (SetupFailure, ExitCode.SETUP_ERROR),
    (MissingCapabilityError, ExitCode.CAPABILITY_ERROR),
)


def exit_code_for(exc: BaseException) -> int:
    """Map an exception to the process exit status.

    Args:
        exc: The exception that ended the run.

    Returns:
        The runner's status for TestFailure, 128 + signum for
        RunInterrupted, a class specific ExitCode for other operator-ci
        errors and GENERAL_ERROR otherwise.

    Example:
        >>> exit_code_for(BuildFailure("operator", 2))
        <ExitCode.BUILD_ERROR: 5>
    """
    if isinstance(exc, TestFailure):
        # A failing runner always reports non-zero; keep it that way
        return exc.returncode or ExitCode.GENERAL_ERROR
    if isinstance(exc, RunInterrupted):
        return SIGNAL_EXIT_BASE + exc.signum
    for error_type, code in _EXIT_CODES:
        if isinstance(exc, error_type):
            return code
    return ExitCode.GENERAL_ERROR


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Args:
        message: Error message to display.
        **context: Optional context key-value pairs to include.

    Example:
        error("Build step 'operator' failed", pass_name="build")
        # Output: Error: Build step 'operator' failed (pass_name=build)
    """
    context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    if context_str:
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: int = ExitCode.GENERAL_ERROR,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with a code.

    Raises:
        SystemExit: Always exits with the specified code.
    """
    error(message, **context)
    sys.exit(exit_code)


def warn(message: str, **context: str | int | bool | None) -> None:
    """Print a warning message to stderr."""
    context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    if context_str:
        full_message = f"Warning: {message} ({context_str})"
    else:
        full_message = f"Warning: {message}"

    click.echo(full_message, err=True)


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print an informational message to stderr.

    Used for progress updates that should not be captured by stdout
    redirection.
    """
    click.echo(message, err=True)


__all__ = [
    "SIGNAL_EXIT_BASE",
    "ExitCode",
    "error",
    "error_exit",
    "exit_code_for",
    "info",
    "success",
    "warn",
]
