"""Coverage aggregation across test packages.

Each package is tested in its own test-runner invocation with coverage
instrumentation enabled. The runner writes a profile whose first line is a
``mode:`` declaration; the aggregator appends the remaining lines to one
cumulative report that starts with a single shared header.

Profiles are written to the same path for every package, so each one is
removed as soon as it has been merged. A failing package is recorded and
the remaining packages are still processed: the report is complete even
when tests fail, and the failures are surfaced through the returned
CoverageReport.

Example:
    >>> aggregator = CoverageAggregator(
    ...     runner,
    ...     toolchain.unit_test,
    ...     output_path=Path("coverage.txt"),
    ...     workdir=Path("."),
    ... )
    >>> report = aggregator.aggregate(["example.com/op/pkg/a", "example.com/op/pkg/b"])
    >>> report.passed
    True
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

import structlog
from opentelemetry import trace
from pydantic import BaseModel, Field

from operator_ci.capabilities import CapabilityStatus, probe_tool
from operator_ci.errors import MissingCapabilityError, OperatorCIError
from operator_ci.process import CommandRunner, render_command

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_COVERAGE_MODE = "atomic"
PROFILE_FILENAME = "profile.out"
_MODE_PREFIX = "mode:"


class PackageOutcome(BaseModel):
    """Result of testing one package.

    Attributes:
        package: Package identifier.
        returncode: Exit status of the package's test run.
        profile_found: Whether the run produced a coverage profile.
        lines_merged: Number of profile lines appended to the report.
    """

    package: str
    returncode: int
    profile_found: bool = False
    lines_merged: int = Field(default=0, ge=0)

    @property
    def passed(self) -> bool:
        return self.returncode == 0


class CoverageReport(BaseModel):
    """Cumulative coverage report.

    Attributes:
        mode: Coverage mode declared in the header.
        lines: Merged profile lines, in package order.
        outcomes: Per-package test outcomes, in processing order.
    """

    mode: str = DEFAULT_COVERAGE_MODE
    lines: list[str] = Field(default_factory=list)
    outcomes: list[PackageOutcome] = Field(default_factory=list)

    @property
    def header(self) -> str:
        return f"{_MODE_PREFIX} {self.mode}"

    @property
    def failures(self) -> list[PackageOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.passed]

    @property
    def passed(self) -> bool:
        return not self.failures

    @property
    def returncode(self) -> int:
        """Exit status of the first failing package, or 0."""
        failures = self.failures
        return failures[0].returncode if failures else 0

    def render(self) -> str:
        """Render the report as profile text (header first)."""
        return "\n".join([self.header, *self.lines]) + "\n"


def profile_body(text: str) -> list[str]:
    """Return the lines of a coverage profile without its mode header.

    Args:
        text: Profile file contents.

    Returns:
        Non-blank profile lines, excluding a leading ``mode:`` line.

    Example:
        >>> profile_body("mode: atomic\\na.go:1.1,2.2 1 1\\n")
        ['a.go:1.1,2.2 1 1']
    """
    lines = text.splitlines()
    if lines and lines[0].startswith(_MODE_PREFIX):
        lines = lines[1:]
    return [line for line in lines if line.strip()]


class CoverageAggregator:
    """Runs package tests one at a time and merges their coverage profiles.

    Args:
        runner: Command runner used for the test invocations.
        test_command: Test command template. Placeholders: ``{package}``,
            ``{profile}``, ``{mode}``.
        output_path: Path of the cumulative report.
        workdir: Directory the per-package profile is written to.
        mode: Coverage mode declared in the report header.
        env: Extra environment for the test invocations.
    """

    def __init__(
        self,
        runner: CommandRunner,
        test_command: Sequence[str],
        output_path: Path,
        workdir: Path,
        mode: str = DEFAULT_COVERAGE_MODE,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.runner = runner
        self.test_command = list(test_command)
        self.output_path = output_path
        self.workdir = workdir
        self.mode = mode
        self.env = dict(env or {})

    @property
    def profile_path(self) -> Path:
        return self.workdir / PROFILE_FILENAME

    def aggregate(self, packages: Iterable[str]) -> CoverageReport:
        """Test every package and merge the coverage profiles.

        Args:
            packages: Package identifiers. Duplicates are ignored; packages
                are processed in lexicographic order.

        Returns:
            The cumulative CoverageReport, also written to output_path.
        """
        report = CoverageReport(mode=self.mode)
        ordered = sorted(set(packages))

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.output_path.write_text(report.header + "\n", encoding="utf-8")

        logger.info("coverage.started", packages=len(ordered), output=str(self.output_path))
        with tracer.start_as_current_span("operator_ci.coverage.aggregate") as span:
            span.set_attribute("operator_ci.coverage.packages", len(ordered))
            for package in ordered:
                outcome = self._test_package(package, report)
                report.outcomes.append(outcome)
            span.set_attribute("operator_ci.coverage.failures", len(report.failures))

        logger.info(
            "coverage.completed",
            packages=len(ordered),
            failed=[outcome.package for outcome in report.failures],
            lines=len(report.lines),
        )
        return report

    def _test_package(self, package: str, report: CoverageReport) -> PackageOutcome:
        profile = self.profile_path
        profile.unlink(missing_ok=True)

        args = render_command(
            self.test_command,
            {"package": package, "profile": str(profile), "mode": self.mode},
        )
        result = self.runner.run(args, capture=False, env=self.env)
        if not result.ok:
            logger.warning("coverage.package_failed", package=package, returncode=result.returncode)

        if not profile.exists():
            logger.debug("coverage.no_profile", package=package)
            return PackageOutcome(package=package, returncode=result.returncode)

        try:
            body = profile_body(profile.read_text(encoding="utf-8"))
            if body:
                with self.output_path.open("a", encoding="utf-8") as out:
                    out.write("\n".join(body) + "\n")
                report.lines.extend(body)
        finally:
            profile.unlink(missing_ok=True)

        return PackageOutcome(
            package=package,
            returncode=result.returncode,
            profile_found=True,
            lines_merged=len(body),
        )


def discover_packages(
    runner: CommandRunner,
    command: Sequence[str],
    exclude: Sequence[str] = (),
) -> list[str]:
    """List test packages, dropping excluded ones.

    Args:
        runner: Command runner.
        command: Package listing command (e.g. ``go list ./...``).
        exclude: Substrings; packages containing any of them are dropped.

    Returns:
        Sorted, unique package identifiers.

    Raises:
        OperatorCIError: If the listing command fails.
    """
    result = runner.run(list(command))
    if not result.ok:
        msg = f"Package listing failed ({' '.join(command)}): {result.stderr.strip()}"
        raise OperatorCIError(msg)

    packages = {
        line.strip()
        for line in result.stdout.splitlines()
        if line.strip() and not any(fragment in line for fragment in exclude)
    }
    return sorted(packages)


def upload_report(
    runner: CommandRunner,
    command: Sequence[str],
    report_path: Path,
) -> bool:
    """Upload the coverage report. Best-effort: never raises.

    Args:
        runner: Command runner.
        command: Upload command template (``{report}`` placeholder). Empty
            disables the upload.
        report_path: Report to upload.

    Returns:
        True if the upload command succeeded, False if it was skipped or
        failed.
    """
    if not command:
        logger.info("coverage.upload_skipped", reason="not_configured")
        return False

    if probe_tool(command[0], required=False) is not CapabilityStatus.AVAILABLE:
        logger.warning("coverage.upload_skipped", reason="tool_unavailable", tool=command[0])
        return False

    args = render_command(command, {"report": str(report_path)})
    try:
        result = runner.run(args)
    except MissingCapabilityError as e:
        logger.warning("coverage.upload_skipped", reason="tool_unavailable", error=str(e))
        return False

    if not result.ok:
        logger.warning(
            "coverage.upload_failed",
            returncode=result.returncode,
            output=result.output_lines()[-5:],
        )
        return False

    logger.info("coverage.uploaded", report=str(report_path))
    return True


__all__ = [
    "DEFAULT_COVERAGE_MODE",
    "PROFILE_FILENAME",
    "CoverageAggregator",
    "CoverageReport",
    "PackageOutcome",
    "discover_packages",
    "upload_report",
]
