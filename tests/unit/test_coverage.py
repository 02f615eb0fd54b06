"""Unit tests for coverage aggregation."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeRunner, make_result

from operator_ci.coverage import (
    PROFILE_FILENAME,
    CoverageAggregator,
    CoverageReport,
    PackageOutcome,
    discover_packages,
    profile_body,
    upload_report,
)
from operator_ci.errors import MissingCapabilityError, OperatorCIError
from operator_ci.process import CommandResult

# Test command template: argv[1] is the package, argv[2] the profile path
_TEST_COMMAND = ["gotest", "{package}", "{profile}", "-covermode={mode}"]


def _profile_writer(
    profiles: dict[str, list[str] | None],
    returncodes: dict[str, int] | None = None,
) -> FakeRunner:
    """Runner that writes a profile for each package as the test tool would.

    A package mapped to None produces no profile.
    """
    returncodes = returncodes or {}

    def _handler(args: list[str]) -> CommandResult:
        package, profile = args[1], Path(args[2])
        assert not profile.exists(), "stale profile left from a previous package"
        lines = profiles.get(package)
        if lines is not None:
            profile.write_text("\n".join(["mode: atomic", *lines]) + "\n", encoding="utf-8")
        return make_result(args, returncode=returncodes.get(package, 0))

    return FakeRunner(_handler)


def _aggregator(runner: FakeRunner, tmp_path: Path) -> CoverageAggregator:
    return CoverageAggregator(
        runner,  # type: ignore[arg-type]
        _TEST_COMMAND,
        output_path=tmp_path / "coverage.txt",
        workdir=tmp_path,
    )


class TestProfileBody:
    """Tests for profile_body."""

    def test_strips_mode_header(self) -> None:
        """The mode line is removed; data lines are kept in order."""
        text = "mode: atomic\na.go:1.1,2.2 1 1\na.go:3.1,4.2 1 0\n"
        assert profile_body(text) == ["a.go:1.1,2.2 1 1", "a.go:3.1,4.2 1 0"]

    def test_header_only(self) -> None:
        """A profile with only a header has no body."""
        assert profile_body("mode: atomic\n") == []

    def test_no_header(self) -> None:
        """Text without a header is kept as is, minus blank lines."""
        assert profile_body("a.go:1.1,2.2 1 1\n\n") == ["a.go:1.1,2.2 1 1"]


class TestCoverageAggregator:
    """Tests for CoverageAggregator.aggregate."""

    def test_merges_profiles_under_one_header(self, tmp_path: Path) -> None:
        """A's lines are merged; B without a profile contributes nothing."""
        runner = _profile_writer({"pkg/a": ["a.go:1.1,2.2 1 1", "a.go:3.1,4.2 1 0"], "pkg/b": None})

        report = _aggregator(runner, tmp_path).aggregate(["pkg/b", "pkg/a"])

        content = (tmp_path / "coverage.txt").read_text(encoding="utf-8")
        assert content == "mode: atomic\na.go:1.1,2.2 1 1\na.go:3.1,4.2 1 0\n"
        assert content.count("mode:") == 1
        assert report.lines == ["a.go:1.1,2.2 1 1", "a.go:3.1,4.2 1 0"]
        assert report.render() == content
        assert report.passed is True

    def test_packages_processed_in_lexicographic_order(self, tmp_path: Path) -> None:
        """Packages run sorted and de-duplicated."""
        runner = _profile_writer({})

        _aggregator(runner, tmp_path).aggregate(["pkg/c", "pkg/a", "pkg/b", "pkg/a"])

        assert [call[1] for call in runner.calls] == ["pkg/a", "pkg/b", "pkg/c"]

    def test_failure_does_not_stop_later_packages(self, tmp_path: Path) -> None:
        """A failing package is recorded and the next one still runs."""
        runner = _profile_writer(
            {"pkg/a": ["a.go:1.1,2.2 1 1"], "pkg/b": ["b.go:1.1,2.2 1 1"]},
            returncodes={"pkg/a": 1},
        )

        report = _aggregator(runner, tmp_path).aggregate(["pkg/a", "pkg/b"])

        assert [call[1] for call in runner.calls] == ["pkg/a", "pkg/b"]
        assert report.passed is False
        assert report.returncode == 1
        assert [outcome.package for outcome in report.failures] == ["pkg/a"]
        assert report.lines == ["a.go:1.1,2.2 1 1", "b.go:1.1,2.2 1 1"]

    def test_no_profile_left_behind(self, tmp_path: Path) -> None:
        """The per-package profile is removed after every merge."""
        runner = _profile_writer({"pkg/a": ["a.go:1.1,2.2 1 1"], "pkg/b": ["b.go:1.1,2.2 1 1"]})

        _aggregator(runner, tmp_path).aggregate(["pkg/a", "pkg/b"])

        assert not (tmp_path / PROFILE_FILENAME).exists()

    def test_stale_profile_removed_before_first_package(self, tmp_path: Path) -> None:
        """A profile left by an interrupted run is not merged."""
        (tmp_path / PROFILE_FILENAME).write_text("mode: atomic\nstale.go:1.1,2.2 1 1\n")
        runner = _profile_writer({"pkg/a": None})

        report = _aggregator(runner, tmp_path).aggregate(["pkg/a"])

        assert report.lines == []

    def test_report_truncated_between_runs(self, tmp_path: Path) -> None:
        """Each run starts a fresh report."""
        runner = _profile_writer({"pkg/a": ["a.go:1.1,2.2 1 1"]})
        aggregator = _aggregator(runner, tmp_path)

        aggregator.aggregate(["pkg/a"])
        aggregator.aggregate(["pkg/a"])

        content = (tmp_path / "coverage.txt").read_text(encoding="utf-8")
        assert content == "mode: atomic\na.go:1.1,2.2 1 1\n"

    def test_command_rendered_with_mode(self, tmp_path: Path) -> None:
        """The coverage mode is passed to the test command."""
        runner = _profile_writer({})

        CoverageAggregator(
            runner,  # type: ignore[arg-type]
            _TEST_COMMAND,
            output_path=tmp_path / "out" / "coverage.txt",
            workdir=tmp_path,
            mode="count",
        ).aggregate(["pkg/a"])

        assert runner.calls[0][3] == "-covermode=count"
        assert (tmp_path / "out" / "coverage.txt").read_text() == "mode: count\n"

    def test_environment_passed_to_tests(self, tmp_path: Path) -> None:
        """Extra environment reaches every test invocation."""
        runner = _profile_writer({})

        CoverageAggregator(
            runner,  # type: ignore[arg-type]
            _TEST_COMMAND,
            output_path=tmp_path / "coverage.txt",
            workdir=tmp_path,
            env={"S3_ENDPOINT": "http://localhost:9000"},
        ).aggregate(["pkg/a", "pkg/b"])

        assert all(env == {"S3_ENDPOINT": "http://localhost:9000"} for env in runner.envs)

    def test_empty_package_list(self, tmp_path: Path) -> None:
        """No packages still produces a header-only report."""
        report = _aggregator(FakeRunner(), tmp_path).aggregate([])

        assert report.passed is True
        assert (tmp_path / "coverage.txt").read_text() == "mode: atomic\n"


class TestCoverageReport:
    """Tests for CoverageReport."""

    def test_returncode_of_first_failure(self) -> None:
        """The report's status is that of the first failing package."""
        report = CoverageReport(
            outcomes=[
                PackageOutcome(package="a", returncode=0),
                PackageOutcome(package="b", returncode=2),
                PackageOutcome(package="c", returncode=1),
            ]
        )
        assert report.returncode == 2
        assert report.header == "mode: atomic"


class TestDiscoverPackages:
    """Tests for discover_packages."""

    def test_excludes_and_sorts(self) -> None:
        """Excluded fragments are dropped; the rest is sorted and unique."""
        stdout = "\n".join(
            [
                "example.com/op/pkg/b",
                "example.com/op/test/e2e",
                "example.com/op/test/e2e/e2eslow",
                "example.com/op/pkg/a",
                "example.com/op/pkg/a",
                "",
            ]
        )
        runner = FakeRunner(lambda args: make_result(args, stdout=stdout))

        packages = discover_packages(runner, ["go", "list", "./..."], ["/test/e2e"])  # type: ignore[arg-type]

        assert packages == ["example.com/op/pkg/a", "example.com/op/pkg/b"]

    def test_listing_failure_raises(self) -> None:
        """A failing listing command is an error."""
        runner = FakeRunner(lambda args: make_result(args, returncode=1, stderr="no go.mod"))

        with pytest.raises(OperatorCIError, match="no go.mod"):
            discover_packages(runner, ["go", "list", "./..."])  # type: ignore[arg-type]


class TestUploadReport:
    """Tests for the best-effort report upload."""

    def test_not_configured(self, fake_runner: FakeRunner, tmp_path: Path) -> None:
        """An empty command skips the upload."""
        assert upload_report(fake_runner, [], tmp_path / "coverage.txt") is False  # type: ignore[arg-type]
        assert fake_runner.calls == []

    def test_tool_missing(
        self, fake_runner: FakeRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A missing upload tool is skipped without raising."""
        monkeypatch.setattr("operator_ci.capabilities.shutil.which", lambda name: None)

        result = upload_report(fake_runner, ["codecov", "--file", "{report}"], tmp_path / "c.txt")  # type: ignore[arg-type]

        assert result is False
        assert fake_runner.calls == []

    def test_upload_failure_swallowed(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A failing upload is reported as False, never raised."""
        monkeypatch.setattr("operator_ci.capabilities.shutil.which", lambda name: f"/bin/{name}")
        runner = FakeRunner(lambda args: make_result(args, returncode=2, stderr="rate limited"))

        result = upload_report(runner, ["codecov", "--file", "{report}"], tmp_path / "c.txt")  # type: ignore[arg-type]

        assert result is False
        assert runner.calls == [["codecov", "--file", str(tmp_path / "c.txt")]]

    def test_executable_vanished(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An executable that disappears after probing is still not an error."""
        monkeypatch.setattr("operator_ci.capabilities.shutil.which", lambda name: f"/bin/{name}")

        def _missing(args: list[str]) -> CommandResult:
            raise MissingCapabilityError(args[0], "executable not found")

        result = upload_report(FakeRunner(_missing), ["codecov"], tmp_path / "c.txt")  # type: ignore[arg-type]

        assert result is False

    def test_upload_success(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A successful upload returns True."""
        monkeypatch.setattr("operator_ci.capabilities.shutil.which", lambda name: f"/bin/{name}")
        runner = FakeRunner()

        assert upload_report(runner, ["codecov", "{report}"], tmp_path / "c.txt") is True  # type: ignore[arg-type]
