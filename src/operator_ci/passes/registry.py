"""Pass registry and runner.

A pass is a named unit of verification work. Passes are registered once at
start-up and executed by the PassRunner in the order of a selection list.

The runner rejects a selection before anything runs if it names an
unregistered pass or if any selected pass lacks its required environment.
Passes then run one at a time and the first failure ends the run: the
error propagates to the caller and no later pass is attempted. Passes are
not isolated from each other (a later pass may depend on services or
binaries left by an earlier one), so selection order is part of the
contract.

Example:
    >>> registry = PassRegistry()
    >>> registry.register("build", build_pass, requires=("operator_image",))
    >>> PassRunner(registry, context).run(["build"])
    RunResult(executed=['build'])
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from opentelemetry import trace

from operator_ci.errors import ConfigurationError, MissingConfigError, UnknownPassError

if TYPE_CHECKING:
    from operator_ci.authorization import AuthorizationBootstrapper
    from operator_ci.process import CommandRunner
    from operator_ci.services import DependencyProvisioner
    from operator_ci.settings import Settings, Toolchain

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class PassContext:
    """State shared by all passes of a run.

    Attributes:
        settings: Environment settings.
        toolchain: External tool command lines.
        runner: Command runner for external tools.
        provisioner: Dependency provisioner for backing services.
        authorization: Builds the authorization bootstrapper for e2e passes.
        workdir: Repository working directory.
    """

    settings: Settings
    toolchain: Toolchain
    runner: CommandRunner
    provisioner: DependencyProvisioner
    authorization: Callable[[Settings], AuthorizationBootstrapper]
    workdir: Path = field(default_factory=Path.cwd)


PassAction = Callable[[PassContext], None]


@dataclass(frozen=True)
class Pass:
    """A registered pass.

    Attributes:
        name: Unique symbolic name.
        action: Callable executing the pass; raises on failure.
        description: One-line description for listings.
        requires: Settings fields that must be set before the run starts.
    """

    name: str
    action: PassAction
    description: str = ""
    requires: tuple[str, ...] = ()


@dataclass
class RunResult:
    """Passes executed by a successful run, in order."""

    executed: list[str] = field(default_factory=list)


class PassRegistry:
    """Maps pass names to passes, preserving registration order."""

    def __init__(self) -> None:
        self._passes: dict[str, Pass] = {}

    def register(
        self,
        name: str,
        action: PassAction,
        *,
        description: str = "",
        requires: Sequence[str] = (),
    ) -> Pass:
        """Register a pass.

        Raises:
            ConfigurationError: If a pass with the same name exists.
        """
        if name in self._passes:
            msg = f"Pass already registered: {name}"
            raise ConfigurationError(msg)
        registered = Pass(
            name=name,
            action=action,
            description=description,
            requires=tuple(requires),
        )
        self._passes[name] = registered
        return registered

    def get(self, name: str) -> Pass:
        try:
            return self._passes[name]
        except KeyError:
            raise UnknownPassError([name], self.names()) from None

    def names(self) -> list[str]:
        return list(self._passes)

    def passes(self) -> list[Pass]:
        return list(self._passes.values())

    def __contains__(self, name: object) -> bool:
        return name in self._passes

    def resolve(self, selection: Sequence[str]) -> list[Pass]:
        """Resolve a selection to passes, in selection order.

        Raises:
            UnknownPassError: Listing every unregistered name.
            ConfigurationError: If the selection is empty.
        """
        if not selection:
            msg = "Pass selection is empty"
            raise ConfigurationError(msg)

        unknown = [name for name in selection if name not in self._passes]
        if unknown:
            raise UnknownPassError(unknown, self.names())
        return [self._passes[name] for name in selection]


class PassRunner:
    """Executes a pass selection.

    Args:
        registry: Registered passes.
        context: Context shared by all passes.
    """

    def __init__(self, registry: PassRegistry, context: PassContext) -> None:
        self.registry = registry
        self.context = context

    def preflight(self, passes: Sequence[Pass]) -> None:
        """Check that every selected pass has its required environment.

        Raises:
            MissingConfigError: Naming every missing variable across the
                selection.
        """
        required: list[str] = []
        for selected in passes:
            required.extend(selected.requires)
        missing = self.context.settings.missing(required)
        if missing:
            raise MissingConfigError(missing)

    def run(self, selection: Sequence[str]) -> RunResult:
        """Run the selected passes in order.

        Args:
            selection: Ordered pass names.

        Returns:
            RunResult listing the executed passes.

        Raises:
            ConfigurationError: If the selection is invalid or required
                environment is missing. No pass has run.
            OperatorCIError: The first pass failure, with ``pass_name``
                set. Later passes have not run.
        """
        passes = self.registry.resolve(selection)
        self.preflight(passes)

        result = RunResult()
        logger.info("run.started", passes=[selected.name for selected in passes])
        for selected in passes:
            self._execute(selected)
            result.executed.append(selected.name)

        logger.info("run.completed", passes=result.executed)
        return result

    def _execute(self, selected: Pass) -> None:
        started = time.monotonic()
        log = logger.bind(pass_name=selected.name)
        log.info("pass.started")

        with tracer.start_as_current_span(f"operator_ci.pass.{selected.name}") as span:
            span.set_attribute("operator_ci.pass.name", selected.name)
            try:
                selected.action(self.context)
            except Exception as e:
                if getattr(e, "pass_name", None) is None:
                    e.pass_name = selected.name  # type: ignore[attr-defined]
                span.record_exception(e)
                log.error(
                    "pass.failed",
                    error_type=type(e).__name__,
                    duration_s=round(time.monotonic() - started, 2),
                )
                raise

        log.info("pass.completed", duration_s=round(time.monotonic() - started, 2))


__all__ = [
    "Pass",
    "PassAction",
    "PassContext",
    "PassRegistry",
    "PassRunner",
    "RunResult",
]
