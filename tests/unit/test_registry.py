"""Unit tests for the pass registry and runner."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from operator_ci.errors import (
    BuildFailure,
    ConfigurationError,
    MissingConfigError,
    UnknownPassError,
)
from operator_ci.passes import PassContext, PassRegistry, PassRunner, build_default_registry
from operator_ci.settings import Settings


def _recording_registry(
    names: list[str],
    executed: list[str],
    failing: dict[str, Exception] | None = None,
) -> PassRegistry:
    """Registry whose passes append their name to ``executed``."""
    failing = failing or {}
    registry = PassRegistry()

    for name in names:

        def _action(ctx: PassContext, name: str = name) -> None:
            executed.append(name)
            if name in failing:
                raise failing[name]

        registry.register(name, _action, description=f"{name} pass")
    return registry


class TestPassRegistry:
    """Tests for PassRegistry."""

    def test_names_preserve_registration_order(self) -> None:
        """names() lists passes in registration order."""
        registry = _recording_registry(["c", "a", "b"], [])
        assert registry.names() == ["c", "a", "b"]

    def test_duplicate_registration_rejected(self) -> None:
        """Registering a name twice raises ConfigurationError."""
        registry = _recording_registry(["build"], [])
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register("build", lambda ctx: None)

    def test_resolve_returns_selection_order(self) -> None:
        """resolve() follows the selection, not the registration order."""
        registry = _recording_registry(["a", "b", "c"], [])
        resolved = registry.resolve(["c", "a"])
        assert [p.name for p in resolved] == ["c", "a"]

    def test_resolve_lists_every_unknown_name(self) -> None:
        """All unregistered names are reported together."""
        registry = _recording_registry(["a"], [])
        with pytest.raises(UnknownPassError) as exc_info:
            registry.resolve(["x", "a", "y"])
        assert exc_info.value.unknown == ["x", "y"]
        assert exc_info.value.available == ["a"]

    def test_resolve_empty_selection_rejected(self) -> None:
        """An empty selection is a configuration error."""
        registry = _recording_registry(["a"], [])
        with pytest.raises(ConfigurationError, match="empty"):
            registry.resolve([])

    def test_get_unknown_raises(self) -> None:
        """get() raises UnknownPassError for unregistered names."""
        with pytest.raises(UnknownPassError):
            PassRegistry().get("missing")

    def test_register_stores_requirements(self) -> None:
        """Required settings fields are kept on the pass."""
        registry = PassRegistry()
        registered = registry.register("build", lambda ctx: None, requires=["operator_image"])
        assert registered.requires == ("operator_image",)
        assert "build" in registry


class TestDefaultRegistry:
    """Tests for the built-in passes."""

    def test_builtin_passes_registered(self) -> None:
        """Every built-in pass is available."""
        registry = build_default_registry()
        assert registry.names() == [
            "format-verify",
            "build",
            "e2e-fast",
            "e2e-slow",
            "e2e-upgrade",
            "unit",
        ]

    def test_default_selection_resolves(self) -> None:
        """The canonical default selection only names registered passes."""
        registry = build_default_registry()
        resolved = registry.resolve(Settings().selection())
        assert [p.name for p in resolved] == [
            "format-verify",
            "build",
            "e2e-fast",
            "e2e-slow",
            "unit",
        ]

    def test_upgrade_requires_images(self) -> None:
        """The upgrade pass needs both upgrade images on top of the e2e variables."""
        upgrade = build_default_registry().get("e2e-upgrade")
        assert "upgrade_from_image" in upgrade.requires
        assert "upgrade_to_image" in upgrade.requires
        assert "kubeconfig" in upgrade.requires


class TestPassRunner:
    """Tests for PassRunner.run."""

    def test_runs_in_selection_order(self, make_context: Callable[..., PassContext]) -> None:
        """Passes execute in the order they are selected."""
        executed: list[str] = []
        registry = _recording_registry(["a", "b", "c"], executed)

        result = PassRunner(registry, make_context()).run(["c", "a", "b"])

        assert executed == ["c", "a", "b"]
        assert result.executed == ["c", "a", "b"]

    def test_failure_stops_later_passes(self, make_context: Callable[..., PassContext]) -> None:
        """A failing pass ends the run; later passes never execute."""
        executed: list[str] = []
        failure = BuildFailure("operator", 2)
        registry = _recording_registry(["a", "b", "c"], executed, failing={"b": failure})

        with pytest.raises(BuildFailure) as exc_info:
            PassRunner(registry, make_context()).run(["a", "b", "c"])

        assert executed == ["a", "b"]
        assert exc_info.value is failure
        assert exc_info.value.pass_name == "b"

    def test_unexpected_exception_tagged_and_propagated(
        self, make_context: Callable[..., PassContext]
    ) -> None:
        """Non-operator-ci exceptions propagate unchanged with the pass name attached."""
        executed: list[str] = []
        registry = _recording_registry(["a"], executed, failing={"a": RuntimeError("boom")})

        with pytest.raises(RuntimeError, match="boom") as exc_info:
            PassRunner(registry, make_context()).run(["a"])

        assert getattr(exc_info.value, "pass_name", None) == "a"

    def test_unknown_pass_rejected_before_execution(
        self, make_context: Callable[..., PassContext]
    ) -> None:
        """An unknown name anywhere in the selection prevents every pass from running."""
        executed: list[str] = []
        registry = _recording_registry(["a", "b"], executed)

        with pytest.raises(UnknownPassError):
            PassRunner(registry, make_context()).run(["a", "b", "nope"])

        assert executed == []

    def test_preflight_reports_all_missing_variables(
        self, make_context: Callable[..., PassContext]
    ) -> None:
        """Missing environment across the whole selection is reported before anything runs."""
        executed: list[str] = []
        registry = PassRegistry()
        registry.register("first", lambda ctx: executed.append("first"))
        registry.register(
            "build",
            lambda ctx: executed.append("build"),
            requires=("operator_image",),
        )
        registry.register(
            "e2e",
            lambda ctx: executed.append("e2e"),
            requires=("operator_image", "kubeconfig"),
        )

        with pytest.raises(MissingConfigError) as exc_info:
            PassRunner(registry, make_context()).run(["first", "build", "e2e"])

        assert exc_info.value.variables == ["OPERATOR_IMAGE", "KUBECONFIG"]
        assert executed == []

    def test_preflight_passes_when_configured(
        self, make_context: Callable[..., PassContext]
    ) -> None:
        """A pass whose requirements are set runs."""
        executed: list[str] = []
        registry = PassRegistry()
        registry.register(
            "build",
            lambda ctx: executed.append("build"),
            requires=("operator_image",),
        )
        context = make_context(settings=Settings(operator_image="example/operator:dev"))

        PassRunner(registry, context).run(["build"])

        assert executed == ["build"]

    def test_repeated_name_runs_each_time(self, make_context: Callable[..., PassContext]) -> None:
        """A pass selected twice executes twice."""
        executed: list[str] = []
        registry = _recording_registry(["a", "b"], executed)

        PassRunner(registry, make_context()).run(["a", "b", "a"])

        assert executed == ["a", "b", "a"]

    def test_passes_receive_shared_context(self, make_context: Callable[..., PassContext]) -> None:
        """Every pass sees the same context object."""
        seen: list[PassContext] = []
        registry = PassRegistry()
        registry.register("a", seen.append)
        registry.register("b", seen.append)
        context = make_context()

        PassRunner(registry, context).run(["a", "b"])

        assert seen == [context, context]
