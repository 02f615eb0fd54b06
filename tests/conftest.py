"""Shared fixtures for operator-ci tests.

Tests run without external services (no docker, no cluster, no go
toolchain). Fakes for those live in fakes.py.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog
from click.testing import CliRunner
from fakes import FakeAuthorizationApi, FakeRunner, FakeRuntime

from operator_ci.authorization import AuthorizationBootstrapper
from operator_ci.passes import PassContext
from operator_ci.services import DependencyProvisioner
from operator_ci.settings import Settings, Toolchain

_ENV_VARS = (
    "PASSES",
    "OPERATOR_IMAGE",
    "TEST_NAMESPACE",
    "KUBECONFIG",
    "KUBE_CONTEXT",
    "TEST_S3_BUCKET",
    "STORAGE_ACCESS_KEY",
    "STORAGE_SECRET_KEY",
    "STORAGE_BUCKET",
    "UPGRADE_FROM_IMAGE",
    "UPGRADE_TO_IMAGE",
    "COVERAGE_FILE",
    "TOOLCHAIN_FILE",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the caller's environment and any .env file."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Undo logging configuration done by CLI invocations."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Provide a FakeRunner that succeeds for every command."""
    return FakeRunner()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def full_settings() -> Settings:
    """Settings with every variable used by the built-in passes set."""
    return Settings(
        operator_image="quay.io/example/operator:dev",
        test_namespace="e2e",
        kubeconfig="/tmp/kubeconfig",
        test_s3_bucket="backups",
        storage_access_key="minio-access",
        storage_secret_key="minio-secret",
        upgrade_from_image="quay.io/example/operator:v0.9",
        upgrade_to_image="quay.io/example/operator:dev",
    )


@pytest.fixture
def make_context(
    tmp_path: Path,
    fake_runner: FakeRunner,
) -> Callable[..., PassContext]:
    """Factory building a PassContext wired to fakes.

    Keyword arguments override the defaults: settings, toolchain, runner,
    runtime, authorization_api.
    """

    def _make(**overrides: Any) -> PassContext:
        settings = overrides.get("settings") or Settings()
        api = overrides.get("authorization_api") or FakeAuthorizationApi(enabled=False)

        def _authorization(run_settings: Settings) -> AuthorizationBootstrapper:
            return AuthorizationBootstrapper(
                run_settings.kubeconfig,
                namespace=run_settings.test_namespace or "",
                api_factory=lambda: api,
            )

        return PassContext(
            settings=settings,
            toolchain=overrides.get("toolchain") or Toolchain(),
            runner=overrides.get("runner") or fake_runner,
            provisioner=DependencyProvisioner(
                overrides.get("runtime") or FakeRuntime(),
                wait=lambda spec: None,
            ),
            authorization=_authorization,
            workdir=tmp_path,
        )

    return _make
