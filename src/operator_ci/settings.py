"""Configuration models for operator-ci.

Two sources of configuration are combined for a run:

- Settings: values taken from the process environment (and an optional
  ``.env`` file) such as the pass selection, image references, cluster
  coordinates and object-store credentials.
- Toolchain: the command lines of every external tool the passes invoke,
  loaded from an optional YAML file. Defaults target a Go operator
  repository laid out with ``hack/`` build scripts and ``test/e2e`` suites.

Example:
    >>> settings = Settings()
    >>> settings.selection()
    ['format-verify', 'build', 'e2e-fast', 'e2e-slow', 'unit']
    >>> toolchain = Toolchain.from_yaml(Path("operator-ci.yaml"))
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from operator_ci.errors import ConfigurationError

DEFAULT_PASSES: tuple[str, ...] = (
    "format-verify",
    "build",
    "e2e-fast",
    "e2e-slow",
    "unit",
)

_SELECTION_SEPARATORS = re.compile(r"[\s,]+")


class Settings(BaseSettings):
    """Run settings read from environment variables.

    Environment Variables:
        PASSES: Pass selection, whitespace or comma separated.
        OPERATOR_IMAGE: Operator image reference (build and e2e passes).
        TEST_NAMESPACE: Namespace the e2e suites run in.
        KUBECONFIG: Path to the kubeconfig of the target cluster.
        KUBE_CONTEXT: Kubeconfig context to use (optional).
        TEST_S3_BUCKET: Bucket used by the e2e backup tests.
        STORAGE_ACCESS_KEY / STORAGE_SECRET_KEY: Object-store credentials for
            the storage emulator used by the unit pass.
        STORAGE_BUCKET: Bucket created on first use of the emulator.
        UPGRADE_FROM_IMAGE / UPGRADE_TO_IMAGE: Images for the upgrade pass.
        COVERAGE_FILE: Cumulative coverage report path.
        TOOLCHAIN_FILE: YAML file overriding tool command lines.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    passes: str | None = Field(default=None, description="Pass selection")
    operator_image: str | None = Field(default=None, description="Operator image reference")
    test_namespace: str | None = Field(default=None, description="E2E test namespace")
    kubeconfig: str | None = Field(default=None, description="Kubeconfig path")
    kube_context: str | None = Field(default=None, description="Kubeconfig context")
    test_s3_bucket: str | None = Field(default=None, description="E2E backup bucket")
    storage_access_key: str | None = Field(default=None, description="Object-store access key")
    storage_secret_key: SecretStr | None = Field(
        default=None,
        description="Object-store secret key",
    )
    storage_bucket: str = Field(default="operator-ci", description="Emulator bucket")
    upgrade_from_image: str | None = Field(default=None, description="Upgrade source image")
    upgrade_to_image: str | None = Field(default=None, description="Upgrade target image")
    coverage_file: Path = Field(default=Path("coverage.txt"), description="Coverage report")
    toolchain_file: Path = Field(
        default=Path("operator-ci.yaml"),
        description="Toolchain override file",
    )

    def selection(self) -> list[str]:
        """Return the ordered pass selection.

        Returns:
            Pass names from PASSES, or the canonical default order when
            PASSES is unset or blank.
        """
        if self.passes is None or not self.passes.strip():
            return list(DEFAULT_PASSES)
        return [name for name in _SELECTION_SEPARATORS.split(self.passes.strip()) if name]

    def missing(self, fields: Iterable[str]) -> list[str]:
        """Return environment variable names of required fields that are unset.

        Args:
            fields: Settings field names (e.g. "operator_image").

        Returns:
            Upper-case environment variable names, in the order given,
            without duplicates.
        """
        missing: list[str] = []
        for field in fields:
            value = getattr(self, field)
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            if value is None or (isinstance(value, str) and not value.strip()):
                env_name = field.upper()
                if env_name not in missing:
                    missing.append(env_name)
        return missing

    def template_values(self) -> dict[str, str]:
        """Values available to toolchain command templates."""
        return {
            "operator_image": self.operator_image or "",
            "namespace": self.test_namespace or "",
            "kubeconfig": self.kubeconfig or "",
            "context": self.kube_context or "",
            "bucket": self.test_s3_bucket or "",
            "from_image": self.upgrade_from_image or "",
            "to_image": self.upgrade_to_image or "",
        }


class StaticAnalysisTool(BaseModel):
    """An optional deeper static-analysis tool run by the format-verify pass.

    Attributes:
        name: Display name of the tool.
        command: Command template; ``{packages}`` expands to package paths.
        required: If True, a missing executable is fatal instead of skipped.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    command: list[str] = Field(..., min_length=1)
    required: bool = Field(default=False)


class BuildStep(BaseModel):
    """A named build command run by the build pass."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    command: list[str] = Field(..., min_length=1)


class Toolchain(BaseModel):
    """Command lines of the external tools invoked by the passes.

    Every command is an argument list. Arguments may contain placeholders
    that are filled in at run time; an argument consisting solely of a
    list placeholder (``{files}``, ``{packages}``) expands to several
    arguments.

    Example:
        >>> toolchain = Toolchain()
        >>> toolchain.unit_test[:2]
        ['go', 'test']
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_root: Path = Field(default=Path("."), description="Repository root")
    source_suffix: str = Field(default=".go", description="Source file suffix")
    exclude_dirs: list[str] = Field(
        default_factory=lambda: ["vendor", ".git", "_output"],
        description="Directory names skipped when collecting source files",
    )
    license_header_lines: int = Field(default=3, ge=1)
    license_header_pattern: str = Field(default=r"(Copyright|generated|GENERATED)")

    list_packages: list[str] = Field(default_factory=lambda: ["go", "list", "./..."])
    unit_exclude: list[str] = Field(
        default_factory=lambda: ["/test/e2e"],
        description="Package path fragments excluded from the unit pass",
    )

    gofmt: list[str] = Field(default_factory=lambda: ["gofmt", "-l", "{files}"])
    vet: list[str] = Field(default_factory=lambda: ["go", "vet", "{packages}"])
    static_analysis: list[StaticAnalysisTool] = Field(
        default_factory=lambda: [
            StaticAnalysisTool(name="gosimple", command=["gosimple", "{packages}"]),
            StaticAnalysisTool(name="unused", command=["unused", "{packages}"]),
        ]
    )
    codegen_verify: list[str] = Field(
        default_factory=lambda: ["./hack/k8s/codegen/verify-generated.sh"],
        description="Code generation verifier; empty to disable",
    )

    build_steps: list[BuildStep] = Field(
        default_factory=lambda: [
            BuildStep(name="operator", command=["hack/build/operator/build"]),
            BuildStep(name="backup-operator", command=["hack/build/backup-operator/build"]),
            BuildStep(name="restore-operator", command=["hack/build/restore-operator/build"]),
            BuildStep(
                name="operator-image",
                command=["docker", "build", "--tag", "{operator_image}", "."],
            ),
        ]
    )

    coverage_mode: str = Field(default="atomic")
    unit_test: list[str] = Field(
        default_factory=lambda: [
            "go",
            "test",
            "-race",
            "-covermode={mode}",
            "-coverprofile={profile}",
            "{package}",
        ]
    )
    coverage_upload: list[str] = Field(
        default_factory=lambda: ["codecov", "--file", "{report}"],
        description="Best-effort report upload; empty to disable",
    )

    e2e_fast: list[str] = Field(
        default_factory=lambda: [
            "go", "test", "./test/e2e/", "-timeout", "30m", "--race",
            "--kubeconfig", "{kubeconfig}",
            "--operator-image", "{operator_image}",
            "--namespace", "{namespace}",
        ]
    )
    e2e_slow: list[str] = Field(
        default_factory=lambda: [
            "go", "test", "./test/e2e/e2eslow", "-timeout", "3h", "--race",
            "--kubeconfig", "{kubeconfig}",
            "--operator-image", "{operator_image}",
            "--namespace", "{namespace}",
        ]
    )
    e2e_upgrade: list[str] = Field(
        default_factory=lambda: [
            "go", "test", "./test/e2e/upgradetest/", "-timeout", "30m",
            "--kubeconfig", "{kubeconfig}",
            "--kube-ns", "{namespace}",
            "--old-image", "{from_image}",
            "--new-image", "{to_image}",
        ]
    )

    storage_image: str = Field(default="minio/minio")
    storage_port: int = Field(default=9000, ge=1, le=65535)
    storage_settle_timeout: float = Field(default=10.0, gt=0)

    @classmethod
    def from_yaml(cls, path: Path) -> Toolchain:
        """Load a toolchain from YAML, falling back to defaults.

        Args:
            path: YAML file with toolchain overrides.

        Returns:
            Toolchain with the file's values applied over the defaults, or
            the defaults if the file does not exist.

        Raises:
            ConfigurationError: If the file is not valid YAML or does not
                match the toolchain schema.
        """
        if not path.exists():
            return cls()

        try:
            with path.open() as f:
                data: Any = yaml.safe_load(f)
        except yaml.YAMLError as e:
            msg = f"Toolchain file {path} is not valid YAML: {e}"
            raise ConfigurationError(msg) from e

        if data is None:
            return cls()
        if not isinstance(data, dict):
            msg = f"Toolchain file {path} must contain a mapping"
            raise ConfigurationError(msg)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            msg = f"Toolchain file {path} is invalid: {e}"
            raise ConfigurationError(msg) from e


__all__ = [
    "DEFAULT_PASSES",
    "BuildStep",
    "Settings",
    "StaticAnalysisTool",
    "Toolchain",
]
