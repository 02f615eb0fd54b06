"""The unit pass: package tests with coverage against the storage emulator."""

from __future__ import annotations

import structlog

from operator_ci.coverage import CoverageAggregator, discover_packages, upload_report
from operator_ci.errors import TestFailure
from operator_ci.passes.registry import PassContext
from operator_ci.storage import StorageCredentials, bucket_setup, object_storage_spec

logger = structlog.get_logger(__name__)

UNIT_REQUIRES: tuple[str, ...] = ("storage_access_key", "storage_secret_key")


def storage_environment(
    endpoint: str | None,
    credentials: StorageCredentials,
    bucket: str,
) -> dict[str, str]:
    """Environment pointing the package tests at the storage emulator."""
    env = {
        "AWS_ACCESS_KEY_ID": credentials.access_key,
        "AWS_SECRET_ACCESS_KEY": credentials.secret_key.get_secret_value(),
        "AWS_REGION": credentials.region,
        "TEST_S3_BUCKET": bucket,
    }
    if endpoint:
        env["S3_ENDPOINT"] = f"http://{endpoint}"
    return env


def unit(ctx: PassContext) -> None:
    """Run unit tests for every non-e2e package and merge their coverage.

    The report is written and uploaded before a test failure is raised.

    Raises:
        MissingConfigError: If the storage credentials are not set.
        ProvisionError: If the storage emulator cannot be provisioned.
        TestFailure: If any package failed, with the first failing status.
    """
    settings = ctx.settings
    toolchain = ctx.toolchain

    credentials = StorageCredentials.from_settings(settings)
    handle = ctx.provisioner.ensure(
        object_storage_spec(settings, toolchain),
        setup=bucket_setup(settings.storage_bucket, credentials),
    )
    logger.info("unit.storage_ready", endpoint=handle.endpoint, started=handle.started_here)

    packages = discover_packages(ctx.runner, toolchain.list_packages, toolchain.unit_exclude)
    report_path = ctx.workdir / settings.coverage_file
    aggregator = CoverageAggregator(
        ctx.runner,
        toolchain.unit_test,
        output_path=report_path,
        workdir=ctx.workdir,
        mode=toolchain.coverage_mode,
        env=storage_environment(handle.endpoint, credentials, settings.storage_bucket),
    )
    report = aggregator.aggregate(packages)
    upload_report(ctx.runner, toolchain.coverage_upload, report_path)

    if not report.passed:
        raise TestFailure(
            "unit",
            report.returncode,
            packages=[outcome.package for outcome in report.failures],
        )
