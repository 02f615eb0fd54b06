"""The format-verify pass.

Runs the repository's static checks in a fixed order and stops at the
first one that reports findings:

1. license header on every source file
2. gofmt
3. go vet
4. optional deeper static analysis (gosimple, unused)
5. code-generation verifier

Deeper analysis tools are optional by default: an absent tool is skipped
with a warning, while an absent tool marked ``required`` in the toolchain
aborts the pass.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterator
from pathlib import Path

import structlog

from operator_ci.capabilities import CapabilityStatus, probe_tool
from operator_ci.coverage import discover_packages
from operator_ci.errors import MissingCapabilityError, VerificationFailure
from operator_ci.passes.registry import PassContext
from operator_ci.process import render_command
from operator_ci.settings import StaticAnalysisTool, Toolchain

logger = structlog.get_logger(__name__)


def iter_source_files(root: Path, suffix: str, exclude_dirs: list[str]) -> Iterator[Path]:
    """Yield source files under root, skipping excluded directory names."""
    excluded = set(exclude_dirs)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in excluded)
        for filename in sorted(filenames):
            if filename.endswith(suffix):
                yield Path(dirpath) / filename


def has_license_header(path: Path, pattern: re.Pattern[str], lines: int) -> bool:
    """Check whether the first ``lines`` lines of a file match the header pattern."""
    with path.open(encoding="utf-8", errors="replace") as f:
        for _ in range(lines):
            line = f.readline()
            if not line:
                break
            if pattern.search(line):
                return True
    return False


def check_license_headers(files: list[Path], toolchain: Toolchain) -> None:
    pattern = re.compile(toolchain.license_header_pattern)
    missing = [
        str(path)
        for path in files
        if not has_license_header(path, pattern, toolchain.license_header_lines)
    ]
    if missing:
        raise VerificationFailure("license-header", missing)


def check_gofmt(ctx: PassContext, files: list[Path]) -> None:
    if not files:
        return
    args = render_command(ctx.toolchain.gofmt, {"files": [str(path) for path in files]})
    result = ctx.runner.run(args)
    findings = result.output_lines()
    if findings or not result.ok:
        raise VerificationFailure("gofmt", findings)


def check_vet(ctx: PassContext, packages: list[str]) -> None:
    args = render_command(ctx.toolchain.vet, {"packages": packages})
    result = ctx.runner.run(args)
    if not result.ok:
        raise VerificationFailure("vet", result.output_lines())


def run_static_analysis(ctx: PassContext, tool: StaticAnalysisTool, packages: list[str]) -> bool:
    """Run one deeper analysis tool.

    Returns:
        True if the tool ran, False if it was skipped.

    Raises:
        MissingCapabilityError: If a required tool is absent.
        VerificationFailure: If the tool reports anything.
    """
    status = probe_tool(tool.command[0], required=tool.required)
    if status is CapabilityStatus.UNAVAILABLE_FATAL:
        raise MissingCapabilityError(tool.command[0])
    if status is CapabilityStatus.UNAVAILABLE_SKIP:
        logger.warning("verify.tool_skipped", tool=tool.name, executable=tool.command[0])
        return False

    result = ctx.runner.run(render_command(tool.command, {"packages": packages}))
    findings = result.output_lines()
    if findings or not result.ok:
        raise VerificationFailure(tool.name, findings)
    return True


def check_codegen(ctx: PassContext) -> None:
    if not ctx.toolchain.codegen_verify:
        return
    result = ctx.runner.run(ctx.toolchain.codegen_verify)
    if not result.ok:
        raise VerificationFailure("codegen", result.output_lines())


def format_verify(ctx: PassContext) -> None:
    """Run every static check; raises on the first failing one."""
    toolchain = ctx.toolchain
    root = ctx.workdir / toolchain.source_root
    files = list(iter_source_files(root, toolchain.source_suffix, toolchain.exclude_dirs))
    logger.info("verify.sources", files=len(files), root=str(root))

    check_license_headers(files, toolchain)
    check_gofmt(ctx, files)

    packages = discover_packages(
        ctx.runner,
        toolchain.list_packages,
        exclude=[f"/{name}/" for name in toolchain.exclude_dirs],
    )
    check_vet(ctx, packages)

    for tool in toolchain.static_analysis:
        run_static_analysis(ctx, tool, packages)

    check_codegen(ctx)
    logger.info("verify.passed", files=len(files), packages=len(packages))


__all__ = [
    "format_verify",
    "has_license_header",
    "iter_source_files",
]
