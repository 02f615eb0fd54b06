"""Main entry point for the operator-ci CLI.

Commands:
    operator-ci run [PASS ...]: Run a pass selection (default: $PASSES or
        the canonical order format-verify build e2e-fast e2e-slow unit)
    operator-ci passes: List registered passes and their required environment

Example:
    $ operator-ci run
    $ PASSES="format-verify unit" operator-ci run
    $ operator-ci run build e2e-fast --json-logs
"""

from __future__ import annotations

import signal
import sys
from importlib.metadata import version as get_version
from pathlib import Path

import click
from pydantic import ValidationError

from operator_ci.cli.utils import (
    SIGNAL_EXIT_BASE,
    error_exit,
    exit_code_for,
    info,
    success,
    warn,
)
from operator_ci.errors import ConfigurationError, OperatorCIError, RunInterrupted
from operator_ci.passes import PassRegistry, PassRunner, build_default_registry, create_context
from operator_ci.settings import DEFAULT_PASSES, Settings, Toolchain
from operator_ci.telemetry import configure_logging

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _get_version() -> str:
    """Get the operator-ci package version.

    Returns:
        Version string from package metadata, or 'unknown' if not installed.
    """
    try:
        return get_version("operator-ci")
    except Exception:
        return "unknown"


def _registry(ctx: click.Context) -> PassRegistry:
    registry: PassRegistry | None = ctx.obj.get("registry")
    if registry is None:
        registry = build_default_registry()
        ctx.obj["registry"] = registry
    return registry


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        msg = f"Invalid environment: {e}"
        raise ConfigurationError(msg) from e


@click.group(
    name="operator-ci",
    help="operator-ci - Pass-driven verification for the operator repository.",
    epilog="Use 'operator-ci <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="operator-ci",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Root command group for the operator-ci CLI."""
    ctx.ensure_object(dict)


@cli.command(name="run")
@click.argument("pass_names", metavar="[PASS]...", nargs=-1)
@click.option(
    "--toolchain",
    "toolchain_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Toolchain YAML file (default: $TOOLCHAIN_FILE or operator-ci.yaml).",
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Minimum log level.",
)
@click.option(
    "--json-logs/--console-logs",
    default=False,
    help="Emit logs as JSON lines instead of console format.",
)
@click.pass_context
def run_command(
    ctx: click.Context,
    pass_names: tuple[str, ...],
    toolchain_path: Path | None,
    log_level: str,
    json_logs: bool,
) -> None:
    """Run passes in order, stopping at the first failure.

    PASS arguments override the PASSES environment variable.
    """
    configure_logging(log_level=log_level, json_output=json_logs)

    try:
        settings = _load_settings()
        if toolchain_path is not None and not toolchain_path.exists():
            warn("Toolchain file not found, using defaults", path=str(toolchain_path))
        toolchain = Toolchain.from_yaml(toolchain_path or settings.toolchain_file)
        selection = list(pass_names) or settings.selection()

        runner = PassRunner(_registry(ctx), create_context(settings, toolchain))
        result = runner.run(selection)
    except (OperatorCIError, RunInterrupted) as e:
        error_exit(
            str(e),
            exit_code=exit_code_for(e),
            pass_name=getattr(e, "pass_name", None),
        )

    success(f"Passes completed: {' '.join(result.executed)}")


@cli.command(name="passes")
@click.pass_context
def passes_command(ctx: click.Context) -> None:
    """List registered passes and the environment they require."""
    for registered in _registry(ctx).passes():
        marker = "*" if registered.name in DEFAULT_PASSES else " "
        click.echo(f"{marker} {registered.name:<14} {registered.description}")
        if registered.requires:
            required = ", ".join(field.upper() for field in registered.requires)
            click.echo(f"  {'':<14} requires: {required}")
    info("* = in the default selection")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the operator-ci CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(SIGNAL_EXIT_BASE + signal.SIGINT)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
