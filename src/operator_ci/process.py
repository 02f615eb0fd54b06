"""External command execution.

Every external tool (go, gofmt, build scripts, upload clients) is invoked
through CommandRunner so that passes can be exercised with a fake runner
in tests. Commands are configured as argument templates; render_command
fills in the placeholders.

Example:
    >>> runner = CommandRunner(cwd=Path("."))
    >>> args = render_command(["go", "vet", "{packages}"], {"packages": ["./pkg/a"]})
    >>> runner.run(args).ok
    True
"""

from __future__ import annotations

import os
import re
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from operator_ci.errors import ConfigurationError, MissingCapabilityError

logger = structlog.get_logger(__name__)

# Exit status reported for commands killed by the runner's timeout (matches coreutils timeout)
TIMEOUT_RETURNCODE = 124

_WHOLE_PLACEHOLDER = re.compile(r"^\{([A-Za-z_]\w*)\}$")
# {{ and }} are literal braces; any other brace that does not wrap an identifier is left alone
_INLINE_TOKEN = re.compile(r"\{\{|\}\}|\{([A-Za-z_]\w*)\}")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an external command.

    Attributes:
        args: The argument list that was executed.
        returncode: Exit status of the command.
        stdout: Captured standard output (empty when not captured).
        stderr: Captured standard error (empty when not captured).
    """

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """True if the command exited with status 0."""
        return self.returncode == 0

    def output_lines(self) -> list[str]:
        """Return non-blank lines of stdout followed by stderr."""
        text = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return [line.rstrip() for line in text.splitlines() if line.strip()]


def _lookup(name: str, arg: str, values: Mapping[str, str | Sequence[str]]) -> str | Sequence[str]:
    if name not in values:
        known = ", ".join(sorted(values)) or "none"
        msg = f"Unknown placeholder '{{{name}}}' in command argument {arg!r} (known: {known})"
        raise ConfigurationError(msg)
    return values[name]


def render_command(
    template: Sequence[str],
    values: Mapping[str, str | Sequence[str]],
) -> list[str]:
    """Fill the placeholders of a command template.

    An argument that consists solely of a placeholder whose value is a
    sequence expands into one argument per item. Inside an argument only
    ``{identifier}`` tokens are placeholders: ``{{`` and ``}}`` render as
    literal braces, and other braces (``Test{A,B}``, ``a{2}``) are kept as
    written.

    Args:
        template: Argument list with ``{name}`` placeholders.
        values: Placeholder values.

    Returns:
        The rendered argument list.

    Raises:
        ConfigurationError: If an argument references an unknown
            placeholder, or uses a list placeholder inside a larger argument.

    Example:
        >>> render_command(["gofmt", "-l", "{files}"], {"files": ["a.go", "b.go"]})
        ['gofmt', '-l', 'a.go', 'b.go']
    """
    rendered: list[str] = []
    for arg in template:
        whole = _WHOLE_PLACEHOLDER.match(arg)
        if whole:
            value = _lookup(whole.group(1), arg, values)
            if isinstance(value, str):
                rendered.append(value)
            else:
                rendered.extend(str(item) for item in value)
            continue

        def _substitute(match: re.Match[str], arg: str = arg) -> str:
            token = match.group(0)
            if token in ("{{", "}}"):
                return token[0]
            value = _lookup(match.group(1), arg, values)
            if not isinstance(value, str):
                msg = f"List placeholder '{token}' must be a whole argument, got {arg!r}"
                raise ConfigurationError(msg)
            return value

        rendered.append(_INLINE_TOKEN.sub(_substitute, arg))
    return rendered


class CommandRunner:
    """Runs external commands synchronously.

    Args:
        cwd: Working directory for commands. Defaults to the process cwd.
        env: Extra environment variables applied to every command.
        timeout: Default timeout in seconds; None waits indefinitely.
    """

    def __init__(
        self,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        self.cwd = cwd
        self.env = dict(env or {})
        self.timeout = timeout

    def run(
        self,
        args: Sequence[str],
        *,
        capture: bool = True,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and wait for it to finish.

        Args:
            args: Command and arguments.
            capture: If True, capture stdout/stderr. If False, the command
                writes straight to this process's stdout/stderr.
            env: Extra environment variables for this command only.
            timeout: Timeout in seconds, overriding the runner default.

        Returns:
            CommandResult with the exit status and captured output.

        Raises:
            MissingCapabilityError: If the executable does not exist.
        """
        command = tuple(args)
        merged_env = {**os.environ, **self.env, **(env or {})}
        effective_timeout = timeout if timeout is not None else self.timeout

        logger.debug("command.started", args=list(command), cwd=str(self.cwd or "."))
        try:
            completed = subprocess.run(
                list(command),
                cwd=self.cwd,
                env=merged_env,
                capture_output=capture,
                text=True,
                timeout=effective_timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise MissingCapabilityError(command[0], "executable not found") from e
        except subprocess.TimeoutExpired:
            logger.warning("command.timeout", args=list(command), timeout=effective_timeout)
            return CommandResult(
                args=command,
                returncode=TIMEOUT_RETURNCODE,
                stderr=f"{command[0]} timed out after {effective_timeout}s",
            )

        logger.debug("command.completed", args=list(command), returncode=completed.returncode)
        return CommandResult(
            args=command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


__all__ = [
    "TIMEOUT_RETURNCODE",
    "CommandResult",
    "CommandRunner",
    "render_command",
]
