"""Command-line interface for operator-ci."""

from __future__ import annotations

from operator_ci.cli.main import cli, main

__all__ = ["cli", "main"]
