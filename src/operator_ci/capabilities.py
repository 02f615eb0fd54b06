"""Capability probes for external tools.

Tools are never installed as a side effect of a run. A probe only reports
whether an executable is present and, if it is not, whether its absence
should be skipped or treated as fatal.

Example:
    >>> status = probe_tool("gosimple", required=False)
    >>> status is CapabilityStatus.UNAVAILABLE_SKIP
    True
"""

from __future__ import annotations

import shutil
from enum import Enum


class CapabilityStatus(Enum):
    """Result of probing for an external tool."""

    AVAILABLE = "available"
    UNAVAILABLE_SKIP = "unavailable-skip"
    UNAVAILABLE_FATAL = "unavailable-fatal"


def check_tool_available(executable: str) -> bool:
    """Check if an executable is available on PATH."""
    return shutil.which(executable) is not None


def probe_tool(executable: str, *, required: bool) -> CapabilityStatus:
    """Probe for an executable.

    Args:
        executable: Executable name or path.
        required: Whether the caller cannot proceed without the tool.

    Returns:
        AVAILABLE if found; otherwise UNAVAILABLE_FATAL for required tools
        and UNAVAILABLE_SKIP for optional ones.
    """
    if check_tool_available(executable):
        return CapabilityStatus.AVAILABLE
    if required:
        return CapabilityStatus.UNAVAILABLE_FATAL
    return CapabilityStatus.UNAVAILABLE_SKIP


__all__ = [
    "CapabilityStatus",
    "check_tool_available",
    "probe_tool",
]
