"""Bounded waiting helpers.

Used by the dependency provisioner to give a freshly started service a
short settle period: the endpoint is polled for TCP reachability until it
answers or the settle timeout runs out. This is deliberately not a health
check protocol.

Example:
    >>> wait_for_condition(
    ...     lambda: tcp_reachable("localhost", 9000),
    ...     timeout=10.0,
    ...     description="minio on localhost:9000",
    ... )
    True
"""

from __future__ import annotations

import socket
import time
from collections.abc import Callable


class PollingTimeoutError(TimeoutError):
    """Raised when a polling operation times out.

    Attributes:
        description: What was being waited for
        timeout: How long we waited
        last_error: Last exception encountered during polling (if any)
    """

    def __init__(
        self,
        description: str,
        timeout: float,
        last_error: Exception | None = None,
    ) -> None:
        self.description = description
        self.timeout = timeout
        self.last_error = last_error
        message = f"Timeout waiting for {description} after {timeout:.1f}s"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)


def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 30.0,
    interval: float = 0.5,
    description: str = "condition",
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll until condition is True or timeout.

    Args:
        condition: Callable returning True when the condition is met.
        timeout: Maximum wait time in seconds. Defaults to 30.0.
        interval: Poll interval in seconds. Defaults to 0.5.
        description: Description for error messages.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).

    Returns:
        True once the condition is met.

    Raises:
        PollingTimeoutError: If the condition is not met within timeout.
    """
    start_time = clock()
    last_error: Exception | None = None

    while True:
        try:
            if condition():
                return True
        except Exception as e:  # noqa: BLE001
            last_error = e

        elapsed = clock() - start_time
        if elapsed >= timeout:
            raise PollingTimeoutError(description, timeout, last_error)

        # Don't sleep past the deadline
        sleep_time = min(interval, timeout - elapsed)
        if sleep_time > 0:
            sleep(sleep_time)


def tcp_reachable(host: str, port: int, timeout: float = 1.0) -> bool:
    """Return True if a TCP connection to host:port succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


__all__ = [
    "PollingTimeoutError",
    "tcp_reachable",
    "wait_for_condition",
]
