"""Unit tests for bounded waiting and TCP reachability."""

from __future__ import annotations

import socket

import pytest

from operator_ci.polling import PollingTimeoutError, tcp_reachable, wait_for_condition


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestWaitForCondition:
    """Tests for wait_for_condition."""

    def test_returns_when_condition_met(self) -> None:
        """The condition is polled until it holds."""
        clock = _FakeClock()
        answers = iter([False, False, True])

        assert wait_for_condition(
            lambda: next(answers), timeout=5.0, interval=1.0, sleep=clock.sleep, clock=clock.time
        )
        assert clock.sleeps == [1.0, 1.0]

    def test_times_out(self) -> None:
        """A condition that never holds raises PollingTimeoutError."""
        clock = _FakeClock()

        with pytest.raises(PollingTimeoutError, match="minio on localhost:9000"):
            wait_for_condition(
                lambda: False,
                timeout=2.0,
                interval=0.5,
                description="minio on localhost:9000",
                sleep=clock.sleep,
                clock=clock.time,
            )
        assert sum(clock.sleeps) == pytest.approx(2.0)

    def test_last_error_reported(self) -> None:
        """Exceptions from the condition are retried and reported on timeout."""
        clock = _FakeClock()

        def _boom() -> bool:
            raise ConnectionRefusedError("refused")

        with pytest.raises(PollingTimeoutError) as exc_info:
            wait_for_condition(_boom, timeout=1.0, sleep=clock.sleep, clock=clock.time)
        assert isinstance(exc_info.value.last_error, ConnectionRefusedError)


class TestTcpReachable:
    """Tests for tcp_reachable."""

    def test_listening_socket_reachable(self) -> None:
        """A listening local socket is reachable."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            port = server.getsockname()[1]
            assert tcp_reachable("127.0.0.1", port) is True

    def test_closed_port_unreachable(self) -> None:
        """A port nobody listens on is unreachable."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind(("127.0.0.1", 0))
            port = probe.getsockname()[1]
        assert tcp_reachable("127.0.0.1", port, timeout=0.2) is False
