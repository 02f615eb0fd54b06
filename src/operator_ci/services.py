"""Dependency provisioning for backing services.

The provisioner idempotently ensures that a containerized service (such as
the object-storage emulator used by unit tests) is running before the
tests that need it execute. Services are long-lived: they are never
stopped by this system and are reused by later runs on the same host.

Running instances are tracked in an explicit ServiceRegistry. The registry
is consulted first; on a miss the container runtime is asked whether a
matching instance already runs (a previous run may have started it), and
only if none does is a new one started.

Example:
    >>> provisioner = DependencyProvisioner(DockerRuntime())
    >>> handle = provisioner.ensure(spec, setup=bucket_setup("operator-ci", ...))
    >>> handle.endpoint
    'localhost:9000'
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from opentelemetry import trace
from pydantic import BaseModel, ConfigDict, Field

from operator_ci.errors import (
    MissingCapabilityError,
    MissingConfigError,
    OperatorCIError,
    ProvisionError,
)
from operator_ci.polling import PollingTimeoutError, tcp_reachable, wait_for_condition

if TYPE_CHECKING:
    from docker import DockerClient

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

# Label put on containers started by operator-ci
SERVICE_LABEL = "operator-ci.service"


class ServiceState(str, Enum):
    """Observed state of a service."""

    RUNNING = "running"
    ABSENT = "absent"


class ServiceSpec(BaseModel):
    """Description of a containerized service dependency.

    The image tag is the service's identity: any running container of the
    same image counts as an instance of the service.

    Attributes:
        name: Symbolic service name (e.g. "minio").
        image: Container image reference.
        command: Container command arguments.
        ports: Mapping of container port to host port.
        environment: Container environment variables.
        required_environment: Environment keys that must be non-blank.
        host: Host the published ports are reachable on.
        settle_timeout: Seconds to wait for the first port to accept
            connections after start.
        setup_idempotent: Whether the first-use hook may safely run again.
            When set, the hook also runs for an instance adopted from an
            earlier run, which may have died before finishing its setup.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    command: list[str] = Field(default_factory=list)
    ports: dict[int, int] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)
    required_environment: list[str] = Field(default_factory=list)
    host: str = Field(default="localhost")
    settle_timeout: float = Field(default=10.0, gt=0)
    setup_idempotent: bool = Field(default=False)

    @property
    def host_port(self) -> int | None:
        """First published host port, or None if nothing is published."""
        return next(iter(self.ports.values()), None)

    @property
    def endpoint(self) -> str | None:
        """Reachability endpoint as host:port."""
        if self.host_port is None:
            return None
        return f"{self.host}:{self.host_port}"

    def missing_environment(self) -> list[str]:
        """Return required environment keys that are absent or blank."""
        return [
            key
            for key in self.required_environment
            if not self.environment.get(key, "").strip()
        ]


class ServiceHandle(BaseModel):
    """A provisioned service instance.

    Attributes:
        name: Service name from the spec.
        image: Image tag identifying the service.
        container_id: Runtime identifier of the container.
        endpoint: Reachability endpoint (host:port).
        state: Observed state.
        started_here: True if this process started the container.
        setup_done: True once first-use setup has completed.
    """

    name: str
    image: str
    container_id: str | None = None
    endpoint: str | None = None
    state: ServiceState = ServiceState.ABSENT
    started_here: bool = False
    setup_done: bool = False


class ServiceRegistry:
    """Explicit record of the services provisioned in this process."""

    def __init__(self) -> None:
        self._handles: dict[str, ServiceHandle] = {}

    def get(self, name: str) -> ServiceHandle | None:
        return self._handles.get(name)

    def record(self, handle: ServiceHandle) -> None:
        self._handles[handle.name] = handle

    def is_running(self, name: str) -> bool:
        handle = self._handles.get(name)
        return handle is not None and handle.state is ServiceState.RUNNING

    def handles(self) -> list[ServiceHandle]:
        return list(self._handles.values())


class ContainerRuntime(Protocol):
    """Container runtime operations needed by the provisioner."""

    def find_running(self, spec: ServiceSpec) -> str | None:
        """Return the id of a running instance of the spec's image, if any."""
        ...

    def start(self, spec: ServiceSpec) -> str:
        """Start a detached instance of the spec and return its id."""
        ...


class DockerRuntime:
    """ContainerRuntime backed by the docker SDK.

    The docker client is created lazily so that passes which never need a
    service do not require a docker daemon.

    Args:
        client_factory: Callable returning a DockerClient. Defaults to
            ``docker.from_env``.
    """

    def __init__(self, client_factory: Callable[[], DockerClient] | None = None) -> None:
        self._client_factory = client_factory
        self._client: DockerClient | None = None

    def _get_client(self) -> DockerClient:
        if self._client is not None:
            return self._client

        import docker
        from docker.errors import DockerException

        factory = self._client_factory or docker.from_env
        try:
            client = factory()
            client.ping()
        except DockerException as e:
            raise MissingCapabilityError("docker", f"container runtime unreachable: {e}") from e
        self._client = client
        return client

    def find_running(self, spec: ServiceSpec) -> str | None:
        from docker.errors import DockerException

        client = self._get_client()
        try:
            containers = client.containers.list(
                filters={"ancestor": spec.image, "status": "running"},
            )
        except DockerException as e:
            raise ProvisionError(spec.name, f"container lookup failed: {e}") from e
        if not containers:
            return None
        container_id: str = containers[0].id
        return container_id

    def start(self, spec: ServiceSpec) -> str:
        from docker.errors import DockerException

        client = self._get_client()
        ports: dict[str, Any] = {
            f"{container_port}/tcp": host_port for container_port, host_port in spec.ports.items()
        }
        try:
            container = client.containers.run(
                spec.image,
                command=spec.command or None,
                detach=True,
                ports=ports,
                environment=dict(spec.environment),
                labels={SERVICE_LABEL: spec.name},
            )
        except DockerException as e:
            raise ProvisionError(spec.name, f"container start failed: {e}") from e
        container_id: str = container.id
        return container_id


SetupHook = Callable[[ServiceHandle], None]


def _wait_until_reachable(spec: ServiceSpec) -> None:
    """Block until the spec's endpoint accepts TCP connections."""
    if spec.host_port is None:
        return
    port = spec.host_port
    try:
        wait_for_condition(
            lambda: tcp_reachable(spec.host, port),
            timeout=spec.settle_timeout,
            description=f"{spec.name} on {spec.endpoint}",
        )
    except PollingTimeoutError as e:
        raise ProvisionError(spec.name, str(e)) from e


class DependencyProvisioner:
    """Ensures service dependencies are running.

    Args:
        runtime: Container runtime used to observe and start services.
        registry: Registry of known services. A new one is created if omitted.
        wait: Settle wait called after a start. Defaults to polling the
            service endpoint for TCP reachability.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        registry: ServiceRegistry | None = None,
        *,
        wait: Callable[[ServiceSpec], None] | None = None,
    ) -> None:
        self.runtime = runtime
        self.registry = registry if registry is not None else ServiceRegistry()
        self._wait = wait or _wait_until_reachable

    def ensure(self, spec: ServiceSpec, setup: SetupHook | None = None) -> ServiceHandle:
        """Ensure a service matching the spec is running.

        Args:
            spec: The service to provision.
            setup: First-use hook run once after this process starts the
                service (e.g. creating a default bucket), and on adoption
                when the spec marks it idempotent.

        Returns:
            Handle of the running service.

        Raises:
            MissingConfigError: If required environment values are blank.
                Raised before the runtime is touched.
            MissingCapabilityError: If the container runtime is unavailable.
            ProvisionError: If the service could not be started, did not
                settle in time, or its first-use setup failed.
        """
        missing = spec.missing_environment()
        if missing:
            raise MissingConfigError(missing)

        with tracer.start_as_current_span("operator_ci.service.ensure") as span:
            span.set_attribute("operator_ci.service.name", spec.name)
            span.set_attribute("operator_ci.service.image", spec.image)

            handle = self.registry.get(spec.name)
            if handle is not None and handle.state is ServiceState.RUNNING:
                logger.debug("service.known", service=spec.name, container=handle.container_id)
                return self._run_setup(spec, handle, setup)

            existing = self.runtime.find_running(spec)
            if existing is not None:
                logger.info(
                    "service.already_running",
                    service=spec.name,
                    image=spec.image,
                    container=existing,
                )
                handle = ServiceHandle(
                    name=spec.name,
                    image=spec.image,
                    container_id=existing,
                    endpoint=spec.endpoint,
                    state=ServiceState.RUNNING,
                    started_here=False,
                    # Whoever started it ran first-use setup, unless it can be repeated
                    setup_done=not spec.setup_idempotent,
                )
                self.registry.record(handle)
                return self._run_setup(spec, handle, setup)

            logger.info("service.starting", service=spec.name, image=spec.image)
            container_id = self.runtime.start(spec)
            self._wait(spec)

            handle = ServiceHandle(
                name=spec.name,
                image=spec.image,
                container_id=container_id,
                endpoint=spec.endpoint,
                state=ServiceState.RUNNING,
                started_here=True,
            )
            self.registry.record(handle)
            logger.info(
                "service.started",
                service=spec.name,
                container=container_id,
                endpoint=spec.endpoint,
            )
            return self._run_setup(spec, handle, setup)

    def _run_setup(
        self,
        spec: ServiceSpec,
        handle: ServiceHandle,
        setup: SetupHook | None,
    ) -> ServiceHandle:
        if setup is None or handle.setup_done:
            return handle

        try:
            setup(handle)
        except OperatorCIError:
            raise
        except Exception as e:
            raise ProvisionError(spec.name, f"first-use setup failed: {e}") from e

        handle.setup_done = True
        logger.info("service.setup_completed", service=spec.name)
        return handle


__all__ = [
    "SERVICE_LABEL",
    "ContainerRuntime",
    "DependencyProvisioner",
    "DockerRuntime",
    "ServiceHandle",
    "ServiceRegistry",
    "ServiceSpec",
    "ServiceState",
    "SetupHook",
]
