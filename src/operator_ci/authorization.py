"""Authorization bootstrap for end-to-end runs.

Clusters that enforce pod security policies reject the operator's test
pods unless the test namespace's service account may ``use`` a policy.
The bootstrapper probes the target cluster for the policy resource type
and, when it is served, creates a ClusterRole granting ``use`` plus a
RoleBinding for the namespace's default service account for the duration
of one scoped execution.

Once the grant exists its release is guaranteed on every exit path of the
scope: normal completion, an exception from the wrapped body, Ctrl-C, and
SIGTERM/SIGHUP (converted to RunInterrupted while the scope is active).

Example:
    >>> bootstrapper = AuthorizationBootstrapper(kubeconfig, namespace="e2e")
    >>> with bootstrapper.scope() as grant:
    ...     run_e2e_suite()
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from types import FrameType
from typing import Any, NoReturn, Protocol

import structlog

from operator_ci.errors import OperatorCIError, RunInterrupted, SetupFailure

logger = structlog.get_logger(__name__)

POLICY_GROUP = "policy"
POLICY_VERSION = "v1beta1"
POLICY_RESOURCE = "podsecuritypolicies"

GRANT_NAME = "operator-ci-psp"
SERVICE_ACCOUNT = "default"

# Signals converted to RunInterrupted while a grant is held (SIGINT already raises KeyboardInterrupt)
GUARDED_SIGNALS: tuple[signal.Signals, ...] = tuple(
    sig for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGHUP", None)) if sig
)

_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409


def cluster_role_manifest(name: str) -> dict[str, Any]:
    """ClusterRole allowing ``use`` of pod security policies."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": {
            "name": name,
            "labels": {"app.kubernetes.io/managed-by": "operator-ci"},
        },
        "rules": [
            {
                "apiGroups": [POLICY_GROUP],
                "resources": [POLICY_RESOURCE],
                "verbs": ["use"],
            }
        ],
    }


def role_binding_manifest(name: str, namespace: str, role_name: str) -> dict[str, Any]:
    """RoleBinding of a ClusterRole to the namespace's default service account."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "RoleBinding",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {"app.kubernetes.io/managed-by": "operator-ci"},
        },
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": role_name,
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": SERVICE_ACCOUNT,
                "namespace": namespace,
            }
        ],
    }


class AuthorizationApi(Protocol):
    """Cluster operations needed by the bootstrapper.

    Create methods return False when the object already exists; delete
    methods return False when it is already gone. Any other failure raises.
    """

    def policy_enabled(self) -> bool: ...

    def create_cluster_role(self, manifest: dict[str, Any]) -> bool: ...

    def create_role_binding(self, namespace: str, manifest: dict[str, Any]) -> bool: ...

    def delete_role_binding(self, name: str, namespace: str) -> bool: ...

    def delete_cluster_role(self, name: str) -> bool: ...


class KubernetesAuthorizationApi:
    """AuthorizationApi backed by the kubernetes python client.

    Args:
        kubeconfig: Path to kubeconfig file, or None to use in-cluster
            configuration (falling back to the default kubeconfig).
        context: Kubeconfig context, or None for the current context.

    Raises:
        SetupFailure: If no cluster configuration can be loaded.
    """

    def __init__(self, kubeconfig: str | None, context: str | None = None) -> None:
        from kubernetes import client
        from kubernetes import config as k8s_config

        try:
            if kubeconfig:
                api_client = k8s_config.new_client_from_config(
                    config_file=kubeconfig,
                    context=context,
                )
            else:
                try:
                    k8s_config.load_incluster_config()
                except k8s_config.ConfigException:
                    k8s_config.load_kube_config(context=context)
                api_client = client.ApiClient()
        except (k8s_config.ConfigException, OSError) as e:
            msg = f"cannot load cluster configuration: {e}"
            raise SetupFailure(msg) from e

        self._custom = client.CustomObjectsApi(api_client)
        self._rbac = client.RbacAuthorizationV1Api(api_client)

    def policy_enabled(self) -> bool:
        from kubernetes.client import ApiException

        try:
            resources = self._custom.get_api_resources(POLICY_GROUP, POLICY_VERSION)
        except ApiException as e:
            if e.status == _HTTP_NOT_FOUND:
                return False
            raise
        return any(resource.name == POLICY_RESOURCE for resource in resources.resources or [])

    def create_cluster_role(self, manifest: dict[str, Any]) -> bool:
        from kubernetes.client import ApiException

        try:
            self._rbac.create_cluster_role(body=manifest)
        except ApiException as e:
            if e.status == _HTTP_CONFLICT:
                return False
            raise
        return True

    def create_role_binding(self, namespace: str, manifest: dict[str, Any]) -> bool:
        from kubernetes.client import ApiException

        try:
            self._rbac.create_namespaced_role_binding(namespace=namespace, body=manifest)
        except ApiException as e:
            if e.status == _HTTP_CONFLICT:
                return False
            raise
        return True

    def delete_role_binding(self, name: str, namespace: str) -> bool:
        from kubernetes.client import ApiException

        try:
            self._rbac.delete_namespaced_role_binding(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == _HTTP_NOT_FOUND:
                return False
            raise
        return True

    def delete_cluster_role(self, name: str) -> bool:
        from kubernetes.client import ApiException

        try:
            self._rbac.delete_cluster_role(name=name)
        except ApiException as e:
            if e.status == _HTTP_NOT_FOUND:
                return False
            raise
        return True


def _describe_api_error(exc: Exception) -> str:
    """Extract status and reason from a kubernetes ApiException."""
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None)

    if status is not None and reason is not None:
        return f"{reason} (HTTP {status})"
    if reason is not None:
        return str(reason)
    return str(exc) or type(exc).__name__


class AuthorizationGrant:
    """The ClusterRole/RoleBinding pair held for one scope.

    The grant exists before either object does. Each flag is raised just
    before the create call and lowered again if the call fails, so an
    interrupt arriving while a call is in flight still leads to a delete
    attempt. Deleting an object that does not exist is harmless.

    Attributes:
        role_name: Name of the ClusterRole.
        binding_name: Name of the RoleBinding.
        namespace: Namespace of the RoleBinding.
        role_created: True if this process created (or may have created)
            the ClusterRole.
        binding_created: True once the RoleBinding exists (or may exist).
        released: True once release() has run.
    """

    def __init__(
        self,
        api: AuthorizationApi,
        role_name: str,
        binding_name: str,
        namespace: str,
        *,
        role_created: bool = False,
        binding_created: bool = False,
    ) -> None:
        self._api = api
        self.role_name = role_name
        self.binding_name = binding_name
        self.namespace = namespace
        self.role_created = role_created
        self.binding_created = binding_created
        self.released = False

    def release(self) -> None:
        """Delete whatever part of the grant is held. Runs at most once.

        The binding goes first, then the role. A role adopted from an
        earlier run is only deleted together with a complete grant.
        Deletion failures are logged and do not raise, so that they never
        mask the outcome of the wrapped execution.
        """
        if self.released:
            return
        self.released = True

        if not (self.binding_created or self.role_created):
            return

        if self.binding_created:
            try:
                self._api.delete_role_binding(self.binding_name, self.namespace)
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "authorization.release_failed",
                    kind="RoleBinding",
                    name=self.binding_name,
                    namespace=self.namespace,
                    error=_describe_api_error(e),
                )
        try:
            self._api.delete_cluster_role(self.role_name)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "authorization.release_failed",
                kind="ClusterRole",
                name=self.role_name,
                error=_describe_api_error(e),
            )
        logger.info(
            "authorization.released",
            role=self.role_name,
            binding=self.binding_name if self.binding_created else None,
            namespace=self.namespace,
        )


def _raise_interrupted(signum: int, frame: FrameType | None) -> None:  # noqa: ARG001
    raise RunInterrupted(signum)


@contextmanager
def _signal_handlers(handler: Any) -> Iterator[None]:
    """Temporarily install a handler for the guarded signals.

    Only the main thread may install signal handlers; elsewhere this is a
    no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {sig: signal.getsignal(sig) for sig in GUARDED_SIGNALS}
    for sig in GUARDED_SIGNALS:
        signal.signal(sig, handler)
    try:
        yield
    finally:
        for sig, prior in previous.items():
            signal.signal(sig, prior)


@contextmanager
def _signals_ignored() -> Iterator[None]:
    """Ignore SIGINT and the guarded signals (used while releasing a grant)."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    signals = (signal.SIGINT, *GUARDED_SIGNALS)
    previous = {sig: signal.getsignal(sig) for sig in signals}
    for sig in signals:
        signal.signal(sig, signal.SIG_IGN)
    try:
        yield
    finally:
        for sig, prior in previous.items():
            signal.signal(sig, prior)


class AuthorizationBootstrapper:
    """Scopes an execution with the authorization grant the cluster needs.

    Args:
        kubeconfig: Path to the target cluster's kubeconfig.
        namespace: Namespace the e2e suites run in.
        context: Kubeconfig context, or None for the current context.
        api_factory: Callable building the AuthorizationApi. Defaults to
            KubernetesAuthorizationApi(kubeconfig, context).
        grant_name: Name used for both the ClusterRole and the RoleBinding.
    """

    def __init__(
        self,
        kubeconfig: str | None,
        namespace: str,
        context: str | None = None,
        api_factory: Callable[[], AuthorizationApi] | None = None,
        grant_name: str = GRANT_NAME,
    ) -> None:
        self.kubeconfig = kubeconfig
        self.namespace = namespace
        self.context = context
        self.grant_name = grant_name
        self._api_factory = api_factory or (
            lambda: KubernetesAuthorizationApi(self.kubeconfig, self.context)
        )

    @contextmanager
    def scope(self) -> Iterator[AuthorizationGrant | None]:
        """Run the enclosed block with the authorization grant in place.

        Yields:
            The AuthorizationGrant, or None if the cluster does not serve
            the policy resource and no grant is needed.

        Raises:
            SetupFailure: If probing the cluster or creating the grant
                fails. The enclosed block does not run.
        """
        api = self._api_factory()

        try:
            enabled = api.policy_enabled()
        except OperatorCIError:
            raise
        except Exception as e:
            msg = f"cannot probe for {POLICY_RESOURCE}: {_describe_api_error(e)}"
            raise SetupFailure(msg) from e

        if not enabled:
            logger.info("authorization.not_required", resource=POLICY_RESOURCE)
            yield None
            return

        with _signal_handlers(_raise_interrupted):
            grant = AuthorizationGrant(api, self.grant_name, self.grant_name, self.namespace)
            try:
                self._acquire(api, grant)
                yield grant
            finally:
                with _signals_ignored():
                    grant.release()

    def _acquire(self, api: AuthorizationApi, grant: AuthorizationGrant) -> None:
        """Create the ClusterRole and RoleBinding, recording each on the grant.

        Whatever was created is released by the caller, including when
        creation itself fails.
        """
        try:
            grant.role_created = True
            grant.role_created = api.create_cluster_role(cluster_role_manifest(self.grant_name))
        except Exception as e:
            grant.role_created = False
            self._raise_creation_failure(e)

        try:
            grant.binding_created = True
            api.create_role_binding(
                self.namespace,
                role_binding_manifest(self.grant_name, self.namespace, self.grant_name),
            )
        except Exception as e:
            grant.binding_created = False
            self._raise_creation_failure(e)

        logger.info(
            "authorization.granted",
            role=self.grant_name,
            binding=self.grant_name,
            namespace=self.namespace,
            adopted_role=not grant.role_created,
        )

    def _raise_creation_failure(self, exc: Exception) -> NoReturn:
        if isinstance(exc, OperatorCIError):
            raise exc
        msg = f"cannot create {self.grant_name}: {_describe_api_error(exc)}"
        raise SetupFailure(msg) from exc


__all__ = [
    "GRANT_NAME",
    "GUARDED_SIGNALS",
    "AuthorizationApi",
    "AuthorizationBootstrapper",
    "AuthorizationGrant",
    "KubernetesAuthorizationApi",
    "cluster_role_manifest",
    "role_binding_manifest",
]
