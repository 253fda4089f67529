"""Read-only access to the platform objects backing a failover cluster."""

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from kubernetes.client import V1Pod
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from . import metrics
from .cluster import ClusterConnection
from .config import Settings
from .errors import AuthSecretError, PlatformError
from .metrics import MetricsRecorder
from .models import PodInfo

logger = logging.getLogger(__name__)

PASSWORD_KEY = "password"


class PlatformGateway(ABC):
    """Scale, pod and secret reads needed by the checker."""

    @abstractmethod
    def get_statefulset_replicas(self, namespace: str, name: str) -> int:
        pass

    @abstractmethod
    def get_deployment_replicas(self, namespace: str, name: str) -> int:
        pass

    @abstractmethod
    def list_statefulset_pods(self, namespace: str, name: str) -> list[PodInfo]:
        pass

    @abstractmethod
    def list_deployment_pods(self, namespace: str, name: str) -> list[PodInfo]:
        pass

    @abstractmethod
    def get_secret_password(self, namespace: str, secret_name: str) -> str:
        pass


def _k8s_error_label(error: Exception) -> str:
    if isinstance(error, ApiException):
        if error.status == 403:
            return metrics.K8S_FORBIDDEN_ERR
        if error.status == 401:
            return metrics.K8S_UNAUTH
        if error.status == 404:
            return metrics.K8S_NOT_FOUND
    return metrics.K8S_MISC


def _selector(match_labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(match_labels.items()))


def pod_info_from_k8s(pod: V1Pod) -> PodInfo:
    """Convert a V1Pod into the gateway's PodInfo."""
    status = pod.status
    return PodInfo(
        name=pod.metadata.name,
        ip=status.pod_ip if status else None,
        phase=status.phase if status else None,
        start_time=status.start_time if status else None,
        deleting=pod.metadata.deletion_timestamp is not None,
    )


class KubernetesGateway(PlatformGateway):
    """PlatformGateway backed by the Kubernetes API."""

    def __init__(
        self,
        cluster: ClusterConnection,
        recorder: MetricsRecorder,
        settings: Settings,
    ):
        """
        Initialize gateway.

        Args:
            cluster: Cluster connection
            recorder: Metrics recorder for API call counters
            settings: Operator settings (request timeout)
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.apps_v1 = cluster.apps_v1
        self.recorder = recorder
        self.timeout = settings.k8s_request_timeout_seconds

    def _call(
        self,
        namespace: str,
        kind: str,
        name: str,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Run a Kubernetes API call with the request timeout and record it.

        Raises:
            PlatformError: If the call fails
        """
        try:
            result = func(*args, _request_timeout=self.timeout, **kwargs)
        except (ApiException, HTTPError, OSError) as e:
            self.recorder.record_k8s_operation(
                namespace, kind, name, operation, metrics.FAIL, _k8s_error_label(e)
            )
            raise PlatformError(f"{operation} {kind} {namespace}/{name} failed: {e}") from e
        self.recorder.record_k8s_operation(
            namespace, kind, name, operation, metrics.SUCCESS, metrics.NOT_APPLICABLE
        )
        return result

    def _read_statefulset(self, namespace: str, name: str):
        return self._call(
            namespace, "StatefulSet", name, "GET",
            self.apps_v1.read_namespaced_stateful_set, name, namespace,
        )

    def _read_deployment(self, namespace: str, name: str):
        return self._call(
            namespace, "Deployment", name, "GET",
            self.apps_v1.read_namespaced_deployment, name, namespace,
        )

    def _list_pods(self, namespace: str, owner: str, match_labels: dict[str, str]) -> list[PodInfo]:
        pods = self._call(
            namespace, "Pod", owner, "LIST",
            self.core_v1.list_namespaced_pod, namespace,
            label_selector=_selector(match_labels),
        )
        return [pod_info_from_k8s(pod) for pod in pods.items]

    def get_statefulset_replicas(self, namespace: str, name: str) -> int:
        statefulset = self._read_statefulset(namespace, name)
        return int(statefulset.spec.replicas or 0)

    def get_deployment_replicas(self, namespace: str, name: str) -> int:
        deployment = self._read_deployment(namespace, name)
        return int(deployment.spec.replicas or 0)

    def list_statefulset_pods(self, namespace: str, name: str) -> list[PodInfo]:
        """
        List the pods selected by a statefulset.

        Args:
            namespace: Kubernetes namespace
            name: StatefulSet name

        Returns:
            Pods in platform order
        """
        statefulset = self._read_statefulset(namespace, name)
        return self._list_pods(namespace, name, statefulset.spec.selector.match_labels or {})

    def list_deployment_pods(self, namespace: str, name: str) -> list[PodInfo]:
        deployment = self._read_deployment(namespace, name)
        return self._list_pods(namespace, name, deployment.spec.selector.match_labels or {})

    def get_secret_password(self, namespace: str, secret_name: str) -> str:
        """
        Read the redis password from a secret.

        Args:
            namespace: Kubernetes namespace
            secret_name: Secret holding a ``password`` key

        Returns:
            Decoded password

        Raises:
            AuthSecretError: If the secret has no password key
            PlatformError: If the secret cannot be read
        """
        secret = self._call(
            namespace, "Secret", secret_name, "GET",
            self.core_v1.read_namespaced_secret, secret_name, namespace,
        )
        data = secret.data or {}
        if PASSWORD_KEY not in data:
            raise AuthSecretError(
                f"{PASSWORD_KEY} file not found in secret {namespace}/{secret_name}"
            )
        return base64.b64decode(data[PASSWORD_KEY]).decode("utf-8")


def get_redis_password(gateway: PlatformGateway, namespace: str, secret_ref: Optional[str]) -> str:
    """
    Resolve the redis password for a resource.

    Args:
        gateway: Platform gateway
        namespace: Resource namespace
        secret_ref: Name of the auth secret, if any

    Returns:
        Password, or an empty string when no auth secret is referenced
    """
    if not secret_ref:
        return ""
    return gateway.get_secret_password(namespace, secret_ref)
