"""Observability sink for reconciliation outcomes.

Metrics exported (prefixed with ``Settings.metrics_prefix``):
- controller_cluster_ok{namespace,name}: 1 healthy, 0 errored
- controller_redis_checks_total{namespace,resource,indicator,instance,status}
- controller_sentinel_checks_total{namespace,resource,indicator,instance,status}
- controller_redis_operations_total{kind,ip,operation,status,err}
- controller_k8s_operations_total{namespace,kind,name,operation,status,err}
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"
FAIL = "FAIL"
STATUS_HEALTHY = "HEALTHY"
STATUS_UNHEALTHY = "UNHEALTHY"
NOT_APPLICABLE = "NA"

# Check indicators
REDIS_REPLICA_MISMATCH = "REDIS_STATEFULSET_REPLICAS_MISMATCH"
SENTINEL_REPLICA_MISMATCH = "SENTINEL_DEPLOYMENT_REPLICAS_MISMATCH"
NO_MASTER = "NO_MASTER_AVAILABLE"
NUMBER_OF_MASTERS = "MASTER_COUNT_IS_NOT_ONE"
SENTINEL_WRONG_MASTER = "SENTINEL_IS_CONFIGURED_WITH_WRONG_MASTER_IP"
SLAVE_WRONG_MASTER = "SLAVE_IS_CONFIGURED_WITH_WRONG_MASTER_IP"
SENTINEL_NUMBER_IN_MEMORY_MISMATCH = "SENTINEL_NUMBER_IN_MEMORY_MISMATCH"
REDIS_SLAVES_NUMBER_IN_MEMORY_MISMATCH = "REDIS_SLAVES_NUMBER_IN_MEMORY_MISMATCH"
APPLY_REDIS_CONFIG = "APPLY_REDIS_CONFIG"
APPLY_SENTINEL_CONFIG = "APPLY_SENTINEL_CONFIG"

# Redis connection errors
SENTINEL_NOT_READY = "SENTINEL_NOT_READY"
REGEX_NOT_FOUND = "SENTINEL_REGEX_NOT_FOUND"
WRONG_PASSWORD_USED = "WRONG_PASSWORD_USED"
NOAUTH = "AUTH_CREDENTIALS_NOT_PROVIDED"
NOPERM = "REDIS_USER_DOES_NOT_HAVE_PERMISSIONS"
IO_TIMEOUT = "CONNECTION_TIMEDOUT"
CONNECTION_REFUSED = "CONNECTION_REFUSED"
MISC = "MISC_ERROR"

# Kubernetes errors
K8S_FORBIDDEN_ERR = "USER_FORBIDDEN_TO_PERFORM_ACTION"
K8S_UNAUTH = "CLIENT_NOT_AUTHORISED"
K8S_NOT_FOUND = "RESOURCE_NOT_FOUND"
K8S_MISC = "MISC_ERROR_CHECK_LOGS"

KIND_REDIS = "REDIS"
KIND_SENTINEL = "SENTINEL"


class MetricsRecorder(ABC):
    """Sink for per-cluster health signals and operation counters."""

    @abstractmethod
    def mark_cluster_healthy(self, namespace: str, name: str) -> None:
        pass

    @abstractmethod
    def mark_cluster_errored(self, namespace: str, name: str) -> None:
        pass

    @abstractmethod
    def cluster_removed(self, namespace: str, name: str) -> None:
        pass

    @abstractmethod
    def record_redis_check(
        self, namespace: str, resource: str, indicator: str, instance: str, status: str
    ) -> None:
        pass

    @abstractmethod
    def record_sentinel_check(
        self, namespace: str, resource: str, indicator: str, instance: str, status: str
    ) -> None:
        pass

    @abstractmethod
    def record_redis_operation(
        self, kind: str, ip: str, operation: str, status: str, err: str
    ) -> None:
        pass

    @abstractmethod
    def record_k8s_operation(
        self, namespace: str, kind: str, name: str, operation: str, status: str, err: str
    ) -> None:
        pass


class DummyRecorder(MetricsRecorder):
    """Recorder that drops everything."""

    def mark_cluster_healthy(self, namespace: str, name: str) -> None:
        pass

    def mark_cluster_errored(self, namespace: str, name: str) -> None:
        pass

    def cluster_removed(self, namespace: str, name: str) -> None:
        pass

    def record_redis_check(self, namespace, resource, indicator, instance, status) -> None:
        pass

    def record_sentinel_check(self, namespace, resource, indicator, instance, status) -> None:
        pass

    def record_redis_operation(self, kind, ip, operation, status, err) -> None:
        pass

    def record_k8s_operation(self, namespace, kind, name, operation, status, err) -> None:
        pass


class PrometheusRecorder(MetricsRecorder):
    """
    Recorder backed by prometheus_client.

    Uses its own registry so several recorders can coexist in one process.
    """

    def __init__(self, prefix: str = "redis_operator", registry: Optional[CollectorRegistry] = None):
        """
        Initialize recorder.

        Args:
            prefix: Metric namespace
            registry: Registry to register metrics on (a new one if not provided)
        """
        self.registry = registry or CollectorRegistry()
        subsystem = "controller"

        self.cluster_ok = Gauge(
            "cluster_ok",
            "Health of each failover cluster managed by the operator (1 healthy, 0 errored).",
            ["namespace", "name"],
            namespace=prefix,
            subsystem=subsystem,
            registry=self.registry,
        )
        self.redis_checks = Counter(
            "redis_checks",
            "Result of checks performed on managed redis instances.",
            ["namespace", "resource", "indicator", "instance", "status"],
            namespace=prefix,
            subsystem=subsystem,
            registry=self.registry,
        )
        self.sentinel_checks = Counter(
            "sentinel_checks",
            "Result of checks performed on managed sentinel instances.",
            ["namespace", "resource", "indicator", "instance", "status"],
            namespace=prefix,
            subsystem=subsystem,
            registry=self.registry,
        )
        self.redis_operations = Counter(
            "redis_operations",
            "Number of operations performed on redis and sentinel instances.",
            ["kind", "ip", "operation", "status", "err"],
            namespace=prefix,
            subsystem=subsystem,
            registry=self.registry,
        )
        self.k8s_operations = Counter(
            "k8s_operations",
            "Number of operations performed on the Kubernetes API.",
            ["namespace", "kind", "name", "operation", "status", "err"],
            namespace=prefix,
            subsystem=subsystem,
            registry=self.registry,
        )

    def mark_cluster_healthy(self, namespace: str, name: str) -> None:
        self.cluster_ok.labels(namespace=namespace, name=name).set(1)

    def mark_cluster_errored(self, namespace: str, name: str) -> None:
        self.cluster_ok.labels(namespace=namespace, name=name).set(0)

    def cluster_removed(self, namespace: str, name: str) -> None:
        try:
            self.cluster_ok.remove(namespace, name)
        except KeyError:
            logger.debug(f"No cluster_ok series for {namespace}/{name}")

    def record_redis_check(self, namespace, resource, indicator, instance, status) -> None:
        self.redis_checks.labels(namespace, resource, indicator, instance, status).inc()

    def record_sentinel_check(self, namespace, resource, indicator, instance, status) -> None:
        self.sentinel_checks.labels(namespace, resource, indicator, instance, status).inc()

    def record_redis_operation(self, kind, ip, operation, status, err) -> None:
        self.redis_operations.labels(kind, ip, operation, status, err).inc()

    def record_k8s_operation(self, namespace, kind, name, operation, status, err) -> None:
        self.k8s_operations.labels(namespace, kind, name, operation, status, err).inc()


def check_status(error: Optional[Exception]) -> str:
    """Map a check outcome to the status label."""
    return STATUS_HEALTHY if error is None else STATUS_UNHEALTHY


def classify_redis_error(error: Exception) -> str:
    """Map a redis client error to a stable error label."""
    message = str(error)
    if "NOAUTH" in message:
        return NOAUTH
    if "WRONGPASS" in message:
        return WRONG_PASSWORD_USED
    if "NOPERM" in message:
        return NOPERM
    if "timed out" in message or "Timeout" in type(error).__name__:
        return IO_TIMEOUT
    if "refused" in message:
        return CONNECTION_REFUSED
    return MISC
