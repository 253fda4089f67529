"""Tests for metrics recorders."""

import pytest
from prometheus_client import CollectorRegistry
from redis.exceptions import AuthenticationError, ConnectionError, ResponseError

from redis_failover import DummyRecorder, PrometheusRecorder
from redis_failover import metrics


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def recorder(registry):
    return PrometheusRecorder(prefix="redis_operator", registry=registry)


def cluster_ok(registry, namespace="default", name="test"):
    return registry.get_sample_value(
        "redis_operator_controller_cluster_ok", {"namespace": namespace, "name": name}
    )


class TestPrometheusRecorder:
    """Test prometheus recorder."""

    def test_cluster_health(self, recorder, registry):
        """Test healthy and errored set the gauge."""
        recorder.mark_cluster_healthy("default", "test")
        assert cluster_ok(registry) == 1.0

        recorder.mark_cluster_errored("default", "test")
        assert cluster_ok(registry) == 0.0

    def test_cluster_removed(self, recorder, registry):
        """Test removing a cluster drops its series."""
        recorder.mark_cluster_healthy("default", "test")

        recorder.cluster_removed("default", "test")
        assert cluster_ok(registry) is None

        # Removing an unknown cluster is harmless
        recorder.cluster_removed("default", "test")

    def test_check_counters(self, recorder, registry):
        """Test redis and sentinel check counters."""
        recorder.record_redis_check(
            "default", "test", metrics.NO_MASTER, metrics.NOT_APPLICABLE, metrics.STATUS_UNHEALTHY
        )
        recorder.record_sentinel_check(
            "default", "test", metrics.SENTINEL_WRONG_MASTER, "10.0.1.1", metrics.STATUS_HEALTHY
        )
        recorder.record_sentinel_check(
            "default", "test", metrics.SENTINEL_WRONG_MASTER, "10.0.1.1", metrics.STATUS_HEALTHY
        )

        assert registry.get_sample_value(
            "redis_operator_controller_redis_checks_total",
            {
                "namespace": "default",
                "resource": "test",
                "indicator": metrics.NO_MASTER,
                "instance": metrics.NOT_APPLICABLE,
                "status": metrics.STATUS_UNHEALTHY,
            },
        ) == 1.0
        assert registry.get_sample_value(
            "redis_operator_controller_sentinel_checks_total",
            {
                "namespace": "default",
                "resource": "test",
                "indicator": metrics.SENTINEL_WRONG_MASTER,
                "instance": "10.0.1.1",
                "status": metrics.STATUS_HEALTHY,
            },
        ) == 2.0

    def test_operation_counters(self, recorder, registry):
        """Test redis and kubernetes operation counters."""
        recorder.record_redis_operation(
            metrics.KIND_REDIS, "10.0.0.1", "MAKE_INSTANCE_AS_MASTER", metrics.SUCCESS, metrics.NOT_APPLICABLE
        )
        recorder.record_k8s_operation(
            "default", "Pod", "rfr-test", "LIST", metrics.FAIL, metrics.K8S_FORBIDDEN_ERR
        )

        assert registry.get_sample_value(
            "redis_operator_controller_redis_operations_total",
            {
                "kind": metrics.KIND_REDIS,
                "ip": "10.0.0.1",
                "operation": "MAKE_INSTANCE_AS_MASTER",
                "status": metrics.SUCCESS,
                "err": metrics.NOT_APPLICABLE,
            },
        ) == 1.0
        assert registry.get_sample_value(
            "redis_operator_controller_k8s_operations_total",
            {
                "namespace": "default",
                "kind": "Pod",
                "name": "rfr-test",
                "operation": "LIST",
                "status": metrics.FAIL,
                "err": metrics.K8S_FORBIDDEN_ERR,
            },
        ) == 1.0

    def test_independent_registries(self):
        """Test two recorders can coexist."""
        PrometheusRecorder()
        PrometheusRecorder()


class TestDummyRecorder:
    """Test dummy recorder."""

    def test_accepts_everything(self):
        """Test every call is a no-op."""
        recorder = DummyRecorder()
        recorder.mark_cluster_healthy("default", "test")
        recorder.mark_cluster_errored("default", "test")
        recorder.cluster_removed("default", "test")
        recorder.record_redis_check("default", "test", metrics.NO_MASTER, "NA", "HEALTHY")
        recorder.record_sentinel_check("default", "test", metrics.NO_MASTER, "NA", "HEALTHY")
        recorder.record_redis_operation("REDIS", "10.0.0.1", "OP", "SUCCESS", "NA")
        recorder.record_k8s_operation("default", "Pod", "p", "GET", "SUCCESS", "NA")


class TestHelpers:
    """Label helpers."""

    def test_check_status(self):
        """Test check status labels."""
        assert metrics.check_status(None) == metrics.STATUS_HEALTHY
        assert metrics.check_status(ValueError("x")) == metrics.STATUS_UNHEALTHY

    @pytest.mark.parametrize(
        "error,label",
        [
            (ResponseError("NOAUTH Authentication required."), metrics.NOAUTH),
            (AuthenticationError("WRONGPASS invalid username-password pair"), metrics.WRONG_PASSWORD_USED),
            (ResponseError("NOPERM this user has no permissions"), metrics.NOPERM),
            (ConnectionError("Connection refused."), metrics.CONNECTION_REFUSED),
            (OSError("timed out"), metrics.IO_TIMEOUT),
            (ResponseError("ERR unknown command"), metrics.MISC),
        ],
    )
    def test_classify_redis_error(self, error, label):
        """Test redis errors map to stable labels."""
        assert metrics.classify_redis_error(error) == label
