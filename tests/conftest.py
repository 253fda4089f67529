"""Pytest configuration and fixtures for Redis failover operator tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from redis_failover import (
    FailoverSpec,
    MetricsRecorder,
    PlatformGateway,
    RedisClient,
    RedisFailover,
    RedisFailoverCheck,
    RedisFailoverHeal,
    Settings,
)

MASTER_IP = "10.0.0.1"
REDIS_IPS = ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
SENTINEL_IPS = ["10.0.1.1", "10.0.1.2", "10.0.1.3"]
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return Settings(_env_file=None, metrics_enabled=False)


@pytest.fixture
def rf():
    """Sample RedisFailover with 3 redis and 3 sentinels."""
    return RedisFailover(
        name="test",
        namespace="default",
        spec=FailoverSpec(redis_replicas=3, sentinel_replicas=3),
    )


@pytest.fixture
def rf_with_auth():
    """Sample RedisFailover referencing an auth secret."""
    return RedisFailover(
        name="test",
        namespace="default",
        spec=FailoverSpec(redis_replicas=3, sentinel_replicas=3, auth_secret_ref="redis-auth"),
    )


@pytest.fixture
def mock_recorder():
    """Mock metrics recorder."""
    return MagicMock(spec=MetricsRecorder)


@pytest.fixture
def mock_gateway():
    """Mock platform gateway."""
    return MagicMock(spec=PlatformGateway)


@pytest.fixture
def mock_redis_client():
    """Mock redis probe."""
    return MagicMock(spec=RedisClient)


@pytest.fixture
def mock_healer():
    """Mock healer recording every corrective call."""
    return MagicMock(spec=RedisFailoverHeal)


@pytest.fixture
def converged_checker():
    """Mock checker describing a converged cluster."""
    checker = MagicMock(spec=RedisFailoverCheck)
    checker.check_redis_number.return_value = None
    checker.check_sentinel_number.return_value = None
    checker.count_masters.return_value = 1
    checker.get_master_ip.return_value = MASTER_IP
    checker.list_healthy_redis_ips.return_value = list(REDIS_IPS)
    checker.list_healthy_sentinel_ips.return_value = list(SENTINEL_IPS)
    checker.minimum_redis_uptime.return_value = timedelta(hours=1)
    checker.check_all_slaves_from_master.return_value = None
    checker.check_sentinel_monitor.return_value = None
    checker.check_sentinel_number_in_memory.return_value = None
    checker.check_sentinel_slaves_number_in_memory.return_value = None
    return checker


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    return mock_conn


@pytest.fixture
def rf_object():
    """RedisFailover custom object as returned by the Kubernetes API."""
    return {
        "apiVersion": "databases.spotahome.com/v1",
        "kind": "RedisFailover",
        "metadata": {"name": "test", "namespace": "default", "labels": {"team": "cache"}},
        "spec": {
            "redis": {"replicas": 3},
            "sentinel": {"replicas": 3},
        },
    }


def make_pod(name, ip, phase="Running", start_time=NOW, deleting=False):
    """Build a V1Pod for gateway tests."""
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            deletion_timestamp=NOW if deleting else None,
        ),
        status=client.V1PodStatus(pod_ip=ip, phase=phase, start_time=start_time),
    )
