"""Tests for RedisFailoverChecker."""

from datetime import timedelta

import pytest

from conftest import MASTER_IP, NOW
from redis_failover import (
    CheckFailedError,
    FailoverSpec,
    PodInfo,
    RedisCommandError,
    RedisFailover,
    RedisFailoverChecker,
)


def pod(name, ip, start_offset=None, phase="Running", deleting=False):
    """PodInfo started ``start_offset`` before NOW."""
    return PodInfo(
        name=name,
        ip=ip,
        phase=phase,
        start_time=NOW - start_offset if start_offset is not None else None,
        deleting=deleting,
    )


@pytest.fixture
def checker(mock_gateway, mock_redis_client):
    """Checker with a fixed clock."""
    return RedisFailoverChecker(mock_gateway, mock_redis_client, clock=lambda: NOW)


@pytest.fixture
def three_redis(mock_gateway):
    """Three running redis pods, rfr-test-0 oldest."""
    mock_gateway.list_statefulset_pods.return_value = [
        pod("rfr-test-0", "10.0.0.1", timedelta(hours=3)),
        pod("rfr-test-1", "10.0.0.2", timedelta(hours=2)),
        pod("rfr-test-2", "10.0.0.3", timedelta(hours=1)),
    ]
    return ["10.0.0.1", "10.0.0.2", "10.0.0.3"]


class TestReplicaChecks:
    """Deployed scale checks."""

    def test_count_deployed_replicas(self, checker, rf, mock_gateway):
        """Test replica counts are read from the named workloads."""
        mock_gateway.get_statefulset_replicas.return_value = 3
        mock_gateway.get_deployment_replicas.return_value = 3

        assert checker.count_deployed_redis_replicas(rf) == 3
        assert checker.count_deployed_sentinel_replicas(rf) == 3
        mock_gateway.get_statefulset_replicas.assert_called_once_with("default", "rfr-test")
        mock_gateway.get_deployment_replicas.assert_called_once_with("default", "rfs-test")

    def test_check_redis_number_mismatch(self, checker, rf, mock_gateway):
        """Test a redis scale mismatch raises CheckFailedError."""
        mock_gateway.get_statefulset_replicas.return_value = 2

        with pytest.raises(CheckFailedError):
            checker.check_redis_number(rf)

    def test_check_redis_number_ok(self, checker, rf, three_redis, mock_gateway):
        """Test matching scale with every pod running passes."""
        mock_gateway.get_statefulset_replicas.return_value = 3

        checker.check_redis_number(rf)

    def test_check_sentinel_number_ok(self, checker, rf, mock_gateway):
        """Test matching sentinel scale passes."""
        mock_gateway.get_deployment_replicas.return_value = 3
        mock_gateway.list_deployment_pods.return_value = [
            pod(f"rfs-test-{i}", f"10.0.1.{i}", timedelta(hours=1)) for i in range(3)
        ]

        checker.check_sentinel_number(rf)

    def test_scale_up_in_flight(self, checker, mock_gateway):
        """Test a resized statefulset with too few running pods fails."""
        rf = RedisFailover(name="test", spec=FailoverSpec(redis_replicas=5))
        mock_gateway.get_statefulset_replicas.return_value = 5
        mock_gateway.list_statefulset_pods.return_value = [
            pod(f"rfr-test-{i}", f"10.0.0.{i}", timedelta(hours=1)) for i in range(3)
        ]

        with pytest.raises(CheckFailedError, match="3 running, 5 expected"):
            checker.check_redis_number(rf)

    @pytest.mark.parametrize("phase,deleting", [("Pending", False), ("Running", True)])
    def test_pod_not_settled(self, checker, rf, mock_gateway, phase, deleting):
        """Test a pending or terminating pod fails the check."""
        mock_gateway.get_deployment_replicas.return_value = 3
        mock_gateway.list_deployment_pods.return_value = [
            pod("rfs-test-0", "10.0.1.1", timedelta(hours=1)),
            pod("rfs-test-1", "10.0.1.2", timedelta(hours=1)),
            pod("rfs-test-2", "10.0.1.3", timedelta(hours=1), phase=phase, deleting=deleting),
        ]

        with pytest.raises(CheckFailedError, match="rfs-test-2"):
            checker.check_sentinel_number(rf)

    def test_terminal_pods_ignored(self, checker, rf, three_redis, mock_gateway):
        """Test finished pods do not count but do not block either."""
        mock_gateway.get_statefulset_replicas.return_value = 3
        mock_gateway.list_statefulset_pods.return_value.append(
            pod("rfr-test-old", None, timedelta(days=1), phase="Failed")
        )

        checker.check_redis_number(rf)


class TestHealthyIPs:
    """Healthy IP listing and ordering."""

    def test_filters_unhealthy_pods(self, checker, rf, mock_gateway):
        """Test pending, terminating and IP-less pods are skipped."""
        mock_gateway.list_statefulset_pods.return_value = [
            pod("rfr-test-0", "10.0.0.1", timedelta(hours=1)),
            pod("rfr-test-1", "10.0.0.2", timedelta(hours=1), phase="Pending"),
            pod("rfr-test-2", "10.0.0.3", timedelta(hours=1), deleting=True),
            pod("rfr-test-3", None, timedelta(hours=1)),
        ]

        assert checker.list_healthy_redis_ips(rf) == ["10.0.0.1"]

    def test_orders_oldest_first(self, checker, rf, mock_gateway):
        """Test IPs are ordered by start time, undated pods last."""
        mock_gateway.list_statefulset_pods.return_value = [
            pod("rfr-test-0", "10.0.0.1", None),
            pod("rfr-test-1", "10.0.0.2", timedelta(minutes=5)),
            pod("rfr-test-2", "10.0.0.3", timedelta(hours=2)),
            pod("rfr-test-3", "10.0.0.4", timedelta(minutes=5)),
        ]

        assert checker.list_healthy_redis_ips(rf) == [
            "10.0.0.3",
            "10.0.0.2",
            "10.0.0.4",
            "10.0.0.1",
        ]

    def test_sentinel_ips(self, checker, rf, mock_gateway):
        """Test sentinel IPs come from the sentinel deployment."""
        mock_gateway.list_deployment_pods.return_value = [
            pod("rfs-test-a", "10.0.1.1", timedelta(hours=1)),
        ]

        assert checker.list_healthy_sentinel_ips(rf) == ["10.0.1.1"]
        mock_gateway.list_deployment_pods.assert_called_once_with("default", "rfs-test")


class TestMasters:
    """Master counting."""

    def test_count_masters(self, checker, rf, three_redis, mock_redis_client):
        """Test every healthy node is probed."""
        mock_redis_client.is_master.side_effect = lambda ip, port, password: ip == MASTER_IP

        assert checker.count_masters(rf) == 1
        assert mock_redis_client.is_master.call_count == 3
        mock_redis_client.is_master.assert_any_call("10.0.0.2", 6379, "")

    def test_get_master_ip(self, checker, rf, three_redis, mock_redis_client):
        """Test the single master is returned."""
        mock_redis_client.is_master.side_effect = lambda ip, port, password: ip == "10.0.0.2"

        assert checker.get_master_ip(rf) == "10.0.0.2"

    def test_get_master_ip_not_one(self, checker, rf, three_redis, mock_redis_client):
        """Test zero or several masters raise CheckFailedError."""
        mock_redis_client.is_master.return_value = True
        with pytest.raises(CheckFailedError):
            checker.get_master_ip(rf)

        mock_redis_client.is_master.return_value = False
        with pytest.raises(CheckFailedError):
            checker.get_master_ip(rf)

    def test_probe_error_propagates(self, checker, rf, three_redis, mock_redis_client):
        """Test an unreachable node makes the count unknown."""
        mock_redis_client.is_master.side_effect = RedisCommandError("10.0.0.1", "INFO", "timeout")

        with pytest.raises(RedisCommandError):
            checker.count_masters(rf)

    def test_password_used(self, checker, rf_with_auth, three_redis, mock_gateway, mock_redis_client):
        """Test the auth secret password is passed to the probe."""
        mock_gateway.get_secret_password.return_value = "s3cret"
        mock_redis_client.is_master.return_value = False

        checker.count_masters(rf_with_auth)

        mock_gateway.get_secret_password.assert_called_once_with("default", "redis-auth")
        mock_redis_client.is_master.assert_any_call("10.0.0.1", 6379, "s3cret")


class TestUptime:
    """Minimum redis uptime."""

    def test_youngest_pod(self, checker, rf, three_redis):
        """Test the youngest pod's uptime is returned."""
        assert checker.minimum_redis_uptime(rf) == timedelta(hours=1)

    def test_no_started_pods(self, checker, rf, mock_gateway):
        """Test zero uptime when no pod has started."""
        mock_gateway.list_statefulset_pods.return_value = [pod("rfr-test-0", None, None, phase="Pending")]

        assert checker.minimum_redis_uptime(rf) == timedelta(0)


class TestSlaves:
    """Replication target checks."""

    def test_all_slaves_from_master(self, checker, rf, three_redis, mock_redis_client):
        """Test nodes without slave-of are accepted."""
        mock_redis_client.get_slave_of.side_effect = (
            lambda ip, port, password: None if ip == MASTER_IP else MASTER_IP
        )

        checker.check_all_slaves_from_master(MASTER_IP, rf)

    def test_slave_with_wrong_master(self, checker, rf, three_redis, mock_redis_client):
        """Test a slave following another host fails the check."""
        mock_redis_client.get_slave_of.side_effect = (
            lambda ip, port, password: "10.0.0.9" if ip == "10.0.0.3" else None
        )

        with pytest.raises(CheckFailedError, match="10.0.0.3"):
            checker.check_all_slaves_from_master(MASTER_IP, rf)


class TestSentinelChecks:
    """Sentinel monitor and bookkeeping checks."""

    def test_monitor_ok(self, checker, rf, mock_redis_client):
        """Test matching monitor passes."""
        mock_redis_client.get_sentinel_monitor.return_value = (MASTER_IP, "6379")

        checker.check_sentinel_monitor("10.0.1.1", MASTER_IP, rf)

    def test_monitor_wrong_ip(self, checker, rf, mock_redis_client):
        """Test monitoring another master fails."""
        mock_redis_client.get_sentinel_monitor.return_value = ("10.0.0.2", "6379")

        with pytest.raises(CheckFailedError):
            checker.check_sentinel_monitor("10.0.1.1", MASTER_IP, rf)

    def test_monitor_wrong_port(self, checker, rf, mock_redis_client):
        """Test monitoring the master on another port fails."""
        mock_redis_client.get_sentinel_monitor.return_value = (MASTER_IP, "6380")

        with pytest.raises(CheckFailedError):
            checker.check_sentinel_monitor("10.0.1.1", MASTER_IP, rf)

    def test_sentinel_number_in_memory(self, checker, rf, mock_redis_client):
        """Test known sentinels must equal sentinel replicas."""
        mock_redis_client.get_number_sentinels_in_memory.return_value = 3
        checker.check_sentinel_number_in_memory("10.0.1.1", rf)

        mock_redis_client.get_number_sentinels_in_memory.return_value = 5
        with pytest.raises(CheckFailedError):
            checker.check_sentinel_number_in_memory("10.0.1.1", rf)

    def test_sentinel_slaves_number_in_memory(self, checker, rf, mock_redis_client):
        """Test known slaves must equal redis replicas minus one."""
        mock_redis_client.get_number_sentinel_slaves_in_memory.return_value = 2
        checker.check_sentinel_slaves_number_in_memory("10.0.1.1", rf)

        mock_redis_client.get_number_sentinel_slaves_in_memory.return_value = 3
        with pytest.raises(CheckFailedError):
            checker.check_sentinel_slaves_number_in_memory("10.0.1.1", rf)


class TestPassword:
    """Password resolution."""

    def test_no_secret(self, checker, rf, mock_gateway):
        """Test empty password without auth secret."""
        assert checker.get_redis_password(rf) == ""
        mock_gateway.get_secret_password.assert_not_called()

    def test_secret(self, checker, rf_with_auth, mock_gateway):
        """Test password read from the referenced secret."""
        mock_gateway.get_secret_password.return_value = "s3cret"

        assert checker.get_redis_password(rf_with_auth) == "s3cret"


class TestTopology:
    """Topology snapshots."""

    @pytest.fixture
    def snapshot(self, checker, rf, three_redis, mock_gateway, mock_redis_client):
        mock_gateway.list_deployment_pods.return_value = [
            pod("rfs-test-a", "10.0.1.1", timedelta(hours=1)),
        ]
        mock_redis_client.is_master.side_effect = lambda ip, port, password: ip == MASTER_IP
        mock_redis_client.get_slave_of.side_effect = (
            lambda ip, port, password: None if ip == MASTER_IP else MASTER_IP
        )
        mock_redis_client.get_sentinel_monitor.return_value = (MASTER_IP, "6379")
        mock_redis_client.get_number_sentinels_in_memory.return_value = 3
        mock_redis_client.get_number_sentinel_slaves_in_memory.return_value = 2
        return checker.get_topology(rf)

    def test_observations(self, snapshot):
        """Test every healthy node is observed."""
        assert snapshot.masters() == [MASTER_IP]
        assert [node.slave_of_master for node in snapshot.redis_nodes] == [None, MASTER_IP, MASTER_IP]
        assert snapshot.sentinel_nodes[0].monitored_master_ip == MASTER_IP
        assert snapshot.sentinel_nodes[0].known_sentinel_count == 3
        assert snapshot.sentinel_nodes[0].known_slave_count == 2
        assert snapshot.taken_at == NOW

    def test_snapshot_holds_spec_copy(self, snapshot, rf):
        """Test changing a snapshot leaves the resource untouched."""
        assert snapshot.spec == rf.spec
        assert snapshot.spec is not rf.spec

        snapshot.spec = FailoverSpec(redis_replicas=5, sentinel_replicas=5)
        snapshot.redis_nodes.clear()

        assert rf.spec.redis_replicas == 3
        assert rf.spec.sentinel_replicas == 3
