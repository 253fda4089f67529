"""Side-effect-free inspection of a failover cluster's live topology."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .errors import CheckFailedError
from .models import (
    ClusterTopologySnapshot,
    PodInfo,
    RedisFailover,
    RedisNodeObservation,
    SentinelNodeObservation,
)
from .names import get_redis_name, get_sentinel_name
from .platform import PlatformGateway, get_redis_password
from .redis_client import RedisClient

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def order_oldest_first(pods: list[PodInfo]) -> list[PodInfo]:
    """
    Order pods by start time, oldest first.

    The sort is stable, so pods started at the same instant keep platform
    order. Pods without a start time go last.
    """
    dated = [pod for pod in pods if pod.start_time is not None]
    undated = [pod for pod in pods if pod.start_time is None]
    return sorted(dated, key=lambda pod: pod.start_time) + undated


def check_all_running(kind: str, pods: list[PodInfo], expected: int) -> None:
    """
    Raises:
        CheckFailedError: If a pod is scheduling or fewer than ``expected`` pods are alive
    """
    scheduling = [pod.name for pod in pods if pod.is_scheduling]
    if scheduling:
        raise CheckFailedError(f"{kind} pods not settled: {', '.join(scheduling)}")

    alive = sum(1 for pod in pods if not pod.is_terminal)
    if alive < expected:
        raise CheckFailedError(
            f"not all {kind} replicas running: {alive} running, {expected} expected"
        )


class RedisFailoverCheck(ABC):
    """Checks the status of a redis failover cluster without changing it."""

    @abstractmethod
    def count_deployed_redis_replicas(self, rf: RedisFailover) -> int:
        pass

    @abstractmethod
    def count_deployed_sentinel_replicas(self, rf: RedisFailover) -> int:
        pass

    @abstractmethod
    def check_redis_number(self, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def check_sentinel_number(self, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def list_healthy_redis_ips(self, rf: RedisFailover) -> list[str]:
        pass

    @abstractmethod
    def list_healthy_sentinel_ips(self, rf: RedisFailover) -> list[str]:
        pass

    @abstractmethod
    def count_masters(self, rf: RedisFailover) -> int:
        pass

    @abstractmethod
    def get_master_ip(self, rf: RedisFailover) -> str:
        pass

    @abstractmethod
    def minimum_redis_uptime(self, rf: RedisFailover) -> timedelta:
        pass

    @abstractmethod
    def check_all_slaves_from_master(self, master_ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def check_sentinel_monitor(self, sentinel_ip: str, master_ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def check_sentinel_number_in_memory(self, sentinel_ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def check_sentinel_slaves_number_in_memory(self, sentinel_ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def get_redis_password(self, rf: RedisFailover) -> str:
        pass

    @abstractmethod
    def get_topology(self, rf: RedisFailover) -> ClusterTopologySnapshot:
        pass


class RedisFailoverChecker(RedisFailoverCheck):
    """
    RedisFailoverCheck implementation using the platform gateway and redis probe.

    Every method may raise ``FailoverIOError`` when the state cannot be
    determined. The ``check_*`` methods raise ``CheckFailedError`` when the
    state was determined and does not match the resource.
    """

    def __init__(
        self,
        gateway: PlatformGateway,
        redis_client: RedisClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize checker.

        Args:
            gateway: Platform gateway for scale, pods and secrets
            redis_client: Probe for redis and sentinel endpoints
            clock: Returns the current UTC time (defaults to datetime.now)
        """
        self.gateway = gateway
        self.redis_client = redis_client
        self.clock = clock or _utcnow

    def count_deployed_redis_replicas(self, rf: RedisFailover) -> int:
        return self.gateway.get_statefulset_replicas(rf.namespace, get_redis_name(rf.name))

    def count_deployed_sentinel_replicas(self, rf: RedisFailover) -> int:
        return self.gateway.get_deployment_replicas(rf.namespace, get_sentinel_name(rf.name))

    def check_redis_number(self, rf: RedisFailover) -> None:
        """
        Check the redis pool has settled at the size of the resource.

        The statefulset scale must match, no pod may still be scheduling or
        terminating, and at least as many pods as declared must be alive.

        Raises:
            CheckFailedError: If a resize is still in flight
        """
        deployed = self.count_deployed_redis_replicas(rf)
        if deployed != rf.spec.redis_replicas:
            raise CheckFailedError(
                f"number of redis pods differ from resource: "
                f"{deployed} deployed, {rf.spec.redis_replicas} expected"
            )
        check_all_running("redis", self._redis_pods(rf), rf.spec.redis_replicas)

    def check_sentinel_number(self, rf: RedisFailover) -> None:
        deployed = self.count_deployed_sentinel_replicas(rf)
        if deployed != rf.spec.sentinel_replicas:
            raise CheckFailedError(
                f"number of sentinel pods differ from resource: "
                f"{deployed} deployed, {rf.spec.sentinel_replicas} expected"
            )
        check_all_running("sentinel", self._sentinel_pods(rf), rf.spec.sentinel_replicas)

    def _redis_pods(self, rf: RedisFailover) -> list[PodInfo]:
        return self.gateway.list_statefulset_pods(rf.namespace, get_redis_name(rf.name))

    def _sentinel_pods(self, rf: RedisFailover) -> list[PodInfo]:
        return self.gateway.list_deployment_pods(rf.namespace, get_sentinel_name(rf.name))

    def list_healthy_redis_ips(self, rf: RedisFailover) -> list[str]:
        """
        List IPs of the running redis pods.

        Returns:
            IPs ordered oldest pod first
        """
        pods = [pod for pod in self._redis_pods(rf) if pod.is_running]
        return [pod.ip for pod in order_oldest_first(pods)]

    def list_healthy_sentinel_ips(self, rf: RedisFailover) -> list[str]:
        pods = [pod for pod in self._sentinel_pods(rf) if pod.is_running]
        return [pod.ip for pod in order_oldest_first(pods)]

    def get_redis_password(self, rf: RedisFailover) -> str:
        """
        Get the redis password referenced by the resource.

        Returns:
            Password, or an empty string when no auth secret is referenced
        """
        return get_redis_password(self.gateway, rf.namespace, rf.spec.auth_secret_ref)

    def _masters(self, rf: RedisFailover) -> list[str]:
        password = self.get_redis_password(rf)
        port = rf.spec.redis_port
        return [
            ip
            for ip in self.list_healthy_redis_ips(rf)
            if self.redis_client.is_master(ip, port, password)
        ]

    def count_masters(self, rf: RedisFailover) -> int:
        return len(self._masters(rf))

    def get_master_ip(self, rf: RedisFailover) -> str:
        """
        Get the IP of the single master.

        Raises:
            CheckFailedError: If the number of masters is not exactly one
        """
        masters = self._masters(rf)
        if len(masters) != 1:
            raise CheckFailedError(
                f"number of redis nodes known as master is different than 1: {len(masters)}"
            )
        return masters[0]

    def minimum_redis_uptime(self, rf: RedisFailover) -> timedelta:
        """
        Get the uptime of the youngest redis pod.

        Pods that have not started yet are ignored. With no started pod the
        uptime is zero.
        """
        now = self.clock()
        uptimes = [
            now - pod.start_time for pod in self._redis_pods(rf) if pod.start_time is not None
        ]
        if not uptimes:
            return timedelta(0)
        uptime = min(uptimes)
        logger.debug(f"Youngest redis pod of {rf.key} alive for {uptime.total_seconds():.0f}s")
        return uptime

    def check_all_slaves_from_master(self, master_ip: str, rf: RedisFailover) -> None:
        """
        Check every healthy redis node replicates from the master.

        A node reporting no master is accepted, it may be the master itself.

        Raises:
            CheckFailedError: If a node replicates from another host
        """
        password = self.get_redis_password(rf)
        port = rf.spec.redis_port
        for ip in self.list_healthy_redis_ips(rf):
            slave_of = self.redis_client.get_slave_of(ip, port, password)
            if slave_of and slave_of != master_ip:
                raise CheckFailedError(
                    f"slave {ip} don't have the master {master_ip}, has {slave_of}"
                )

    def check_sentinel_monitor(self, sentinel_ip: str, master_ip: str, rf: RedisFailover) -> None:
        monitor_ip, monitor_port = self.redis_client.get_sentinel_monitor(sentinel_ip)
        if monitor_ip != master_ip or monitor_port != str(rf.spec.redis_port):
            raise CheckFailedError(
                f"sentinel {sentinel_ip} monitoring {monitor_ip}:{monitor_port} "
                f"instead {master_ip}:{rf.spec.redis_port}"
            )

    def check_sentinel_number_in_memory(self, sentinel_ip: str, rf: RedisFailover) -> None:
        known = self.redis_client.get_number_sentinels_in_memory(sentinel_ip)
        if known != rf.spec.sentinel_replicas:
            raise CheckFailedError(
                f"sentinels in memory mismatch on {sentinel_ip}: "
                f"{known} known, {rf.spec.sentinel_replicas} expected"
            )

    def check_sentinel_slaves_number_in_memory(self, sentinel_ip: str, rf: RedisFailover) -> None:
        known = self.redis_client.get_number_sentinel_slaves_in_memory(sentinel_ip)
        expected = rf.spec.redis_replicas - 1
        if known != expected:
            raise CheckFailedError(
                f"redis slaves in sentinel memory mismatch on {sentinel_ip}: "
                f"{known} known, {expected} expected"
            )

    def get_topology(self, rf: RedisFailover) -> ClusterTopologySnapshot:
        """
        Probe every healthy node once and return what was observed.

        Args:
            rf: RedisFailover resource

        Returns:
            Snapshot holding its own copy of the resource spec
        """
        password = self.get_redis_password(rf)
        port = rf.spec.redis_port

        redis_nodes = [
            RedisNodeObservation(
                ip=ip,
                is_master=self.redis_client.is_master(ip, port, password),
                slave_of_master=self.redis_client.get_slave_of(ip, port, password),
            )
            for ip in self.list_healthy_redis_ips(rf)
        ]
        sentinel_nodes = [
            SentinelNodeObservation(
                ip=ip,
                monitored_master_ip=self.redis_client.get_sentinel_monitor(ip)[0],
                known_sentinel_count=self.redis_client.get_number_sentinels_in_memory(ip),
                known_slave_count=self.redis_client.get_number_sentinel_slaves_in_memory(ip),
            )
            for ip in self.list_healthy_sentinel_ips(rf)
        ]

        return ClusterTopologySnapshot(
            spec=rf.spec.model_copy(deep=True),
            redis_nodes=redis_nodes,
            sentinel_nodes=sentinel_nodes,
            taken_at=self.clock(),
        )
