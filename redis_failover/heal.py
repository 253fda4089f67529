"""Idempotent corrective writes against redis and sentinel nodes."""

import logging
from abc import ABC, abstractmethod

from .errors import FailoverError
from .models import RedisFailover
from .names import get_quorum
from .platform import PlatformGateway, get_redis_password
from .redis_client import RedisClient

logger = logging.getLogger(__name__)


class RedisFailoverHeal(ABC):
    """Corrects the topology of a redis failover cluster."""

    @abstractmethod
    def make_master(self, ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def make_slave_of(self, ip: str, master_ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def set_master_on_all(self, master_ip: str, ips: list[str], rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def set_oldest_as_master(self, ips: list[str], rf: RedisFailover) -> str:
        pass

    @abstractmethod
    def new_sentinel_monitor(self, sentinel_ip: str, master_ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def restore_sentinel(self, sentinel_ip: str) -> None:
        pass

    @abstractmethod
    def set_redis_custom_config(self, ip: str, rf: RedisFailover) -> None:
        pass

    @abstractmethod
    def set_sentinel_custom_config(self, sentinel_ip: str, rf: RedisFailover) -> None:
        pass


class RedisFailoverHealer(RedisFailoverHeal):
    """
    RedisFailoverHeal implementation using the redis probe.

    Every operation is safe to repeat. Errors are raised only when a node
    could not be reached or refused the command.
    """

    def __init__(self, gateway: PlatformGateway, redis_client: RedisClient):
        """
        Initialize healer.

        Args:
            gateway: Platform gateway, used to resolve the redis password
            redis_client: Probe for redis and sentinel endpoints
        """
        self.gateway = gateway
        self.redis_client = redis_client

    def _password(self, rf: RedisFailover) -> str:
        return get_redis_password(self.gateway, rf.namespace, rf.spec.auth_secret_ref)

    def make_master(self, ip: str, rf: RedisFailover) -> None:
        logger.info(f"Making {ip} master of {rf.key}")
        self.redis_client.make_master(ip, rf.spec.redis_port, self._password(rf))

    def make_slave_of(self, ip: str, master_ip: str, rf: RedisFailover) -> None:
        logger.info(f"Making {ip} slave of {master_ip} in {rf.key}")
        self.redis_client.make_slave_of(ip, master_ip, rf.spec.redis_port, self._password(rf))

    def set_master_on_all(self, master_ip: str, ips: list[str], rf: RedisFailover) -> None:
        """
        Promote the master, then point every other node at it.

        Args:
            master_ip: IP of the node that must be master
            ips: Healthy redis IPs
            rf: RedisFailover resource
        """
        password = self._password(rf)
        port = rf.spec.redis_port

        logger.info(f"Ensuring {master_ip} is master of {rf.key}")
        self.redis_client.make_master(master_ip, port, password)
        for ip in ips:
            if ip == master_ip:
                continue
            logger.info(f"Making {ip} slave of {master_ip} in {rf.key}")
            self.redis_client.make_slave_of(ip, master_ip, port, password)

    def set_oldest_as_master(self, ips: list[str], rf: RedisFailover) -> str:
        """
        Promote the first node of the list and make the rest replicate from it.

        Args:
            ips: Healthy redis IPs, oldest first
            rf: RedisFailover resource

        Returns:
            IP of the new master

        Raises:
            FailoverError: If there is no node to promote
        """
        if not ips:
            raise FailoverError(f"number of redis pods of {rf.key} is 0, unable to set master")

        new_master, *slaves = ips
        password = self._password(rf)
        port = rf.spec.redis_port

        logger.info(f"New master of {rf.key} is {new_master}")
        self.redis_client.make_master(new_master, port, password)
        for ip in slaves:
            logger.info(f"Making {ip} slave of {new_master} in {rf.key}")
            self.redis_client.make_slave_of(ip, new_master, port, password)
        return new_master

    def new_sentinel_monitor(self, sentinel_ip: str, master_ip: str, rf: RedisFailover) -> None:
        """
        Make a sentinel monitor the given master.

        Quorum is derived from the resource's sentinel replica count.
        """
        quorum = get_quorum(rf.spec.sentinel_replicas)
        logger.info(f"Sentinel {sentinel_ip} of {rf.key} now monitors {master_ip} (quorum {quorum})")
        self.redis_client.monitor_redis(
            sentinel_ip, master_ip, rf.spec.redis_port, quorum, self._password(rf)
        )

    def restore_sentinel(self, sentinel_ip: str) -> None:
        logger.info(f"Resetting sentinel {sentinel_ip}")
        self.redis_client.reset_sentinel(sentinel_ip)

    def set_redis_custom_config(self, ip: str, rf: RedisFailover) -> None:
        logger.debug(f"Setting custom config on redis {ip} of {rf.key}")
        self.redis_client.set_custom_redis_config(
            ip, rf.spec.redis_port, rf.spec.redis_custom_config, self._password(rf)
        )

    def set_sentinel_custom_config(self, sentinel_ip: str, rf: RedisFailover) -> None:
        logger.debug(f"Setting custom config on sentinel {sentinel_ip} of {rf.key}")
        self.redis_client.set_custom_sentinel_config(sentinel_ip, rf.spec.sentinel_custom_config)
