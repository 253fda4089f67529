"""Redis and Sentinel probe used by the checker and healer."""

import functools
import logging
from abc import ABC, abstractmethod
from contextlib import closing
from typing import Any, Callable, Optional, Sequence

import redis
from redis.exceptions import RedisError

from . import metrics
from .config import Settings
from .errors import RedisCommandError, SentinelNotReadyError
from .metrics import MetricsRecorder
from .models import parse_config_entry
from .names import MASTER_NAME, SENTINEL_PORT

logger = logging.getLogger(__name__)

# Operation labels
GET_NUM_SENTINELS_IN_MEM = "GET_NUMBER_OF_SENTINELS_IN_MEMORY"
GET_NUM_REDIS_SLAVES_IN_MEM = "GET_NUMBER_OF_REDIS_SLAVES_IN_MEMORY"
RESET_SENTINEL = "RESET_ALL_SENTINEL_CONFIG"
GET_SLAVE_OF = "GET_MASTER_OF_GIVEN_SLAVE_INSTANCE"
IS_MASTER = "CHECK_IF_INSTANCE_IS_MASTER"
MONITOR_REDIS_WITH_PORT = "SET_SENTINEL_TO_MONITOR_REDIS_WITH_GIVEN_PORT"
MAKE_MASTER = "MAKE_INSTANCE_AS_MASTER"
MAKE_SLAVE_OF = "MAKE_SLAVE_OF_GIVEN_MASTER_INSTANCE"
GET_SENTINEL_MONITOR = "SENTINEL_GET_MASTER_INSTANCE"
APPLY_REDIS_CONFIG = "APPLY_REDIS_CONFIG"
APPLY_SENTINEL_CONFIG = "APPLY_SENTINEL_CONFIG"


class RedisClient(ABC):
    """Synchronous commands against a single redis or sentinel endpoint."""

    @abstractmethod
    def is_master(self, ip: str, port: int, password: str = "") -> bool:
        pass

    @abstractmethod
    def get_slave_of(self, ip: str, port: int, password: str = "") -> Optional[str]:
        pass

    @abstractmethod
    def get_sentinel_monitor(self, ip: str) -> tuple[str, str]:
        pass

    @abstractmethod
    def get_number_sentinels_in_memory(self, ip: str) -> int:
        pass

    @abstractmethod
    def get_number_sentinel_slaves_in_memory(self, ip: str) -> int:
        pass

    @abstractmethod
    def make_master(self, ip: str, port: int, password: str = "") -> None:
        pass

    @abstractmethod
    def make_slave_of(self, ip: str, master_ip: str, port: int, password: str = "") -> None:
        pass

    @abstractmethod
    def monitor_redis(
        self, ip: str, master_ip: str, port: int, quorum: int, password: str = ""
    ) -> None:
        pass

    @abstractmethod
    def reset_sentinel(self, ip: str) -> None:
        pass

    @abstractmethod
    def set_custom_redis_config(
        self, ip: str, port: int, configs: Sequence[str], password: str = ""
    ) -> None:
        pass

    @abstractmethod
    def set_custom_sentinel_config(self, ip: str, configs: Sequence[str]) -> None:
        pass


def _operation(kind: str, operation: str) -> Callable:
    """Record the outcome of a probe call and wrap client errors."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self: "RedisProbe", ip: str, *args: Any, **kwargs: Any) -> Any:
            try:
                result = func(self, ip, *args, **kwargs)
            except SentinelNotReadyError:
                self.recorder.record_redis_operation(
                    kind, ip, operation, metrics.FAIL, metrics.SENTINEL_NOT_READY
                )
                raise
            except RedisCommandError:
                self.recorder.record_redis_operation(
                    kind, ip, operation, metrics.FAIL, metrics.REGEX_NOT_FOUND
                )
                raise
            except (RedisError, OSError) as e:
                self.recorder.record_redis_operation(
                    kind, ip, operation, metrics.FAIL, metrics.classify_redis_error(e)
                )
                raise RedisCommandError(ip, operation, str(e)) from e
            self.recorder.record_redis_operation(
                kind, ip, operation, metrics.SUCCESS, metrics.NOT_APPLICABLE
            )
            return result

        return wrapper

    return decorator


class RedisProbe(RedisClient):
    """
    RedisClient implementation on top of redis-py.

    Opens a short-lived connection per call with the configured socket
    timeouts, so a partitioned node cannot stall a pass indefinitely.
    """

    def __init__(
        self,
        recorder: MetricsRecorder,
        settings: Settings,
        client_factory: Callable[..., redis.Redis] = redis.Redis,
    ):
        """
        Initialize probe.

        Args:
            recorder: Metrics recorder for operation counters
            settings: Operator settings (socket timeouts)
            client_factory: Callable building a redis client
        """
        self.recorder = recorder
        self.settings = settings
        self._client_factory = client_factory

    def _connect(self, ip: str, port: int, password: str = "") -> redis.Redis:
        return self._client_factory(
            host=ip,
            port=int(port),
            password=password or None,
            db=0,
            socket_timeout=self.settings.redis_socket_timeout_seconds,
            socket_connect_timeout=self.settings.redis_connect_timeout_seconds,
            decode_responses=True,
        )

    def _sentinel(self, ip: str) -> redis.Redis:
        return self._connect(ip, SENTINEL_PORT)

    def _sentinel_info(self, ip: str) -> dict[str, Any]:
        with closing(self._sentinel(ip)) as client:
            info = client.info("sentinel")

        for key, value in info.items():
            if key.startswith("master") and isinstance(value, dict):
                if value.get("status") != "ok":
                    raise SentinelNotReadyError(ip, "INFO sentinel", "sentinels not ready")
                return value
        raise SentinelNotReadyError(ip, "INFO sentinel", "sentinels not ready")

    @_operation(metrics.KIND_REDIS, IS_MASTER)
    def is_master(self, ip: str, port: int, password: str = "") -> bool:
        with closing(self._connect(ip, port, password)) as client:
            info = client.info("replication")
        return info.get("role") == "master"

    @_operation(metrics.KIND_REDIS, GET_SLAVE_OF)
    def get_slave_of(self, ip: str, port: int, password: str = "") -> Optional[str]:
        """
        Get the master a redis node replicates from.

        Returns:
            Master host, or None when the node reports no master (it is a master)
        """
        with closing(self._connect(ip, port, password)) as client:
            info = client.info("replication")
        master_host = info.get("master_host")
        return str(master_host) if master_host else None

    @_operation(metrics.KIND_SENTINEL, GET_SENTINEL_MONITOR)
    def get_sentinel_monitor(self, ip: str) -> tuple[str, str]:
        """
        Get the master the sentinel is monitoring.

        Returns:
            Tuple of (master ip, master port)
        """
        with closing(self._sentinel(ip)) as client:
            master = client.sentinel_master(MASTER_NAME)
        return str(master["ip"]), str(master["port"])

    @_operation(metrics.KIND_SENTINEL, GET_NUM_SENTINELS_IN_MEM)
    def get_number_sentinels_in_memory(self, ip: str) -> int:
        master = self._sentinel_info(ip)
        if "sentinels" not in master:
            raise RedisCommandError(ip, "INFO sentinel", "sentinels field not found")
        return int(master["sentinels"])

    @_operation(metrics.KIND_SENTINEL, GET_NUM_REDIS_SLAVES_IN_MEM)
    def get_number_sentinel_slaves_in_memory(self, ip: str) -> int:
        master = self._sentinel_info(ip)
        if "slaves" not in master:
            raise RedisCommandError(ip, "INFO sentinel", "slaves field not found")
        return int(master["slaves"])

    @_operation(metrics.KIND_REDIS, MAKE_MASTER)
    def make_master(self, ip: str, port: int, password: str = "") -> None:
        with closing(self._connect(ip, port, password)) as client:
            client.slaveof()

    @_operation(metrics.KIND_REDIS, MAKE_SLAVE_OF)
    def make_slave_of(self, ip: str, master_ip: str, port: int, password: str = "") -> None:
        with closing(self._connect(ip, port, password)) as client:
            client.slaveof(master_ip, int(port))

    @_operation(metrics.KIND_SENTINEL, MONITOR_REDIS_WITH_PORT)
    def monitor_redis(
        self, ip: str, master_ip: str, port: int, quorum: int, password: str = ""
    ) -> None:
        """
        Point a sentinel at a new master.

        Removes the current monitor entry first. A failed removal is ignored,
        the monitor command is what matters.
        """
        with closing(self._sentinel(ip)) as client:
            try:
                client.sentinel_remove(MASTER_NAME)
            except RedisError as e:
                logger.debug(f"Sentinel {ip} could not remove {MASTER_NAME}: {e}")

            client.sentinel_monitor(MASTER_NAME, master_ip, int(port), int(quorum))
            if password:
                client.sentinel_set(MASTER_NAME, "auth-pass", password)

    @_operation(metrics.KIND_SENTINEL, RESET_SENTINEL)
    def reset_sentinel(self, ip: str) -> None:
        with closing(self._sentinel(ip)) as client:
            client.sentinel_reset("*")

    @_operation(metrics.KIND_REDIS, APPLY_REDIS_CONFIG)
    def set_custom_redis_config(
        self, ip: str, port: int, configs: Sequence[str], password: str = ""
    ) -> None:
        """
        Apply ``CONFIG SET`` for every ``<parameter> <value>`` entry.

        Raises:
            ValidationError: If an entry is malformed, before any command is sent
        """
        parsed = [parse_config_entry(entry) for entry in configs]
        with closing(self._connect(ip, port, password)) as client:
            for parameter, value in parsed:
                client.config_set(parameter, value)

    @_operation(metrics.KIND_SENTINEL, APPLY_SENTINEL_CONFIG)
    def set_custom_sentinel_config(self, ip: str, configs: Sequence[str]) -> None:
        """Apply ``SENTINEL SET mymaster`` for every ``<parameter> <value>`` entry."""
        parsed = [parse_config_entry(entry) for entry in configs]
        with closing(self._sentinel(ip)) as client:
            for parameter, value in parsed:
                client.sentinel_set(MASTER_NAME, parameter, value)
