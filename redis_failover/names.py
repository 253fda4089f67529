"""Naming helpers and protocol constants for Redis failover resources."""

BASE_NAME = "rf"
REDIS_NAME = "r"
SENTINEL_NAME = "s"

REDIS_PORT = 6379
SENTINEL_PORT = 26379
MASTER_NAME = "mymaster"

# RedisFailover custom resource coordinates
RF_GROUP = "databases.spotahome.com"
RF_VERSION = "v1"
RF_PLURAL = "redisfailovers"
RF_KIND = "RedisFailover"


def generate_name(type_name: str, meta_name: str) -> str:
    """Build a workload name such as ``rfr-cache``."""
    return f"{BASE_NAME}{type_name}-{meta_name}"


def get_redis_name(name: str) -> str:
    """Name of the redis StatefulSet for a RedisFailover."""
    return generate_name(REDIS_NAME, name)


def get_sentinel_name(name: str) -> str:
    """Name of the sentinel Deployment for a RedisFailover."""
    return generate_name(SENTINEL_NAME, name)


def get_quorum(sentinel_replicas: int) -> int:
    """
    Minimum number of sentinels that must agree a master is down.

    Args:
        sentinel_replicas: Declared sentinel count

    Returns:
        floor(sentinel_replicas / 2) + 1
    """
    return sentinel_replicas // 2 + 1
