"""Data models for Redis failover reconciliation."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationError
from .names import REDIS_PORT

DEFAULT_REDIS_REPLICAS = 3
DEFAULT_SENTINEL_REPLICAS = 3
MAX_NAME_LENGTH = 48


def parse_config_entry(entry: str) -> tuple[str, str]:
    """
    Split a custom config entry such as ``maxmemory 100mb`` into parameter and value.

    A value of ``""`` sets the parameter to an empty string.

    Raises:
        ValidationError: If the entry has no value
    """
    parameter, _, value = entry.strip().partition(" ")
    if not parameter or not value:
        raise ValidationError(f"configuration '{entry}' malformed")
    if value == '""':
        return parameter, ""
    return parameter, value


class FailoverSpec(BaseModel):
    """
    Desired state of a Redis failover cluster.

    Read-only input to a reconciliation pass.
    """

    model_config = ConfigDict(frozen=True)

    redis_replicas: int = DEFAULT_REDIS_REPLICAS
    sentinel_replicas: int = DEFAULT_SENTINEL_REPLICAS
    auth_secret_ref: Optional[str] = None
    redis_port: int = REDIS_PORT
    redis_custom_config: tuple[str, ...] = ()
    sentinel_custom_config: tuple[str, ...] = ()

    @field_validator("redis_replicas", "sentinel_replicas", mode="before")
    @classmethod
    def _default_replicas(cls, value: Any, info) -> int:
        if value is None or int(value) <= 0:
            if info.field_name == "redis_replicas":
                return DEFAULT_REDIS_REPLICAS
            return DEFAULT_SENTINEL_REPLICAS
        return int(value)

    @field_validator("redis_port", mode="before")
    @classmethod
    def _default_port(cls, value: Any) -> int:
        if value is None or int(value) <= 0:
            return REDIS_PORT
        return int(value)


class RedisFailover(BaseModel):
    """A managed RedisFailover resource."""

    name: str
    namespace: str = "default"
    labels: dict[str, str] = Field(default_factory=dict)
    spec: FailoverSpec = Field(default_factory=FailoverSpec)

    @property
    def key(self) -> str:
        """Resource identity used to serialize reconciliation passes."""
        return f"{self.namespace}/{self.name}"

    def validate_resource(self) -> None:
        """
        Check the resource can be reconciled.

        Raises:
            ValidationError: If the name is too long or a custom config entry is malformed
        """
        if len(self.name) > MAX_NAME_LENGTH:
            raise ValidationError(f"name length can't be higher than {MAX_NAME_LENGTH}")
        for entry in self.spec.redis_custom_config + self.spec.sentinel_custom_config:
            parse_config_entry(entry)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> "RedisFailover":
        """
        Build a RedisFailover from a custom object returned by the Kubernetes API.

        Args:
            obj: Custom object dict (metadata + spec)

        Returns:
            RedisFailover instance
        """
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        redis_spec = spec.get("redis") or {}
        sentinel_spec = spec.get("sentinel") or {}
        auth_spec = spec.get("auth") or {}

        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            labels=dict(metadata.get("labels") or {}),
            spec=FailoverSpec(
                redis_replicas=redis_spec.get("replicas"),
                sentinel_replicas=sentinel_spec.get("replicas"),
                redis_port=redis_spec.get("port"),
                auth_secret_ref=auth_spec.get("secretPath") or None,
                redis_custom_config=tuple(redis_spec.get("customConfig") or ()),
                sentinel_custom_config=tuple(sentinel_spec.get("customConfig") or ()),
            ),
        )


class PodInfo(BaseModel):
    """Platform view of a single pod."""

    name: str
    ip: Optional[str] = None
    phase: Optional[str] = None
    start_time: Optional[datetime] = None
    deleting: bool = False

    @property
    def is_running(self) -> bool:
        """True when the pod is running, not terminating and has an IP."""
        return self.phase == "Running" and not self.deleting and bool(self.ip)

    @property
    def is_scheduling(self) -> bool:
        """True while the pod is pending or being deleted."""
        return self.deleting or self.phase == "Pending"

    @property
    def is_terminal(self) -> bool:
        return self.phase in ("Succeeded", "Failed")


class RedisNodeObservation(BaseModel):
    """Role of a redis node as probed during one pass."""

    ip: str
    is_master: bool
    slave_of_master: Optional[str] = None


class SentinelNodeObservation(BaseModel):
    """A sentinel's view of the cluster as probed during one pass."""

    ip: str
    monitored_master_ip: str
    known_sentinel_count: int
    known_slave_count: int


class ClusterTopologySnapshot(BaseModel):
    """Observations gathered in a single pass. Never cached across passes."""

    spec: FailoverSpec
    redis_nodes: list[RedisNodeObservation] = Field(default_factory=list)
    sentinel_nodes: list[SentinelNodeObservation] = Field(default_factory=list)
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def masters(self) -> list[str]:
        """IPs of the redis nodes reporting the master role."""
        return [node.ip for node in self.redis_nodes if node.is_master]


class PassOutcome(str, Enum):
    """Final outcome of a reconciliation pass."""

    NOOP = "noop"
    HEALED = "healed"
    ERRORED = "errored"


class ReconcileResult(BaseModel):
    """Result of one check-and-heal pass."""

    key: str
    outcome: PassOutcome
    actions: list[str] = Field(default_factory=list)
    message: Optional[str] = None
