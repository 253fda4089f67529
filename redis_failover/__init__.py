"""Redis Failover Operator - self-healing Redis Sentinel clusters on Kubernetes."""

from .check import RedisFailoverCheck, RedisFailoverChecker
from .cluster import ClusterConnection
from .config import Settings, get_settings
from .controller import RedisFailoverController, WorkQueue
from .errors import (
    AuthSecretError,
    CheckFailedError,
    FailoverError,
    FailoverIOError,
    PassCancelledError,
    PassDeadlineExceededError,
    PlatformError,
    RedisCommandError,
    SentinelNotReadyError,
    SplitBrainError,
    ValidationError,
)
from .handler import RedisFailoverHandler
from .heal import RedisFailoverHeal, RedisFailoverHealer
from .metrics import DummyRecorder, MetricsRecorder, PrometheusRecorder
from .models import (
    ClusterTopologySnapshot,
    FailoverSpec,
    PassOutcome,
    PodInfo,
    ReconcileResult,
    RedisFailover,
    RedisNodeObservation,
    SentinelNodeObservation,
)
from .names import get_quorum, get_redis_name, get_sentinel_name
from .platform import KubernetesGateway, PlatformGateway
from .reconciler import PassContext, Reconciler
from .redis_client import RedisClient, RedisProbe

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Reconciliation
    "Reconciler",
    "PassContext",
    "RedisFailoverHandler",
    "RedisFailoverController",
    "WorkQueue",
    # Checks and heals
    "RedisFailoverCheck",
    "RedisFailoverChecker",
    "RedisFailoverHeal",
    "RedisFailoverHealer",
    # Clients
    "ClusterConnection",
    "PlatformGateway",
    "KubernetesGateway",
    "RedisClient",
    "RedisProbe",
    # Metrics
    "MetricsRecorder",
    "PrometheusRecorder",
    "DummyRecorder",
    # Models
    "FailoverSpec",
    "RedisFailover",
    "PodInfo",
    "RedisNodeObservation",
    "SentinelNodeObservation",
    "ClusterTopologySnapshot",
    "PassOutcome",
    "ReconcileResult",
    # Naming
    "get_quorum",
    "get_redis_name",
    "get_sentinel_name",
    # Errors
    "FailoverError",
    "FailoverIOError",
    "RedisCommandError",
    "SentinelNotReadyError",
    "PlatformError",
    "AuthSecretError",
    "PassCancelledError",
    "PassDeadlineExceededError",
    "CheckFailedError",
    "SplitBrainError",
    "ValidationError",
]
