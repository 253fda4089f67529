"""Check-and-heal pass driving a failover cluster toward a single master."""

import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Optional

from . import metrics
from .check import RedisFailoverCheck
from .config import Settings
from .errors import (
    CheckFailedError,
    FailoverError,
    FailoverIOError,
    PassCancelledError,
    PassDeadlineExceededError,
    SplitBrainError,
)
from .heal import RedisFailoverHeal
from .metrics import MetricsRecorder
from .models import PassOutcome, ReconcileResult, RedisFailover

logger = logging.getLogger(__name__)


class PassContext:
    """
    Cancellation and deadline shared by every call of a single pass.

    The context is checked before each checker and healer call. A pass that
    was cancelled stops with ``PassCancelledError``, one that ran past its
    deadline with ``PassDeadlineExceededError``.
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize pass context.

        Args:
            deadline: ``time.monotonic()`` value after which the pass stops, None for no deadline
            cancel_event: Event that cancels the pass when set
        """
        self.deadline = deadline
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def with_timeout(
        cls, timeout_seconds: float, cancel_event: Optional[threading.Event] = None
    ) -> "PassContext":
        return cls(time.monotonic() + timeout_seconds, cancel_event)

    def cancel(self) -> None:
        self.cancel_event.set()

    def ensure_active(self) -> None:
        """
        Raises:
            PassCancelledError: If the pass was cancelled
            PassDeadlineExceededError: If the deadline passed
        """
        if self.cancel_event.is_set():
            raise PassCancelledError("reconciliation pass cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise PassDeadlineExceededError("reconciliation pass deadline exceeded")


class Reconciler:
    """Runs check-and-heal passes over a RedisFailover resource."""

    def __init__(
        self,
        checker: RedisFailoverCheck,
        healer: RedisFailoverHeal,
        recorder: MetricsRecorder,
        settings: Settings,
    ):
        """
        Initialize reconciler.

        Args:
            checker: Read-only topology checks
            healer: Corrective writes
            recorder: Metrics recorder for check results and cluster health
            settings: Operator settings (grace period, pass timeout)
        """
        self.checker = checker
        self.healer = healer
        self.recorder = recorder
        self.grace_period = timedelta(seconds=settings.failover_grace_period_seconds)
        self.pass_timeout = settings.pass_timeout_seconds

    def _check(self, ctx: PassContext, func: Callable[..., Any], *args: Any) -> Any:
        ctx.ensure_active()
        return func(*args)

    def _heal(
        self,
        ctx: PassContext,
        actions: list[str],
        action: str,
        func: Callable[..., Any],
        *args: Any,
    ) -> Any:
        ctx.ensure_active()
        result = func(*args)
        actions.append(action)
        return result

    def _redis_check(self, rf: RedisFailover, indicator: str, error: Optional[Exception]) -> None:
        self.recorder.record_redis_check(
            rf.namespace, rf.name, indicator, metrics.NOT_APPLICABLE, metrics.check_status(error)
        )

    def _sentinel_check(
        self, rf: RedisFailover, indicator: str, sentinel_ip: str, error: Optional[Exception]
    ) -> None:
        self.recorder.record_sentinel_check(
            rf.namespace, rf.name, indicator, sentinel_ip, metrics.check_status(error)
        )

    def _claimed_masters(self, ctx: PassContext, rf: RedisFailover) -> tuple[str, ...]:
        """IPs of every node claiming the master role, for the split brain report."""
        ctx.ensure_active()
        try:
            snapshot = self.checker.get_topology(rf)
        except FailoverIOError as e:
            logger.warning(f"Could not list masters of {rf.key}: {e}")
            return ()
        return tuple(snapshot.masters())

    def _apply_redis_config(self, ctx: PassContext, rf: RedisFailover) -> None:
        try:
            for ip in self._check(ctx, self.checker.list_healthy_redis_ips, rf):
                self._check(ctx, self.healer.set_redis_custom_config, ip, rf)
        except FailoverError as e:
            self._redis_check(rf, metrics.APPLY_REDIS_CONFIG, e)
            raise
        self._redis_check(rf, metrics.APPLY_REDIS_CONFIG, None)

    def _apply_sentinel_config(self, ctx: PassContext, rf: RedisFailover, sentinel_ip: str) -> None:
        try:
            self._check(ctx, self.healer.set_sentinel_custom_config, sentinel_ip, rf)
        except FailoverError as e:
            self._sentinel_check(rf, metrics.APPLY_SENTINEL_CONFIG, sentinel_ip, e)
            raise
        self._sentinel_check(rf, metrics.APPLY_SENTINEL_CONFIG, sentinel_ip, None)

    def check_and_heal(self, rf: RedisFailover, ctx: Optional[PassContext] = None) -> ReconcileResult:
        """
        Run one check-and-heal pass.

        Args:
            rf: RedisFailover resource
            ctx: Pass context, a new one bounded by the pass timeout if not provided

        Returns:
            ReconcileResult with the healer actions issued during the pass

        Raises:
            SplitBrainError: If more than one master is detected
            FailoverIOError: If a probe or platform call fails, or the pass is cancelled
        """
        ctx = ctx or PassContext.with_timeout(self.pass_timeout)
        actions: list[str] = []

        # Wait for the platform to converge the scale first
        try:
            self._check(ctx, self.checker.check_redis_number, rf)
        except CheckFailedError as e:
            self._redis_check(rf, metrics.REDIS_REPLICA_MISMATCH, e)
            logger.debug(f"Number of redis mismatch in {rf.key}, waiting for statefulset: {e}")
            return ReconcileResult(key=rf.key, outcome=PassOutcome.NOOP, message=str(e))

        try:
            self._check(ctx, self.checker.check_sentinel_number, rf)
        except CheckFailedError as e:
            self._sentinel_check(rf, metrics.SENTINEL_REPLICA_MISMATCH, metrics.NOT_APPLICABLE, e)
            logger.debug(f"Number of sentinel mismatch in {rf.key}, waiting for deployment: {e}")
            return ReconcileResult(key=rf.key, outcome=PassOutcome.NOOP, message=str(e))

        masters = self._check(ctx, self.checker.count_masters, rf)
        master_ip: Optional[str] = None

        if masters == 0:
            self._redis_check(rf, metrics.NO_MASTER, CheckFailedError("no masters detected"))
            healthy_ips = self._check(ctx, self.checker.list_healthy_redis_ips, rf)

            if len(healthy_ips) == 1:
                logger.info(f"Single redis node in {rf.key} without master, promoting {healthy_ips[0]}")
                self._heal(ctx, actions, "make_master", self.healer.make_master, healthy_ips[0], rf)
                return ReconcileResult(key=rf.key, outcome=PassOutcome.HEALED, actions=actions)

            uptime = self._check(ctx, self.checker.minimum_redis_uptime, rf)
            if uptime < self.grace_period:
                logger.info(
                    f"No master in {rf.key}, youngest redis up for "
                    f"{uptime.total_seconds():.0f}s, waiting for sentinel failover"
                )
                return ReconcileResult(
                    key=rf.key,
                    outcome=PassOutcome.NOOP,
                    message="no master, failover in progress",
                )

            logger.warning(f"No master in {rf.key} after grace period, forcing master selection")
            master_ip = self._heal(
                ctx, actions, "set_oldest_as_master",
                self.healer.set_oldest_as_master, healthy_ips, rf,
            )
        elif masters == 1:
            self._redis_check(rf, metrics.NUMBER_OF_MASTERS, None)
        else:
            error = SplitBrainError(masters, self._claimed_masters(ctx, rf))
            self._redis_check(rf, metrics.NUMBER_OF_MASTERS, error)
            self.recorder.mark_cluster_errored(rf.namespace, rf.name)
            logger.error(f"{rf.key}: {error}")
            raise error

        if master_ip is None:
            master_ip = self._check(ctx, self.checker.get_master_ip, rf)

        try:
            self._check(ctx, self.checker.check_all_slaves_from_master, master_ip, rf)
            self._redis_check(rf, metrics.SLAVE_WRONG_MASTER, None)
        except CheckFailedError as e:
            self._redis_check(rf, metrics.SLAVE_WRONG_MASTER, e)
            logger.warning(f"Slave not associated to master in {rf.key}: {e}")
            healthy_ips = self._check(ctx, self.checker.list_healthy_redis_ips, rf)
            self._heal(
                ctx, actions, "set_master_on_all",
                self.healer.set_master_on_all, master_ip, healthy_ips, rf,
            )

        if rf.spec.redis_custom_config:
            self._apply_redis_config(ctx, rf)

        sentinels = self._check(ctx, self.checker.list_healthy_sentinel_ips, rf)

        for sentinel_ip in sentinels:
            try:
                self._check(ctx, self.checker.check_sentinel_monitor, sentinel_ip, master_ip, rf)
                self._sentinel_check(rf, metrics.SENTINEL_WRONG_MASTER, sentinel_ip, None)
            except CheckFailedError as e:
                self._sentinel_check(rf, metrics.SENTINEL_WRONG_MASTER, sentinel_ip, e)
                logger.warning(f"Fixing sentinel not monitoring expected master in {rf.key}: {e}")
                self._heal(
                    ctx, actions, "new_sentinel_monitor",
                    self.healer.new_sentinel_monitor, sentinel_ip, master_ip, rf,
                )

        # A reset re-learns both counts, so each sentinel is reset at most once per pass
        reset: set[str] = set()

        for sentinel_ip in sentinels:
            try:
                self._check(ctx, self.checker.check_sentinel_number_in_memory, sentinel_ip, rf)
                self._sentinel_check(rf, metrics.SENTINEL_NUMBER_IN_MEMORY_MISMATCH, sentinel_ip, None)
            except CheckFailedError as e:
                self._sentinel_check(rf, metrics.SENTINEL_NUMBER_IN_MEMORY_MISMATCH, sentinel_ip, e)
                logger.warning(f"Sentinel {sentinel_ip} of {rf.key} has wrong sentinels in memory: {e}")
                self._heal(
                    ctx, actions, "restore_sentinel", self.healer.restore_sentinel, sentinel_ip
                )
                reset.add(sentinel_ip)

        for sentinel_ip in sentinels:
            if sentinel_ip in reset:
                continue
            try:
                self._check(ctx, self.checker.check_sentinel_slaves_number_in_memory, sentinel_ip, rf)
                self._sentinel_check(
                    rf, metrics.REDIS_SLAVES_NUMBER_IN_MEMORY_MISMATCH, sentinel_ip, None
                )
            except CheckFailedError as e:
                self._sentinel_check(
                    rf, metrics.REDIS_SLAVES_NUMBER_IN_MEMORY_MISMATCH, sentinel_ip, e
                )
                logger.warning(f"Sentinel {sentinel_ip} of {rf.key} has wrong slaves in memory: {e}")
                self._heal(
                    ctx, actions, "restore_sentinel", self.healer.restore_sentinel, sentinel_ip
                )
                reset.add(sentinel_ip)

        if rf.spec.sentinel_custom_config:
            for sentinel_ip in sentinels:
                self._apply_sentinel_config(ctx, rf, sentinel_ip)

        self.recorder.mark_cluster_healthy(rf.namespace, rf.name)
        outcome = PassOutcome.HEALED if actions else PassOutcome.NOOP
        if actions:
            logger.info(f"Healed {rf.key}: {', '.join(actions)}")
        return ReconcileResult(key=rf.key, outcome=outcome, actions=actions)
