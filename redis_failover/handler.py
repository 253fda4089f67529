"""Entry points invoked by the controller for each RedisFailover event."""

import logging
from typing import Optional

from .errors import FailoverError, PassCancelledError
from .metrics import MetricsRecorder
from .models import PassOutcome, ReconcileResult, RedisFailover
from .reconciler import PassContext, Reconciler

logger = logging.getLogger(__name__)


class RedisFailoverHandler:
    """Validates resources, runs passes and reports cluster health."""

    def __init__(self, reconciler: Reconciler, recorder: MetricsRecorder):
        """
        Initialize handler.

        Args:
            reconciler: Check-and-heal engine
            recorder: Metrics recorder for cluster health
        """
        self.reconciler = reconciler
        self.recorder = recorder

    def add(self, rf: RedisFailover, ctx: Optional[PassContext] = None) -> ReconcileResult:
        """
        Handle a created, updated or resynced resource.

        Args:
            rf: RedisFailover resource
            ctx: Optional pass context

        Returns:
            ReconcileResult of the pass, with an errored outcome when the
            resource is invalid or the pass failed

        Raises:
            PassCancelledError: If the pass was cancelled on shutdown
        """
        try:
            rf.validate_resource()
            result = self.reconciler.check_and_heal(rf, ctx)
        except PassCancelledError:
            logger.info(f"Pass over {rf.key} cancelled")
            raise
        except FailoverError as e:
            self.recorder.mark_cluster_errored(rf.namespace, rf.name)
            logger.error(f"Error reconciling {rf.key}: {e}")
            return ReconcileResult(key=rf.key, outcome=PassOutcome.ERRORED, message=str(e))
        except Exception:
            self.recorder.mark_cluster_errored(rf.namespace, rf.name)
            raise

        logger.debug(f"Pass over {rf.key} finished: {result.outcome.value}")
        return result

    def delete(self, namespace: str, name: str) -> None:
        """
        Handle a deleted resource.

        Owned workloads are garbage collected by Kubernetes, only the health
        series of the cluster is dropped.
        """
        self.recorder.cluster_removed(namespace, name)
        logger.debug(f"Removed {namespace}/{name}, owned objects are garbage collected")
