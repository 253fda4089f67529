"""Watch, resync and worker pool dispatching RedisFailover resources to the handler."""

import asyncio
import logging
import threading
from typing import Any, Optional

import pydantic
from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_when_event_set,
    wait_exponential,
)
from urllib3.exceptions import HTTPError

from .cluster import ClusterConnection
from .config import Settings
from .errors import PassCancelledError
from .handler import RedisFailoverHandler
from .models import PassOutcome, RedisFailover
from .names import RF_GROUP, RF_PLURAL, RF_VERSION
from .reconciler import PassContext

logger = logging.getLogger(__name__)


class WorkQueue:
    """
    Queue of resource keys waiting for a pass.

    A key is queued at most once. A key being processed is never handed to a
    second worker; adding it again while it is processed queues it once more
    when the current pass is done.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: set[str] = set()
        self._processing: set[str] = set()
        self._dirty: set[str] = set()

    def add(self, key: str) -> None:
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._pending:
            return
        self._pending.add(key)
        self._queue.put_nowait(key)

    async def get(self) -> str:
        key = await self._queue.get()
        self._pending.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        self._queue.task_done()
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def __len__(self) -> int:
        return self._queue.qsize()


class RedisFailoverController:
    """
    Keeps every RedisFailover resource reconciled.

    Watch events and periodic resyncs feed a WorkQueue drained by a pool of
    workers. Each pass runs in a thread so blocking redis and Kubernetes calls
    never stall the event loop.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        handler: RedisFailoverHandler,
        settings: Settings,
    ):
        """
        Initialize controller.

        Args:
            cluster: Cluster connection
            handler: Handler receiving add and delete calls
            settings: Operator settings (namespace, resync interval, workers)
        """
        self.cluster = cluster
        self.custom_objects = cluster.custom_objects
        self.handler = handler
        self.settings = settings
        self.namespace = settings.watch_namespace
        self.queue = WorkQueue()
        self._objects: dict[str, RedisFailover] = {}
        self._watch = k8s_watch.Watch()
        self._cancel = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._watch_task: Optional[asyncio.Task] = None

    def _list_func(self):
        if self.namespace:
            return self.custom_objects.list_namespaced_custom_object
        return self.custom_objects.list_cluster_custom_object

    def _list_args(self) -> tuple:
        if self.namespace:
            return (RF_GROUP, RF_VERSION, self.namespace, RF_PLURAL)
        return (RF_GROUP, RF_VERSION, RF_PLURAL)

    def _parse(self, obj: dict[str, Any]) -> Optional[RedisFailover]:
        try:
            return RedisFailover.from_k8s_object(obj)
        except (KeyError, TypeError, ValueError, pydantic.ValidationError) as e:
            logger.warning(f"Ignoring malformed {RF_PLURAL} object: {e}")
            return None

    def handle_event(self, event_type: str, obj: dict[str, Any]) -> None:
        """
        Apply a watch event.

        Args:
            event_type: ADDED, MODIFIED or DELETED
            obj: Custom object dict
        """
        rf = self._parse(obj)
        if rf is None:
            return

        logger.info(f"Received {event_type} event for {RF_PLURAL} {rf.key}")

        if event_type == "DELETED":
            self._objects.pop(rf.key, None)
            self.handler.delete(rf.namespace, rf.name)
        elif event_type in ("ADDED", "MODIFIED"):
            self._objects[rf.key] = rf
            self.queue.add(rf.key)

    def _watch_resources(self) -> None:
        """Stream watch events until stopped, restarting on API errors."""
        for attempt in Retrying(
            retry=retry_if_exception_type((ApiException, HTTPError, OSError)),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            stop=stop_when_event_set(self._cancel),
            sleep=self._cancel.wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                self._stream_events()

    def _stream_events(self) -> None:
        # Each request ends after watch_timeout_seconds, so a stop is noticed
        # even when no event arrives
        while self._running:
            logger.debug(f"Watching {RF_PLURAL} in {self.namespace or 'all namespaces'}")
            for event in self._watch.stream(
                self._list_func(),
                *self._list_args(),
                timeout_seconds=self.settings.watch_timeout_seconds,
                _request_timeout=(
                    self.settings.watch_timeout_seconds
                    + self.settings.k8s_request_timeout_seconds
                ),
            ):
                if not self._running:
                    return
                try:
                    self._loop.call_soon_threadsafe(
                        self.handle_event, event["type"], event["object"]
                    )
                except RuntimeError:
                    logger.debug("Event loop closed, dropping watch event")
                    return

    def list_resources(self) -> list[RedisFailover]:
        result = self._list_func()(
            *self._list_args(),
            _request_timeout=self.settings.k8s_request_timeout_seconds,
        )
        resources = []
        for obj in result.get("items", []):
            rf = self._parse(obj)
            if rf is not None:
                resources.append(rf)
        return resources

    async def resync(self) -> None:
        """Queue every existing resource for a pass."""
        resources = await asyncio.to_thread(self.list_resources)
        for rf in resources:
            self._objects[rf.key] = rf
            self.queue.add(rf.key)
        logger.debug(f"Resynced {len(resources)} {RF_PLURAL}")

    async def _periodic_resync(self) -> None:
        while self._running:
            try:
                await self.resync()
                await asyncio.sleep(self.settings.resync_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic resync: {e}", exc_info=True)
                await asyncio.sleep(self.settings.resync_interval_seconds)

    async def process(self, key: str) -> None:
        """Run a pass for a queued key. Failures are logged and retried on resync."""
        rf = self._objects.get(key)
        if rf is None:
            return

        ctx = PassContext.with_timeout(self.settings.pass_timeout_seconds, self._cancel)
        try:
            result = await asyncio.to_thread(self.handler.add, rf, ctx)
        except PassCancelledError:
            logger.info(f"Pass over {key} cancelled on shutdown")
            return
        except Exception as e:
            logger.error(f"Unexpected error reconciling {RF_PLURAL} {key}: {e}", exc_info=True)
            return

        if result.outcome == PassOutcome.ERRORED:
            logger.warning(f"Pass over {key} failed, retrying on next event or resync: {result.message}")
        elif result.actions:
            logger.info(f"Pass over {key}: {result.outcome.value} ({', '.join(result.actions)})")

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"Worker {worker_id} started")
        while self._running:
            try:
                key = await self.queue.get()
            except asyncio.CancelledError:
                break
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def start(self) -> None:
        """Start watch, resync and workers."""
        if self._running:
            logger.warning("Controller already running")
            return

        self._running = True
        self._cancel.clear()
        self._loop = asyncio.get_running_loop()

        logger.info(
            f"Starting controller with {self.settings.concurrent_workers} workers, "
            f"resync every {self.settings.resync_interval_seconds}s"
        )

        self._watch_task = asyncio.create_task(asyncio.to_thread(self._watch_resources))
        self._tasks.append(asyncio.create_task(self._periodic_resync()))
        for worker_id in range(self.settings.concurrent_workers):
            self._tasks.append(asyncio.create_task(self._worker(worker_id)))

    async def stop(self) -> None:
        """Stop the controller and cancel passes in flight."""
        logger.info("Stopping controller")
        self._running = False
        self._cancel.set()
        self._watch.stop()

        for task in self._tasks:
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        # The watch thread cannot be cancelled, it ends with its current request
        if self._watch_task is not None:
            try:
                await asyncio.wait_for(
                    self._watch_task,
                    timeout=self.settings.watch_timeout_seconds
                    + self.settings.k8s_request_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("Watch request still open after shutdown timeout")
            except Exception as e:
                logger.error(f"Watch stopped with error: {e}")
            self._watch_task = None
