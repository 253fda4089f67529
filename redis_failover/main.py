"""Redis Failover Operator main application."""

import asyncio
import logging
import signal
from typing import Optional

from prometheus_client import start_http_server

from . import __version__
from .check import RedisFailoverChecker
from .cluster import ClusterConnection
from .config import Settings, get_settings
from .controller import RedisFailoverController
from .handler import RedisFailoverHandler
from .heal import RedisFailoverHealer
from .metrics import DummyRecorder, MetricsRecorder, PrometheusRecorder
from .platform import KubernetesGateway
from .reconciler import Reconciler
from .redis_client import RedisProbe

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def build_recorder(settings: Settings) -> MetricsRecorder:
    """Build the metrics recorder and expose it over HTTP when enabled."""
    if not settings.metrics_enabled:
        return DummyRecorder()

    recorder = PrometheusRecorder(prefix=settings.metrics_prefix)
    start_http_server(settings.metrics_port, registry=recorder.registry)
    logger.info(f"   Metrics: :{settings.metrics_port}/metrics")
    return recorder


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Operator settings
        """
        self.settings = settings
        self.cluster: Optional[ClusterConnection] = None
        self.controller: Optional[RedisFailoverController] = None
        self._shutdown = False

    def build_controller(self) -> RedisFailoverController:
        """Wire the probe, gateway, checker, healer and handler together."""
        recorder = build_recorder(self.settings)
        self.cluster = ClusterConnection(self.settings)

        gateway = KubernetesGateway(self.cluster, recorder, self.settings)
        probe = RedisProbe(recorder, self.settings)
        reconciler = Reconciler(
            checker=RedisFailoverChecker(gateway, probe),
            healer=RedisFailoverHealer(gateway, probe),
            recorder=recorder,
            settings=self.settings,
        )
        handler = RedisFailoverHandler(reconciler, recorder)
        return RedisFailoverController(self.cluster, handler, self.settings)

    async def start(self) -> None:
        """Start the application."""
        logger.info("Starting Redis Failover Operator...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Namespace: {self.settings.watch_namespace or 'all'}")
        logger.info(f"   Resync interval: {self.settings.resync_interval_seconds}s")

        self.controller = self.build_controller()
        await self.controller.start()

        logger.info("Redis Failover Operator started successfully")

        try:
            while not self._shutdown:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop the application."""
        logger.info("Shutting down Redis Failover Operator...")
        self._shutdown = True

        if self.controller:
            await self.controller.stop()
        if self.cluster:
            self.cluster.close()

        logger.info("Redis Failover Operator stopped")

    def handle_signal(self, sig: int) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self._shutdown = True


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    app = Application(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        await app.start()
    finally:
        await app.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
