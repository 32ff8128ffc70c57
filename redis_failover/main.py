"""Redis failover operator main application."""

import asyncio
import logging
import signal
from typing import Optional

from .checker import Checker
from .cluster import ClusterConnection
from .config import Settings, get_settings
from .controller import FailoverController
from .ensurer import Ensurer
from .healer import Healer
from .node_client import RedisNodeClient
from .reconciler import Reconciler
from .store import KubernetesObjectStore

logger = logging.getLogger(__name__)


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.cluster: Optional[ClusterConnection] = None
        self.controller: Optional[FailoverController] = None
        self._shutdown = False

    def build_controller(self, cluster: ClusterConnection) -> FailoverController:
        """Wire the store, node client and pass stages into a controller."""
        settings = self.settings
        operator_config = settings.operator_config()

        store = KubernetesObjectStore(
            cluster,
            group=settings.crd_group,
            version=settings.crd_version,
            plural=settings.crd_plural,
        )
        node_client = RedisNodeClient(
            redis_port=settings.redis_port,
            sentinel_port=settings.sentinel_port,
            master_group=settings.master_group_name,
            timeout=settings.node_timeout_seconds,
        )
        ensurer = Ensurer(cluster, store, operator_config)
        checker = Checker(store, node_client, operator_config, settings.node_timeout_seconds)
        healer = Healer(store, node_client, operator_config)
        reconciler = Reconciler(store, ensurer, checker, healer, operator_config)

        return FailoverController(
            store,
            reconciler,
            ensurer,
            namespace=settings.watch_namespace,
            resync_interval=settings.resync_interval_seconds,
        )

    async def start(self) -> None:
        """Start the application."""
        from . import __version__

        logger.info("Starting Redis failover operator...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Namespace: {self.settings.watch_namespace or 'all'}")
        logger.info(f"   Resync interval: {self.settings.resync_interval_seconds}s")

        self.cluster = ClusterConnection(
            kubeconfig_path=self.settings.kubeconfig_path,
            context=self.settings.kube_context,
        )
        logger.info(f"   Kubernetes: {self.cluster.get_cluster_version()}")

        self.controller = self.build_controller(self.cluster)
        await self.controller.start()

        logger.info("Redis failover operator started")

        # Run until shutdown signal
        try:
            while not self._shutdown:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop the application."""
        logger.info("Shutting down Redis failover operator...")
        self._shutdown = True

        if self.controller:
            await self.controller.stop()
        if self.cluster:
            self.cluster.close()

        logger.info("Redis failover operator stopped")

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
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = Application(settings)

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        await app.start()
    finally:
        await app.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
