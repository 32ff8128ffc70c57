"""Watch, resync and per-instance dispatch of reconciliation passes."""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException

from .ensurer import Ensurer
from .exceptions import RedisFailoverError, ValidationError
from .models import RedisFailover, WatchEvent
from .reconciler import PassResult, Reconciler
from .store import KubernetesObjectStore

logger = logging.getLogger(__name__)


def object_key(obj: dict) -> str:
    metadata = obj.get("metadata") or {}
    return f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"


@dataclass
class InstanceState:
    """Externally observable outcome of the latest pass of one instance."""

    ok: bool
    message: str
    updated_at: datetime
    master_ip: Optional[str] = None


class FailoverWatcher:
    """Streams RedisFailover watch events from the API server."""

    def __init__(self, store: KubernetesObjectStore, namespace: Optional[str] = None):
        """
        Initialize failover watcher.

        Args:
            store: Object store holding the custom objects API and CRD coordinates
            namespace: Namespace to watch, all namespaces when None
        """
        self.store = store
        self.namespace = namespace
        self._watch = k8s_watch.Watch()
        self._stopped = threading.Event()

    def _stream(self):
        api = self.store.custom_objects
        if self.namespace:
            return self._watch.stream(
                api.list_namespaced_custom_object,
                self.store.group,
                self.store.version,
                self.namespace,
                self.store.plural,
            )
        return self._watch.stream(
            api.list_cluster_custom_object,
            self.store.group,
            self.store.version,
            self.store.plural,
        )

    def run(self, handler: Callable[[WatchEvent], None]) -> None:
        """
        Block streaming events into handler until stop() is called.

        Args:
            handler: Callback invoked for every event
        """
        logger.info(f"Starting watch on redisfailovers in {self.namespace or 'all namespaces'}")
        while not self._stopped.is_set():
            try:
                for event in self._stream():
                    obj = event["object"]
                    metadata = obj.get("metadata", {})
                    handler(
                        WatchEvent(
                            event_type=event["type"],
                            name=metadata.get("name", ""),
                            namespace=metadata.get("namespace", ""),
                            object=obj,
                        )
                    )
            except ApiException as e:
                if e.status == 410:  # Resource version too old
                    logger.warning("Watch expired, restarting...")
                    continue
                logger.error(f"Error watching redisfailovers: {e}", exc_info=True)
                raise

    def stop(self) -> None:
        """Stop the active watch."""
        self._stopped.set()
        self._watch.stop()


class FailoverController:
    """
    Dispatches reconciliation passes for every RedisFailover.

    At most one pass per instance is in flight; distinct instances run
    concurrently. A failed pass is recorded in the instance state and left
    for the next event or resync to retry.
    """

    def __init__(
        self,
        store: KubernetesObjectStore,
        reconciler: Reconciler,
        ensurer: Ensurer,
        namespace: Optional[str] = None,
        resync_interval: int = 30,
        watcher: Optional[FailoverWatcher] = None,
    ):
        """
        Initialize failover controller.

        Args:
            store: Object store used for resync listings
            reconciler: Reconciler running each pass
            ensurer: Ensurer used for owned-object cleanup on delete
            namespace: Namespace to manage, all namespaces when None
            resync_interval: Seconds between full resync passes
            watcher: Watch source, built from the store when None
        """
        self.store = store
        self.reconciler = reconciler
        self.ensurer = ensurer
        self.namespace = namespace
        self.resync_interval = resync_interval
        self.watcher = watcher or FailoverWatcher(store, namespace)
        self.states: dict[str, InstanceState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._generations: dict[str, int] = {}
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def run_pass(self, rf: RedisFailover) -> Optional[PassResult]:
        """
        Run one pass for an instance, serialized per instance key.

        Returns:
            PassResult, or None if the pass failed
        """
        key = rf.key
        async with self._lock(key):
            try:
                result = await self.reconciler.reconcile(rf)
            except RedisFailoverError as e:
                logger.error(f"Reconciliation of {key} failed: {e}")
                self.states[key] = InstanceState(
                    ok=False, message=str(e), updated_at=datetime.utcnow()
                )
                return None
            except Exception as e:
                logger.error(f"Unexpected error reconciling {key}: {e}", exc_info=True)
                self.states[key] = InstanceState(
                    ok=False, message=str(e), updated_at=datetime.utcnow()
                )
                return None

            self.states[key] = InstanceState(
                ok=True,
                message="ok",
                updated_at=datetime.utcnow(),
                master_ip=result.master_ip,
            )
            return result

    async def handle_delete(self, rf: RedisFailover) -> None:
        """
        Clean up after a deleted instance.

        Owner references already let the API server collect the children;
        the explicit delete covers anything it has not reached yet. The
        instance lock is kept so a pass still queued on it stays serialized
        with any pass a recreated object triggers.
        """
        key = rf.key
        async with self._lock(key):
            if rf.metadata.uid:
                try:
                    deleted = await asyncio.to_thread(
                        self.ensurer.cleanup, rf.namespace, rf.metadata.uid
                    )
                    logger.info(f"Cleaned up {len(deleted)} objects of {key}")
                except RedisFailoverError as e:
                    logger.error(f"Cleanup of {key} failed: {e}")
            self.states.pop(key, None)
            self._generations.pop(key, None)

    def _parse(self, obj: dict) -> Optional[RedisFailover]:
        """Parse a raw object, recording a failed state when it is malformed."""
        try:
            return RedisFailover.from_dict(obj)
        except ValidationError as e:
            key = object_key(obj)
            logger.error(f"Skipping malformed redisfailover {key}: {e}")
            self.states[key] = InstanceState(
                ok=False, message=str(e), updated_at=datetime.utcnow()
            )
            return None

    async def handle_event(self, event: WatchEvent) -> None:
        """Route a watch event to a pass or a cleanup."""
        if event.event_type == "ERROR":
            logger.error(f"Watch error event: {event.object}")
            return

        rf = self._parse(event.object)
        if rf is None:
            if event.event_type == "DELETED":
                self.states.pop(object_key(event.object), None)
            return
        key = rf.key
        generation = event.object.get("metadata", {}).get("generation")

        logger.info(f"Received {event.event_type} event for redisfailover {key}")
        if event.event_type == "DELETED":
            await self.handle_delete(rf)
            return

        if event.event_type == "MODIFIED" and generation is not None:
            # status writes bump resourceVersion but not generation
            if self._generations.get(key) == generation:
                logger.debug(f"Ignoring status-only update of {key}")
                return
        if generation is not None:
            self._generations[key] = generation
        await self.run_pass(rf)

    async def resync(self) -> None:
        """Run a pass for every RedisFailover currently stored."""
        try:
            objects = await asyncio.to_thread(self.store.list_failover_objects, self.namespace)
        except RedisFailoverError as e:
            logger.error(f"Resync listing failed: {e}")
            return
        failovers = [rf for rf in map(self._parse, objects) if rf is not None]
        logger.debug(f"Resyncing {len(failovers)} redisfailovers")
        await asyncio.gather(*(self.run_pass(rf) for rf in failovers))

    def _on_watch_event(self, event: WatchEvent) -> None:
        # called from the watch thread
        if not self._running or self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(self._safe_handle(event), self._loop)

    async def _safe_handle(self, event: WatchEvent) -> None:
        try:
            await self.handle_event(event)
        except Exception as e:
            logger.error(
                f"Error handling {event.event_type} for {event.namespace}/{event.name}: {e}",
                exc_info=True,
            )

    async def _periodic_resync(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.resync_interval)
                await self.resync()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic resync: {e}", exc_info=True)

    async def start(self) -> None:
        """Start watching and resyncing."""
        if self._running:
            logger.warning("Failover controller already running")
            return

        self._running = True
        self._loop = asyncio.get_running_loop()
        logger.info(
            f"Starting failover controller for {self.namespace or 'all namespaces'}, "
            f"resync every {self.resync_interval}s"
        )

        self._tasks.append(
            asyncio.create_task(asyncio.to_thread(self.watcher.run, self._on_watch_event))
        )
        self._tasks.append(asyncio.create_task(self._periodic_resync()))

    async def stop(self) -> None:
        """Stop the controller; in-flight passes finish on their own."""
        logger.info("Stopping failover controller")
        self._running = False
        self.watcher.stop()

        for task in self._tasks:
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
