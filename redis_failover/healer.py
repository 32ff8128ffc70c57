"""Corrective operations applied to the live nodes of a RedisFailover."""

import asyncio
import logging
from typing import Optional

from .config import OperatorConfig
from .exceptions import NodeUnreachable, RedisFailoverError
from .models import RedisFailover
from .node_client import RedisNodeClient
from .store import KubernetesObjectStore
from .topology import REDIS_ROLE, PodInfo, oldest_first, selector_labels

logger = logging.getLogger(__name__)


class Healer:
    """
    One idempotent operation per discrepancy kind.

    Every node-targeted call raises its own error. A failed re-point can
    leave two masters live, so nothing here is skipped silently: only pods
    the caller names in ``skip`` (found unreachable during the check) are
    left out, and the chosen master is never among them.
    """

    def __init__(
        self,
        store: KubernetesObjectStore,
        node_client: RedisNodeClient,
        config: Optional[OperatorConfig] = None,
    ):
        """
        Initialize healer.

        Args:
            store: Object store used to enumerate pods
            node_client: Client for node commands
            config: Operator configuration
        """
        self.store = store
        self.node_client = node_client
        self.config = config or OperatorConfig()

    async def _redis_pods(self, rf: RedisFailover) -> list[PodInfo]:
        return await asyncio.to_thread(
            self.store.list_pods, rf.namespace, selector_labels(REDIS_ROLE, rf.name)
        )

    async def make_master(self, ip: str, password: Optional[str] = None) -> bool:
        return await self.node_client.make_master(ip, password)

    async def set_oldest_as_master(
        self, rf: RedisFailover, skip: frozenset[str] = frozenset()
    ) -> str:
        """
        Promote the earliest-created redis pod and point every other pod at it.

        Args:
            rf: RedisFailover being healed
            skip: Pod IPs not to re-point

        Returns:
            IP of the new master

        Raises:
            RedisFailoverError: If there are no redis pods
            NodeUnreachable: If the oldest pod is in skip
            NodeError: If any promote or re-point fails
        """
        pods = oldest_first(await self._redis_pods(rf))
        if not pods:
            raise RedisFailoverError(f"number of redis pods of {rf.key} is 0")

        master, *replicas = pods
        self._check_selectable(rf, master.ip, skip)
        password = rf.spec.redis.password or None
        logger.info(f"New master of {rf.key} is {master.name} with ip {master.ip}")
        await self.node_client.make_master(master.ip, password)
        await self._repoint(rf, replicas, master.ip, skip)
        return master.ip

    async def set_master_on_all(
        self, master_ip: str, rf: RedisFailover, skip: frozenset[str] = frozenset()
    ) -> None:
        """
        Assert master_ip as master and point every other redis pod at it.

        The master is asserted first; the rest are re-pointed one at a time.

        Raises:
            NodeUnreachable: If master_ip is in skip
            NodeError: If any promote or re-point fails
        """
        self._check_selectable(rf, master_ip, skip)
        pods = oldest_first(await self._redis_pods(rf))
        password = rf.spec.redis.password or None
        logger.debug(f"Ensure {master_ip} is master of {rf.key}")
        await self.node_client.make_master(master_ip, password)
        await self._repoint(rf, [pod for pod in pods if pod.ip != master_ip], master_ip, skip)

    @staticmethod
    def _check_selectable(rf: RedisFailover, master_ip: str, skip: frozenset[str]) -> None:
        # a node that missed the check has no observed state to build status from
        if master_ip in skip:
            raise NodeUnreachable(
                master_ip,
                f"selected as master of {rf.key} but unreachable during the check",
                role=REDIS_ROLE,
            )

    async def _repoint(
        self, rf: RedisFailover, pods: list[PodInfo], master_ip: str, skip: frozenset[str]
    ) -> None:
        password = rf.spec.redis.password or None
        for pod in pods:
            if pod.ip in skip:
                logger.warning(
                    f"Not re-pointing unreachable pod {pod.name} ({pod.ip}) to {master_ip}; "
                    "it may still claim the master role until the next pass"
                )
                continue
            logger.debug(f"Making pod {pod.name} slave of {master_ip}")
            await self.node_client.make_replica_of(pod.ip, master_ip, password)

    async def new_sentinel_monitor(
        self, ip: str, master_ip: str, quorum: int, password: Optional[str] = None
    ) -> bool:
        """Point a sentinel at master_ip with the freshly computed quorum."""
        logger.debug(f"Sentinel {ip} now monitors {master_ip} with quorum {quorum}")
        return await self.node_client.monitor_master(ip, master_ip, quorum, password)

    async def restore_sentinel(self, ip: str, expected_sentinels: Optional[int] = None) -> bool:
        """
        Clear the sentinel's cached peers so quorum is counted from live nodes.

        With expected_sentinels set, a sentinel that already monitors a
        master and reports that many peers is not reset. The re-monitor that
        follows runs SENTINEL REMOVE and MONITOR, which starts the group's
        tables over anyway.

        Args:
            ip: Sentinel IP
            expected_sentinels: Peer count a converged sentinel reports; when
                given and already matched, the reset is skipped

        Returns:
            True if the sentinel was reset
        """
        if expected_sentinels is not None:
            monitor = await self.node_client.get_sentinel_monitor(ip)
            if monitor.master_addr is not None and monitor.known_sentinels == expected_sentinels:
                return False
        logger.debug(f"Restoring sentinel {ip}")
        await self.node_client.reset_sentinel(ip)
        return True

    async def set_redis_custom_config(self, ip: str, rf: RedisFailover) -> int:
        logger.debug(f"Setting the custom config on redis {ip}")
        return await self.node_client.set_custom_redis_config(
            ip, rf.spec.redis.custom_config, rf.spec.redis.password or None
        )

    async def set_sentinel_custom_config(self, ip: str, rf: RedisFailover) -> int:
        logger.debug(f"Setting the custom config on sentinel {ip}")
        return await self.node_client.set_custom_sentinel_config(
            ip, rf.spec.sentinel.custom_config
        )
