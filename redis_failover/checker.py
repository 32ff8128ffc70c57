"""Inspection of the live Redis / Sentinel topology of a RedisFailover."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from .config import OperatorConfig
from .discrepancy import (
    ConfigDrift,
    Discrepancy,
    MultipleMasters,
    NoMaster,
    SentinelMisconfigured,
    SentinelNeedsReset,
    UnreachableNode,
)
from .exceptions import NodeUnreachable
from .models import RedisFailover
from .node_client import RedisNodeClient, split_config_line
from .store import KubernetesObjectStore
from .topology import (
    REDIS_ROLE,
    SENTINEL_ROLE,
    PodInfo,
    RedisNodeView,
    SentinelView,
    Topology,
    oldest_first,
    selector_labels,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Outcome of one check: what is live and how it drifted."""

    topology: Topology
    discrepancies: list[Discrepancy] = field(default_factory=list)


def classify_masters(topology: Topology) -> list[Discrepancy]:
    if not topology.redis and not topology.unreachable_redis:
        # nothing scheduled yet, the statefulset will bring pods up
        return []
    masters = topology.masters
    if not masters:
        return [NoMaster()]
    if len(masters) > 1:
        return [MultipleMasters(master_ips=tuple(node.ip for node in masters))]
    return []


def classify_sentinels(topology: Topology, master_ip: str) -> list[Discrepancy]:
    """Flag sentinels that do not monitor master_ip with the live quorum."""
    quorum = topology.quorum
    return [
        SentinelMisconfigured(
            sentinel_ip=view.ip,
            monitored=view.master_addr,
            expected_master=master_ip,
            quorum=view.quorum,
            expected_quorum=quorum,
        )
        for view in topology.sentinels
        if view.master_addr != master_ip or view.quorum != quorum
    ]


def classify_sentinel_tables(topology: Topology) -> list[Discrepancy]:
    """Flag sentinels whose cached peer or replica tables are stale."""
    discrepancies: list[Discrepancy] = []
    expected_peers = topology.live_sentinel_count - 1
    max_replicas = max(len(topology.redis) - 1, 0)
    for view in topology.sentinels:
        if view.known_sentinels != expected_peers:
            discrepancies.append(
                SentinelNeedsReset(
                    sentinel_ip=view.ip,
                    known=view.known_sentinels,
                    expected=expected_peers,
                )
            )
        elif view.known_replicas > max_replicas:
            discrepancies.append(
                SentinelNeedsReset(
                    sentinel_ip=view.ip,
                    known=view.known_replicas,
                    expected=max_replicas,
                    table="replicas",
                )
            )
    return discrepancies


def classify_config(topology: Topology, rf: RedisFailover) -> list[Discrepancy]:
    """Ordered comparison of applied config lines against the declared ones."""
    discrepancies: list[Discrepancy] = []
    redis_lines = rf.spec.redis.custom_config
    sentinel_lines = rf.spec.sentinel.custom_config
    password = rf.spec.redis.password

    for node in topology.redis:
        if node.config != redis_lines:
            discrepancies.append(ConfigDrift(role=REDIS_ROLE, ip=node.ip))
        elif password and node.credential != password:
            discrepancies.append(ConfigDrift(role=REDIS_ROLE, ip=node.ip, reason="credential"))

    for view in topology.sentinels:
        if view.config != sentinel_lines:
            discrepancies.append(ConfigDrift(role=SENTINEL_ROLE, ip=view.ip))

    return discrepancies


def applied_lines(declared: list[str], applied: dict[str, str]) -> list[str]:
    """Render applied values in declared order so the two lists compare line by line."""
    lines = []
    for line in declared:
        key, _ = split_config_line(line)
        if key in applied:
            lines.append(f"{key} {applied[key]}")
    return lines


class Checker:
    """
    Observes every live node of a RedisFailover and classifies drift.

    Per-node queries run concurrently, each bounded by the node timeout. A
    node that does not answer is recorded as unreachable and left out of the
    live topology; only a failed pod listing is a hard error.
    """

    def __init__(
        self,
        store: KubernetesObjectStore,
        node_client: RedisNodeClient,
        config: Optional[OperatorConfig] = None,
        node_timeout: float = 5.0,
    ):
        """
        Initialize checker.

        Args:
            store: Object store used to enumerate pods
            node_client: Client for node queries
            config: Operator configuration
            node_timeout: Upper bound on each node's queries, in seconds
        """
        self.store = store
        self.node_client = node_client
        self.config = config or OperatorConfig()
        self.node_timeout = node_timeout

    async def list_redis_pods(self, rf: RedisFailover) -> list[PodInfo]:
        return await asyncio.to_thread(
            self.store.list_pods, rf.namespace, selector_labels(REDIS_ROLE, rf.name)
        )

    async def list_sentinel_pods(self, rf: RedisFailover) -> list[PodInfo]:
        return await asyncio.to_thread(
            self.store.list_pods, rf.namespace, selector_labels(SENTINEL_ROLE, rf.name)
        )

    async def check(self, rf: RedisFailover) -> CheckResult:
        """
        Inspect the live topology and report discrepancies.

        Raises:
            ObjectStoreError: If pods cannot be enumerated
            ProtocolRejected: If a node refuses a query
        """
        redis_pods = oldest_first(await self.list_redis_pods(rf))
        sentinel_pods = oldest_first(await self.list_sentinel_pods(rf))

        results = await asyncio.gather(
            *(self._observe_redis(pod, rf) for pod in redis_pods),
            *(self._observe_sentinel(pod, rf) for pod in sentinel_pods),
            return_exceptions=True,
        )
        # every query has finished; now surface the first hard failure
        for result in results:
            if isinstance(result, BaseException):
                raise result

        topology = Topology()
        discrepancies: list[Discrepancy] = []
        for pod, view in zip(redis_pods, results[: len(redis_pods)]):
            if view is None:
                topology.unreachable_redis.append(pod)
                discrepancies.append(UnreachableNode(role=REDIS_ROLE, ip=pod.ip))
            else:
                topology.redis.append(view)
        for pod, view in zip(sentinel_pods, results[len(redis_pods):]):
            if view is None:
                topology.unreachable_sentinels.append(pod)
                discrepancies.append(UnreachableNode(role=SENTINEL_ROLE, ip=pod.ip))
            else:
                topology.sentinels.append(view)

        discrepancies.extend(classify_masters(topology))
        master_ip = topology.master_ip
        if master_ip is not None:
            discrepancies.extend(classify_sentinels(topology, master_ip))
        discrepancies.extend(classify_sentinel_tables(topology))
        discrepancies.extend(classify_config(topology, rf))

        logger.info(
            f"Checked {rf.key}: {len(topology.redis)}/{len(redis_pods)} redis, "
            f"{len(topology.sentinels)}/{len(sentinel_pods)} sentinels live, "
            f"{len(discrepancies)} discrepancies"
        )
        return CheckResult(topology=topology, discrepancies=discrepancies)

    async def _observe_redis(
        self, pod: PodInfo, rf: RedisFailover
    ) -> Union[RedisNodeView, None]:
        try:
            return await asyncio.wait_for(self._query_redis(pod, rf), self.node_timeout)
        except (NodeUnreachable, asyncio.TimeoutError) as e:
            logger.warning(f"Redis {pod.name} ({pod.ip}) unreachable, treating as absent: {e}")
            return None

    async def _query_redis(self, pod: PodInfo, rf: RedisFailover) -> RedisNodeView:
        password = rf.spec.redis.password or None
        role = await self.node_client.get_role(pod.ip, password)
        declared = rf.spec.redis.custom_config
        keys = [split_config_line(line)[0] for line in declared]
        if password:
            keys.append("masterauth")
        applied = await self.node_client.get_redis_config(pod.ip, keys, password) if keys else {}
        return RedisNodeView(
            pod=pod,
            is_master=role.is_master,
            master_host=role.master_host,
            config=applied_lines(declared, applied),
            credential=applied.get("masterauth"),
        )

    async def _observe_sentinel(
        self, pod: PodInfo, rf: RedisFailover
    ) -> Union[SentinelView, None]:
        try:
            return await asyncio.wait_for(self._query_sentinel(pod, rf), self.node_timeout)
        except (NodeUnreachable, asyncio.TimeoutError) as e:
            logger.warning(f"Sentinel {pod.name} ({pod.ip}) unreachable, treating as absent: {e}")
            return None

    async def _query_sentinel(self, pod: PodInfo, rf: RedisFailover) -> SentinelView:
        monitor = await self.node_client.get_sentinel_monitor(pod.ip)
        return SentinelView(
            pod=pod,
            master_addr=monitor.master_addr,
            quorum=monitor.quorum,
            known_sentinels=monitor.known_sentinels,
            known_replicas=monitor.known_replicas,
            config=applied_lines(rf.spec.sentinel.custom_config, monitor.settings),
        )
