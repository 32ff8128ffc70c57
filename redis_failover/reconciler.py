"""One reconciliation pass: Ensure -> Check -> Heal -> persist status."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from .checker import CheckResult, Checker, classify_sentinels
from .config import OperatorConfig
from .discrepancy import (
    ConfigDrift,
    Discrepancy,
    DiscrepancySet,
    SentinelMisconfigured,
)
from .ensurer import Ensurer
from .exceptions import ObjectStoreError, StatusWriteError
from .generator import owner_references
from .healer import Healer
from .models import RedisFailover, RedisFailoverStatus
from .store import KubernetesObjectStore
from .topology import (
    REDIS_ROLE,
    SENTINEL_ROLE,
    Topology,
    build_status,
    instance_labels,
    select_oldest,
)

logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    """What one pass observed and did."""

    key: str
    master_ip: Optional[str] = None
    discrepancies: list[Discrepancy] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    status: Optional[RedisFailoverStatus] = None
    status_written: bool = False


class Reconciler:
    """
    Runs one strictly staged pass per triggered event.

    A failure at any stage aborts the remaining stages and propagates to the
    caller; nothing is retried here. Convergence comes from the next pass.
    Re-pointing nodes is a plain sequence of commands with no consensus step
    of its own, so a node that fails mid-sequence can leave a brief window
    with two masters until Sentinel or the next pass resolves it.
    """

    def __init__(
        self,
        store: KubernetesObjectStore,
        ensurer: Ensurer,
        checker: Checker,
        healer: Healer,
        config: Optional[OperatorConfig] = None,
    ):
        """
        Initialize reconciler.

        Args:
            store: Object store for status reads and writes
            ensurer: Ensurer for managed objects
            checker: Topology checker
            healer: Topology healer
            config: Operator configuration holding default labels
        """
        self.store = store
        self.ensurer = ensurer
        self.checker = checker
        self.healer = healer
        self.config = config or OperatorConfig()

    def labels_for(self, rf: RedisFailover) -> dict[str, str]:
        return instance_labels(rf, self.config.default_labels)

    async def reconcile(self, rf: RedisFailover) -> PassResult:
        """
        Run one full pass for a RedisFailover.

        Raises:
            ValidationError: Before any side effect, if rf.spec is invalid
            ObjectStoreError: If managed objects or pods cannot be handled
            NodeError: If a selected node cannot be healed
            StatusWriteError: If the final status write fails
        """
        rf = rf.validated()
        result = PassResult(key=rf.key)

        logger.info(f"Ensuring objects of {rf.key}")
        await asyncio.to_thread(
            self.ensurer.ensure, rf, self.labels_for(rf), owner_references(rf)
        )

        check = await self.checker.check(rf)
        result.discrepancies = list(check.discrepancies)
        grouped = DiscrepancySet.group(check.discrepancies)
        for node in grouped.unreachable:
            logger.warning(f"{rf.key}: {node.role} {node.ip} degraded, left out of this pass")

        result.master_ip = await self._resolve_master(rf, check, grouped, result)
        remonitored: set[str] = set()
        if result.master_ip is not None:
            remonitored = await self._resolve_sentinels(rf, check.topology, grouped, result)
        await self._resolve_config(rf, grouped, remonitored, result)

        await self._persist_status(rf, check.topology, result)
        return result

    async def _resolve_master(
        self,
        rf: RedisFailover,
        check: CheckResult,
        grouped: DiscrepancySet,
        result: PassResult,
    ) -> Optional[str]:
        topology = check.topology
        skip = topology.unreachable_ips

        if grouped.no_master:
            logger.warning(f"{rf.key}: no master, promoting the oldest redis")
            master_ip = await self.healer.set_oldest_as_master(rf, skip=skip)
            result.actions.append(f"set_oldest_as_master:{master_ip}")
            return master_ip

        if grouped.multiple_masters is not None:
            conflicting = [
                node.pod for node in topology.masters
                if node.ip in grouped.multiple_masters.master_ips
            ]
            survivor = select_oldest(conflicting)
            logger.warning(
                f"{rf.key}: {len(conflicting)} masters "
                f"{list(grouped.multiple_masters.master_ips)}, keeping {survivor.ip}"
            )
            await self.healer.set_master_on_all(survivor.ip, rf, skip=skip)
            result.actions.append(f"set_master_on_all:{survivor.ip}")
            return survivor.ip

        return topology.master_ip

    async def _resolve_sentinels(
        self,
        rf: RedisFailover,
        topology: Topology,
        grouped: DiscrepancySet,
        result: PassResult,
    ) -> set[str]:
        """Fix flagged sentinels; returns the IPs given a new monitor."""
        master_ip = result.master_ip
        if master_ip != topology.master_ip:
            # the check compared against no master or several; compare again
            for item in classify_sentinels(topology, master_ip):
                grouped.sentinels.setdefault(item.sentinel_ip, item)
                result.discrepancies.append(item)

        quorum = topology.quorum
        password = rf.spec.redis.password or None
        remonitored: set[str] = set()
        for view in topology.sentinels:
            item = grouped.sentinels.get(view.ip)
            if item is None:
                continue
            expected = None
            if isinstance(item, SentinelMisconfigured):
                expected = topology.live_sentinel_count - 1
            logger.info(f"{rf.key}: fixing sentinel {view.ip} ({type(item).__name__})")
            await self.healer.restore_sentinel(view.ip, expected_sentinels=expected)
            if await self.healer.new_sentinel_monitor(view.ip, master_ip, quorum, password):
                remonitored.add(view.ip)
            result.actions.append(f"sentinel:{view.ip}")
        return remonitored

    async def _resolve_config(
        self,
        rf: RedisFailover,
        grouped: DiscrepancySet,
        remonitored: set[str],
        result: PassResult,
    ) -> None:
        drifts = list(grouped.config_drift)
        if rf.spec.sentinel.custom_config:
            # SENTINEL REMOVE drops the group settings along with the monitor
            drifts.extend(
                ConfigDrift(role=SENTINEL_ROLE, ip=ip, reason="settings after re-monitor")
                for ip in sorted(remonitored)
            )

        seen: set[tuple[str, str]] = set()
        for drift in drifts:
            if (drift.role, drift.ip) in seen:
                continue
            seen.add((drift.role, drift.ip))
            await self._push_config(rf, drift)
            result.actions.append(f"config:{drift.role}:{drift.ip}")

    async def _push_config(self, rf: RedisFailover, drift: ConfigDrift) -> None:
        logger.info(f"{rf.key}: pushing {drift.reason} to {drift.role} {drift.ip}")
        if drift.role == REDIS_ROLE:
            await self.healer.set_redis_custom_config(drift.ip, rf)
        else:
            await self.healer.set_sentinel_custom_config(drift.ip, rf)

    async def _persist_status(
        self, rf: RedisFailover, topology: Topology, result: PassResult
    ) -> None:
        status = build_status(
            [view.pod for view in topology.redis],
            [view.pod for view in topology.sentinels],
            result.master_ip,
        )
        result.status = status

        try:
            current = await asyncio.to_thread(self.store.get_failover, rf.namespace, rf.name)
        except ObjectStoreError as e:
            raise StatusWriteError(f"reading {rf.key} before status write failed: {e}") from e
        if current is None or current.metadata.uid != rf.metadata.uid:
            logger.info(f"{rf.key} no longer exists, skipping status write")
            return

        result.status_written = await asyncio.to_thread(
            self.store.write_status, rf.namespace, rf.name, status
        )
        if result.status_written:
            logger.info(
                f"{rf.key}: status written, master {result.master_ip}, "
                f"{len(status.redis_nodes)} redis, {len(status.sentinel_nodes)} sentinels"
            )
