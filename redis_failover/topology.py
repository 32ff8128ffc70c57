"""Live topology views and the quorum / ordering helpers shared by check and heal."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from .config import LABEL_FAILOVER_NAME
from .models import RedisFailover, RedisNode, RedisFailoverStatus, SentinelNode

REDIS_ROLE = "redis"
SENTINEL_ROLE = "sentinel"

LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_APP_NAME = "app.kubernetes.io/name"
LABEL_PART_OF = "app.kubernetes.io/part-of"
APP_NAME = "redis-failover"


@dataclass(frozen=True)
class PodInfo:
    """One running pod as listed from the object store."""

    name: str
    ip: str
    host_ip: str
    created_at: datetime


@dataclass
class RedisNodeView:
    """Runtime observation of a Redis node."""

    pod: PodInfo
    is_master: bool
    master_host: Optional[str] = None
    config: list[str] = field(default_factory=list)
    credential: Optional[str] = None

    @property
    def ip(self) -> str:
        return self.pod.ip


@dataclass
class SentinelView:
    """Runtime observation of a Sentinel node."""

    pod: PodInfo
    master_addr: Optional[str]
    quorum: Optional[int]
    known_sentinels: int
    known_replicas: int = 0
    config: list[str] = field(default_factory=list)

    @property
    def ip(self) -> str:
        return self.pod.ip


@dataclass
class Topology:
    """Snapshot of the live nodes observed during one pass."""

    redis: list[RedisNodeView] = field(default_factory=list)
    sentinels: list[SentinelView] = field(default_factory=list)
    unreachable_redis: list[PodInfo] = field(default_factory=list)
    unreachable_sentinels: list[PodInfo] = field(default_factory=list)

    @property
    def masters(self) -> list[RedisNodeView]:
        return [node for node in self.redis if node.is_master]

    @property
    def master_ip(self) -> Optional[str]:
        """The master address, only when exactly one node claims the role."""
        masters = self.masters
        if len(masters) == 1:
            return masters[0].ip
        return None

    @property
    def live_sentinel_count(self) -> int:
        return len(self.sentinels)

    @property
    def quorum(self) -> int:
        return get_quorum(self.live_sentinel_count)

    @property
    def unreachable_ips(self) -> frozenset[str]:
        return frozenset(
            pod.ip for pod in (*self.unreachable_redis, *self.unreachable_sentinels)
        )


def get_quorum(live_sentinels: int) -> int:
    """Return floor(n/2)+1, never less than one."""
    return max(live_sentinels, 0) // 2 + 1


def oldest_first(pods: Iterable[PodInfo]) -> list[PodInfo]:
    """
    Order pods by creation time ascending.

    The pod name breaks ties between pods created within the same second,
    which the API server's timestamp resolution makes common.
    """
    return sorted(pods, key=lambda pod: (pod.created_at, pod.name))


def select_oldest(pods: Iterable[PodInfo]) -> Optional[PodInfo]:
    ordered = oldest_first(pods)
    return ordered[0] if ordered else None


def merge_labels(*label_maps: Optional[dict[str, str]]) -> dict[str, str]:
    """Merge label maps left to right into a new dict; later maps win."""
    merged: dict[str, str] = {}
    for labels in label_maps:
        if labels:
            merged.update(labels)
    return merged


def get_redis_name(rf: RedisFailover) -> str:
    return f"rfr-{rf.name}"


def get_sentinel_name(rf: RedisFailover) -> str:
    return f"rfs-{rf.name}"


def get_redis_shutdown_config_map_name(rf: RedisFailover) -> str:
    if rf.spec.redis.shutdown_config_map:
        return rf.spec.redis.shutdown_config_map
    return f"rfr-shutdown-{rf.name}"


def selector_labels(role: str, name: str) -> dict[str, str]:
    """Labels identifying the pods of one role of one failover."""
    return {
        LABEL_APP_NAME: name,
        LABEL_COMPONENT: role,
        LABEL_PART_OF: APP_NAME,
    }


def label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in labels.items())


def instance_labels(rf: RedisFailover, default_labels: dict[str, str]) -> dict[str, str]:
    """Labels every object derived from a failover carries."""
    return merge_labels(default_labels, {LABEL_FAILOVER_NAME: rf.name}, rf.metadata.labels)


def build_status(
    redis_pods: Iterable[PodInfo],
    sentinel_pods: Iterable[PodInfo],
    master_ip: Optional[str],
    exclude: frozenset[str] = frozenset(),
) -> RedisFailoverStatus:
    """Build a fresh status snapshot from the pods that are live right now."""
    return RedisFailoverStatus(
        redis_nodes=[
            RedisNode(pod_ip=pod.ip, host_ip=pod.host_ip, is_master=pod.ip == master_ip)
            for pod in redis_pods
            if pod.ip not in exclude
        ],
        sentinel_nodes=[
            SentinelNode(pod_ip=pod.ip, host_ip=pod.host_ip)
            for pod in sentinel_pods
            if pod.ip not in exclude
        ],
    )
