"""Pytest configuration and fixtures for Redis failover operator tests."""

from datetime import datetime, timedelta
from typing import Optional
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from redis_failover.exceptions import NodeUnreachable, ProtocolRejected
from redis_failover.models import RedisFailover
from redis_failover.node_client import RedisRole, SentinelMonitor, split_config_line
from redis_failover.topology import LABEL_COMPONENT, REDIS_ROLE, SENTINEL_ROLE, PodInfo

BASE_TIME = datetime(2024, 1, 1, 0, 0, 0)


def make_pod(name: str, ip: str, age: int) -> PodInfo:
    """Pod created ``age`` minutes after BASE_TIME."""
    return PodInfo(
        name=name,
        ip=ip,
        host_ip="192.168.0.1",
        created_at=BASE_TIME + timedelta(minutes=age),
    )


def make_failover(
    name: str = "test",
    namespace: str = "default",
    uid: str = "uid-1",
    redis: Optional[dict] = None,
    sentinel: Optional[dict] = None,
) -> RedisFailover:
    return RedisFailover.from_dict(
        {
            "apiVersion": "databases.spotahome.com/v1",
            "kind": "RedisFailover",
            "metadata": {"name": name, "namespace": namespace, "uid": uid},
            "spec": {"redis": redis or {}, "sentinel": sentinel or {}},
        }
    )


class FakeObjectStore:
    """In-memory object store holding one RedisFailover and its pods."""

    def __init__(self, redis_pods, sentinel_pods, failover: Optional[RedisFailover] = None):
        self.pods = {REDIS_ROLE: list(redis_pods), SENTINEL_ROLE: list(sentinel_pods)}
        self.failover = failover
        self.failovers: list[RedisFailover] = [failover] if failover else []
        self.raw_failovers: list[dict] = []
        self.statuses = []
        self.deleted = []

    def list_pods(self, namespace, labels):
        return list(self.pods[labels[LABEL_COMPONENT]])

    def get_failover(self, namespace, name):
        return self.failover

    def list_failover_objects(self, namespace=None):
        return [rf.model_dump(by_alias=True) for rf in self.failovers] + list(self.raw_failovers)

    def write_status(self, namespace, name, status):
        self.statuses.append((namespace, name, status))
        return True

    def delete_owned_objects(self, namespace, owner_uid):
        self.deleted.append((namespace, owner_uid))
        return []


class FakeNodeClient:
    """
    In-memory Redis and Sentinel nodes speaking the RedisNodeClient interface.

    ``writes`` records every state-changing command actually applied, so
    idempotence can be asserted as "the second pass writes nothing".
    """

    def __init__(self, redis_port: int = 6379):
        self.redis_port = redis_port
        self.redis: dict[str, dict] = {}
        self.sentinels: dict[str, dict] = {}
        self.unreachable: set[str] = set()
        self.rejecting: set[str] = set()
        self.writes: list[tuple] = []

    def add_redis(self, ip: str, master: Optional[str] = None, config: Optional[dict] = None):
        """Add a redis node; master None means it reports the master role."""
        self.redis[ip] = {"master": master, "config": dict(config or {})}

    def add_sentinel(
        self,
        ip: str,
        master: Optional[str],
        quorum: Optional[int] = 2,
        known_sentinels: int = 2,
        known_replicas: int = 2,
        settings: Optional[dict] = None,
    ):
        self.sentinels[ip] = {
            "master": master,
            "quorum": quorum,
            "known_sentinels": known_sentinels,
            "known_replicas": known_replicas,
            "settings": dict(settings or {}),
        }

    def masters(self) -> list[str]:
        return [ip for ip, node in self.redis.items() if node["master"] is None]

    def _reach(self, ip: str, role: str = REDIS_ROLE) -> None:
        if ip in self.unreachable:
            raise NodeUnreachable(ip, "connection refused", role=role)
        if ip in self.rejecting:
            raise ProtocolRejected(ip, "NOAUTH Authentication required", role=role)

    async def get_role(self, ip, password=None):
        self._reach(ip)
        master = self.redis[ip]["master"]
        if master is None:
            return RedisRole(is_master=True)
        return RedisRole(is_master=False, master_host=master, master_port=self.redis_port)

    async def make_master(self, ip, password=None):
        self._reach(ip)
        if self.redis[ip]["master"] is None:
            return False
        self.redis[ip]["master"] = None
        self.writes.append(("make_master", ip))
        return True

    async def make_replica_of(self, ip, master_ip, password=None):
        self._reach(ip)
        if self.redis[ip]["master"] == master_ip:
            return False
        self.redis[ip]["master"] = master_ip
        self.writes.append(("make_replica_of", ip, master_ip))
        return True

    async def get_redis_config(self, ip, keys, password=None):
        self._reach(ip)
        config = self.redis[ip]["config"]
        return {key: config[key] for key in keys if key in config}

    async def set_custom_redis_config(self, ip, lines, password=None):
        self._reach(ip)
        wanted = [split_config_line(line) for line in lines]
        if password:
            wanted.append(("masterauth", password))
        written = 0
        for key, value in wanted:
            if self.redis[ip]["config"].get(key) == value:
                continue
            self.redis[ip]["config"][key] = value
            self.writes.append(("config_set", ip, key))
            written += 1
        return written

    async def get_sentinel_monitor(self, ip):
        self._reach(ip, SENTINEL_ROLE)
        node = self.sentinels[ip]
        if node["master"] is None:
            return SentinelMonitor(master_addr=None, quorum=None)
        return SentinelMonitor(
            master_addr=node["master"],
            quorum=node["quorum"],
            known_sentinels=node["known_sentinels"],
            known_replicas=node["known_replicas"],
            settings=dict(node["settings"]),
        )

    async def monitor_master(self, ip, master_ip, quorum, password=None):
        self._reach(ip, SENTINEL_ROLE)
        node = self.sentinels[ip]
        if node["master"] == master_ip and node["quorum"] == quorum:
            return False
        # SENTINEL REMOVE + MONITOR starts the group over with default settings
        node["master"] = master_ip
        node["quorum"] = quorum
        node["settings"] = {}
        self.writes.append(("sentinel_monitor", ip, master_ip, quorum))
        return True

    async def reset_sentinel(self, ip):
        self._reach(ip, SENTINEL_ROLE)
        live = [s for s in self.sentinels if s not in self.unreachable]
        self.sentinels[ip]["known_sentinels"] = len(live) - 1
        self.sentinels[ip]["known_replicas"] = 0
        self.writes.append(("sentinel_reset", ip))

    async def set_custom_sentinel_config(self, ip, lines):
        self._reach(ip, SENTINEL_ROLE)
        written = 0
        for key, value in (split_config_line(line) for line in lines):
            if self.sentinels[ip]["settings"].get(key) == value:
                continue
            self.sentinels[ip]["settings"][key] = value
            self.writes.append(("sentinel_set", ip, key))
            written += 1
        return written


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.policy_v1 = MagicMock(spec=client.PolicyV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    mock_conn.api_client = client.ApiClient()
    return mock_conn


@pytest.fixture
def failover():
    """Sample RedisFailover with default replicas."""
    return make_failover()


@pytest.fixture
def redis_pods():
    """Three redis pods, rfr-test-0 the oldest."""
    return [
        make_pod("rfr-test-0", "10.0.0.1", 0),
        make_pod("rfr-test-1", "10.0.0.2", 1),
        make_pod("rfr-test-2", "10.0.0.3", 2),
    ]


@pytest.fixture
def sentinel_pods():
    """Three sentinel pods."""
    return [
        make_pod("rfs-test-a", "10.0.1.1", 0),
        make_pod("rfs-test-b", "10.0.1.2", 1),
        make_pod("rfs-test-c", "10.0.1.3", 2),
    ]


@pytest.fixture
def healthy_nodes(redis_pods, sentinel_pods):
    """Converged cluster: 10.0.0.1 is master, all sentinels agree."""
    nodes = FakeNodeClient()
    master = redis_pods[0].ip
    nodes.add_redis(master)
    for pod in redis_pods[1:]:
        nodes.add_redis(pod.ip, master=master)
    for pod in sentinel_pods:
        nodes.add_sentinel(pod.ip, master=master)
    return nodes


@pytest.fixture
def store(redis_pods, sentinel_pods, failover):
    return FakeObjectStore(redis_pods, sentinel_pods, failover)
