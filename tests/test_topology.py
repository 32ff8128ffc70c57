"""Tests for topology helpers."""

import pytest

from conftest import make_failover, make_pod
from redis_failover.config import LABEL_FAILOVER_NAME, LABEL_MANAGED_BY
from redis_failover.topology import (
    RedisNodeView,
    SentinelView,
    Topology,
    build_status,
    get_quorum,
    get_redis_name,
    get_redis_shutdown_config_map_name,
    get_sentinel_name,
    instance_labels,
    label_selector,
    merge_labels,
    oldest_first,
    select_oldest,
)


class TestQuorum:
    """Test cases for quorum computation."""

    @pytest.mark.parametrize("live,expected", [(0, 1), (1, 1), (2, 2), (3, 2), (4, 3), (5, 3)])
    def test_majority_of_live_sentinels(self, live, expected):
        """Quorum is floor(n/2)+1 of the live count."""
        assert get_quorum(live) == expected

    def test_topology_quorum_uses_reachable_sentinels(self):
        """Unreachable sentinels do not count towards quorum."""
        pods = [make_pod(f"s{i}", f"10.0.1.{i}", i) for i in range(5)]
        topology = Topology(
            sentinels=[SentinelView(pod=p, master_addr="10.0.0.1", quorum=3, known_sentinels=4) for p in pods[:3]],
            unreachable_sentinels=pods[3:],
        )

        assert topology.live_sentinel_count == 3
        assert topology.quorum == 2


class TestOrdering:
    """Test cases for oldest-first ordering."""

    def test_oldest_wins(self):
        """Pods created at t2, t1, t3 sort to t1, t2, t3."""
        a = make_pod("a", "10.0.0.1", 2)
        b = make_pod("b", "10.0.0.2", 1)
        c = make_pod("c", "10.0.0.3", 3)

        assert oldest_first([a, b, c]) == [b, a, c]
        assert select_oldest([a, b, c]) == b

    def test_same_timestamp_breaks_tie_by_name(self):
        """Pods created in the same second order by name."""
        late = make_pod("rfr-test-1", "10.0.0.2", 0)
        early = make_pod("rfr-test-0", "10.0.0.1", 0)

        assert oldest_first([late, early]) == [early, late]

    def test_select_oldest_empty(self):
        assert select_oldest([]) is None


class TestTopology:
    """Test cases for the Topology snapshot."""

    def test_master_ip_only_when_single_master(self):
        """master_ip is set only when exactly one node is master."""
        one = RedisNodeView(pod=make_pod("a", "10.0.0.1", 0), is_master=True)
        two = RedisNodeView(pod=make_pod("b", "10.0.0.2", 1), is_master=True)
        replica = RedisNodeView(pod=make_pod("c", "10.0.0.3", 2), is_master=False, master_host="10.0.0.1")

        assert Topology(redis=[one, replica]).master_ip == "10.0.0.1"
        assert Topology(redis=[one, two]).master_ip is None
        assert Topology(redis=[replica]).master_ip is None

    def test_unreachable_ips(self):
        topology = Topology(
            unreachable_redis=[make_pod("a", "10.0.0.1", 0)],
            unreachable_sentinels=[make_pod("s", "10.0.1.1", 0)],
        )
        assert topology.unreachable_ips == frozenset({"10.0.0.1", "10.0.1.1"})


class TestNamingAndLabels:
    """Test cases for object names and labels."""

    def test_names(self):
        rf = make_failover(name="cache")

        assert get_redis_name(rf) == "rfr-cache"
        assert get_sentinel_name(rf) == "rfs-cache"
        assert get_redis_shutdown_config_map_name(rf) == "rfr-shutdown-cache"

    def test_user_shutdown_config_map_name(self):
        rf = make_failover(redis={"shutdownConfigMap": "my-shutdown"})
        assert get_redis_shutdown_config_map_name(rf) == "my-shutdown"

    def test_merge_labels_later_wins(self):
        """Later maps win and inputs are left untouched."""
        first = {"a": "1", "b": "1"}
        merged = merge_labels(first, None, {"b": "2"})

        assert merged == {"a": "1", "b": "2"}
        assert first == {"a": "1", "b": "1"}

    def test_instance_labels(self):
        """Instance labels override operator defaults."""
        rf = make_failover(name="cache")
        rf.metadata.labels = {LABEL_MANAGED_BY: "someone-else", "team": "core"}

        labels = instance_labels(rf, {LABEL_MANAGED_BY: "redis-operator"})

        assert labels[LABEL_FAILOVER_NAME] == "cache"
        assert labels[LABEL_MANAGED_BY] == "someone-else"
        assert labels["team"] == "core"

    def test_label_selector(self):
        assert label_selector({"a": "1", "b": "2"}) == "a=1,b=2"


class TestBuildStatus:
    """Test cases for status snapshots."""

    def test_marks_master_and_excludes_pods(self):
        redis = [make_pod("a", "10.0.0.1", 0), make_pod("b", "10.0.0.2", 1)]
        sentinels = [make_pod("s", "10.0.1.1", 0)]

        status = build_status(redis, sentinels, "10.0.0.1", exclude=frozenset({"10.0.0.2"}))

        assert [n.pod_ip for n in status.redis_nodes] == ["10.0.0.1"]
        assert status.redis_nodes[0].is_master is True
        assert status.sentinel_nodes[0].pod_ip == "10.0.1.1"
        assert status.to_dict()["redisNodes"][0] == {
            "podIP": "10.0.0.1",
            "hostIP": "192.168.0.1",
            "isMaster": True,
        }

    def test_no_master(self):
        status = build_status([make_pod("a", "10.0.0.1", 0)], [], None)
        assert status.redis_nodes[0].is_master is False
