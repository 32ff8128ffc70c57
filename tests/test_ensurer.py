"""Tests for the Ensurer and generated objects."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from conftest import make_failover
from redis_failover.config import OperatorConfig
from redis_failover.ensurer import Ensurer, is_subset
from redis_failover.exceptions import ObjectStoreError
from redis_failover.generator import (
    generate_pod_disruption_budget,
    generate_redis_statefulset,
    generate_sentinel_config_map,
    generate_sentinel_service,
    owner_references,
)
from redis_failover.topology import REDIS_ROLE, SENTINEL_ROLE

LABELS = {"app.kubernetes.io/managed-by": "redis-operator"}


@pytest.fixture
def rf():
    return make_failover().validated()


@pytest.fixture
def not_found(mock_cluster_connection):
    """Every read answers 404."""
    not_found = ApiException(status=404, reason="Not Found")
    for api in (
        mock_cluster_connection.core_v1,
        mock_cluster_connection.apps_v1,
        mock_cluster_connection.policy_v1,
    ):
        for name in dir(api):
            if name.startswith("read_namespaced_") or name.startswith("delete_namespaced_"):
                getattr(api, name).side_effect = not_found
    return mock_cluster_connection


class TestIsSubset:
    """Test cases for is_subset."""

    def test_server_defaults_ignored(self):
        assert is_subset({"a": 1}, {"a": 1, "b": 2}) is True

    def test_changed_value(self):
        assert is_subset({"a": {"b": 1}}, {"a": {"b": 2}}) is False

    def test_lists_compared_positionally(self):
        assert is_subset({"a": [{"x": 1}]}, {"a": [{"x": 1, "y": 2}]}) is True
        assert is_subset({"a": [1, 2]}, {"a": [2, 1]}) is False
        assert is_subset({"a": [1]}, {"a": [1, 2]}) is False


class TestEnsurer:
    """Test cases for Ensurer."""

    def test_init(self, mock_cluster_connection):
        ensurer = Ensurer(mock_cluster_connection, store=None)
        assert ensurer.core_v1 == mock_cluster_connection.core_v1
        assert ensurer.apps_v1 == mock_cluster_connection.apps_v1

    def test_creates_when_absent(self, not_found, rf):
        ensurer = Ensurer(not_found, store=None)

        changed = ensurer.ensure_sentinel_service(rf, LABELS, owner_references(rf))

        assert changed is True
        not_found.core_v1.create_namespaced_service.assert_called_once()
        call_args = not_found.core_v1.create_namespaced_service.call_args
        assert call_args.kwargs["namespace"] == "default"
        assert call_args.kwargs["body"].metadata.name == "rfs-test"
        not_found.core_v1.patch_namespaced_service.assert_not_called()

    def test_noop_when_matching(self, mock_cluster_connection, rf):
        owner_refs = owner_references(rf)
        existing = generate_sentinel_service(rf, LABELS, owner_refs)
        mock_cluster_connection.core_v1.read_namespaced_service.return_value = existing
        ensurer = Ensurer(mock_cluster_connection, store=None)

        changed = ensurer.ensure_sentinel_service(rf, LABELS, owner_refs)

        assert changed is False
        mock_cluster_connection.core_v1.create_namespaced_service.assert_not_called()
        mock_cluster_connection.core_v1.patch_namespaced_service.assert_not_called()

    def test_patches_when_different(self, mock_cluster_connection, rf):
        owner_refs = owner_references(rf)
        existing = generate_sentinel_service(rf, {"stale": "label"}, owner_refs)
        mock_cluster_connection.core_v1.read_namespaced_service.return_value = existing
        ensurer = Ensurer(mock_cluster_connection, store=None)

        changed = ensurer.ensure_sentinel_service(rf, LABELS, owner_refs)

        assert changed is True
        call_args = mock_cluster_connection.core_v1.patch_namespaced_service.call_args
        assert call_args.kwargs["name"] == "rfs-test"
        assert call_args.kwargs["body"]["metadata"]["labels"]["app.kubernetes.io/managed-by"] == "redis-operator"

    def test_api_error_wrapped(self, mock_cluster_connection, rf):
        mock_cluster_connection.core_v1.read_namespaced_service.side_effect = ApiException(
            status=403, reason="Forbidden"
        )
        ensurer = Ensurer(mock_cluster_connection, store=None)

        with pytest.raises(ObjectStoreError) as exc_info:
            ensurer.ensure_sentinel_service(rf, LABELS, owner_references(rf))

        assert exc_info.value.status == 403

    def test_ensure_creates_everything(self, not_found, rf):
        ensurer = Ensurer(not_found, store=None)

        ensurer.ensure(rf, LABELS, owner_references(rf))

        # sentinel service only; the exporter is disabled
        assert not_found.core_v1.create_namespaced_service.call_count == 1
        # sentinel, shutdown and redis config maps
        assert not_found.core_v1.create_namespaced_config_map.call_count == 3
        not_found.apps_v1.create_namespaced_stateful_set.assert_called_once()
        not_found.apps_v1.create_namespaced_deployment.assert_called_once()
        assert not_found.policy_v1.create_namespaced_pod_disruption_budget.call_count == 2

    def test_user_shutdown_config_map_not_managed(self, not_found):
        rf = make_failover(redis={"shutdownConfigMap": "mine"}).validated()
        ensurer = Ensurer(not_found, store=None)

        ensurer.ensure(rf, LABELS, owner_references(rf))

        names = [
            c.kwargs["body"].metadata.name
            for c in not_found.core_v1.create_namespaced_config_map.call_args_list
        ]
        assert "mine" not in names
        assert len(names) == 2

    def test_exporter_service(self, not_found):
        rf = make_failover(redis={"exporter": {"enabled": True}}).validated()
        ensurer = Ensurer(not_found, store=None)

        ensurer.ensure(rf, LABELS, owner_references(rf))

        names = [
            c.kwargs["body"].metadata.name
            for c in not_found.core_v1.create_namespaced_service.call_args_list
        ]
        assert names == ["rfr-test", "rfs-test"]

    def test_default_annotations_merged(self, not_found):
        rf = make_failover(redis={"exporter": {"enabled": True}}).validated()
        config = OperatorConfig(default_annotations={"team": "cache"})
        ensurer = Ensurer(not_found, store=None, config=config)

        ensurer.ensure(rf, LABELS, owner_references(rf))

        created = {
            c.kwargs["body"].metadata.name: c.kwargs["body"].metadata.annotations
            for c in not_found.core_v1.create_namespaced_service.call_args_list
        }
        assert created["rfs-test"] == {"team": "cache"}
        assert created["rfr-test"]["team"] == "cache"
        assert created["rfr-test"]["prometheus.io/scrape"] == "true"

    def test_cleanup_delegates_to_store(self, mock_cluster_connection):
        store = MagicMock()
        store.delete_owned_objects.return_value = []
        ensurer = Ensurer(mock_cluster_connection, store)

        ensurer.cleanup("default", "uid-1")

        store.delete_owned_objects.assert_called_once_with("default", "uid-1")


class TestGenerator:
    """Test cases for generated objects."""

    def test_owner_reference(self, rf):
        ref = owner_references(rf)[0]
        assert ref.kind == "RedisFailover"
        assert ref.uid == "uid-1"
        assert ref.controller is True

    def test_statefulset(self, rf):
        sts = generate_redis_statefulset(rf, LABELS, owner_references(rf))

        assert sts.metadata.name == "rfr-test"
        assert sts.spec.replicas == 3
        assert sts.spec.selector.match_labels["app.kubernetes.io/component"] == REDIS_ROLE
        assert sts.spec.template.spec.containers[0].image == "redis:5.0-alpine"

    def test_sentinel_config_with_password(self):
        rf = make_failover(redis={"password": "s3cret"}).validated()

        cm = generate_sentinel_config_map(rf, LABELS, owner_references(rf))

        assert "sentinel auth-pass mymaster s3cret" in cm.data["sentinel.conf"]

    @pytest.mark.parametrize("replicas,expected", [(1, 0), (2, 1), (3, 2), (5, 2)])
    def test_pod_disruption_budget(self, replicas, expected):
        rf = make_failover(sentinel={"replicas": replicas}).validated()

        pdb = generate_pod_disruption_budget("rfs-test", rf, SENTINEL_ROLE, LABELS, owner_references(rf))

        assert pdb.spec.min_available == expected
