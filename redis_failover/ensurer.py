"""Create-or-patch of the Kubernetes objects backing a RedisFailover."""

import logging
from typing import Any, Callable, Optional

from kubernetes.client import V1OwnerReference
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .config import OperatorConfig
from .exceptions import ObjectStoreError
from .generator import (
    generate_pod_disruption_budget,
    generate_redis_config_map,
    generate_redis_service,
    generate_redis_shutdown_config_map,
    generate_redis_statefulset,
    generate_sentinel_config_map,
    generate_sentinel_deployment,
    generate_sentinel_service,
)
from .models import RedisFailover
from .store import KubernetesObjectStore, OwnedObject
from .topology import (
    REDIS_ROLE,
    SENTINEL_ROLE,
    get_redis_name,
    get_sentinel_name,
    merge_labels,
)

logger = logging.getLogger(__name__)


def is_subset(desired: Any, existing: Any) -> bool:
    """
    Whether every field set in desired has the same value in existing.

    Fields the API server defaults (and desired leaves unset) are ignored.
    """
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return False
        return all(k in existing and is_subset(v, existing[k]) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(is_subset(d, e) for d, e in zip(desired, existing))
    return desired == existing


class Ensurer:
    """Keeps every object a RedisFailover owns matching its desired spec."""

    def __init__(
        self,
        cluster: ClusterConnection,
        store: KubernetesObjectStore,
        config: Optional[OperatorConfig] = None,
    ):
        """
        Initialize ensurer.

        Args:
            cluster: Cluster connection
            store: Object store used for owned-object cleanup
            config: Operator configuration
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.apps_v1 = cluster.apps_v1
        self.policy_v1 = cluster.policy_v1
        self.api_client = cluster.api_client
        self.store = store
        self.config = config or OperatorConfig()

    def ensure(
        self, rf: RedisFailover, labels: dict[str, str], owner_refs: list[V1OwnerReference]
    ) -> None:
        """
        Ensure every managed object kind, in dependency order.

        Raises:
            ObjectStoreError: On the first object that cannot be read, created or patched
        """
        if rf.spec.redis.exporter.enabled:
            self.ensure_redis_service(rf, labels, owner_refs)
        else:
            self.ensure_not_present_redis_service(rf)
        self.ensure_sentinel_service(rf, labels, owner_refs)
        self.ensure_sentinel_config_map(rf, labels, owner_refs)
        self.ensure_redis_shutdown_config_map(rf, labels, owner_refs)
        self.ensure_redis_config_map(rf, labels, owner_refs)
        self.ensure_redis_statefulset(rf, labels, owner_refs)
        self.ensure_sentinel_deployment(rf, labels, owner_refs)
        self.ensure_pod_disruption_budgets(rf, labels, owner_refs)

    def ensure_sentinel_service(self, rf, labels, owner_refs) -> bool:
        return self._ensure(
            "Service",
            generate_sentinel_service(rf, labels, owner_refs),
            self.core_v1.read_namespaced_service,
            self.core_v1.create_namespaced_service,
            self.core_v1.patch_namespaced_service,
        )

    def ensure_redis_service(self, rf, labels, owner_refs) -> bool:
        return self._ensure(
            "Service",
            generate_redis_service(rf, labels, owner_refs),
            self.core_v1.read_namespaced_service,
            self.core_v1.create_namespaced_service,
            self.core_v1.patch_namespaced_service,
        )

    def ensure_not_present_redis_service(self, rf: RedisFailover) -> bool:
        """Remove the exporter service once the exporter is disabled."""
        name = get_redis_name(rf)
        try:
            self.core_v1.delete_namespaced_service(name, rf.namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise ObjectStoreError(
                f"deleting Service {rf.namespace}/{name} failed: {e.reason}", status=e.status
            ) from e
        logger.info(f"Deleted Service {rf.namespace}/{name}")
        return True

    def ensure_sentinel_config_map(self, rf, labels, owner_refs) -> bool:
        return self._ensure(
            "ConfigMap",
            generate_sentinel_config_map(
                rf, labels, owner_refs, master_group=self.config.master_group_name
            ),
            self.core_v1.read_namespaced_config_map,
            self.core_v1.create_namespaced_config_map,
            self.core_v1.patch_namespaced_config_map,
        )

    def ensure_redis_config_map(self, rf, labels, owner_refs) -> bool:
        return self._ensure(
            "ConfigMap",
            generate_redis_config_map(rf, labels, owner_refs),
            self.core_v1.read_namespaced_config_map,
            self.core_v1.create_namespaced_config_map,
            self.core_v1.patch_namespaced_config_map,
        )

    def ensure_redis_shutdown_config_map(self, rf, labels, owner_refs) -> bool:
        if rf.spec.redis.shutdown_config_map:
            # user supplied script, not ours to manage
            return False
        return self._ensure(
            "ConfigMap",
            generate_redis_shutdown_config_map(
                rf, labels, owner_refs, master_group=self.config.master_group_name
            ),
            self.core_v1.read_namespaced_config_map,
            self.core_v1.create_namespaced_config_map,
            self.core_v1.patch_namespaced_config_map,
        )

    def ensure_redis_statefulset(self, rf, labels, owner_refs) -> bool:
        return self._ensure(
            "StatefulSet",
            generate_redis_statefulset(rf, labels, owner_refs),
            self.apps_v1.read_namespaced_stateful_set,
            self.apps_v1.create_namespaced_stateful_set,
            self.apps_v1.patch_namespaced_stateful_set,
        )

    def ensure_sentinel_deployment(self, rf, labels, owner_refs) -> bool:
        return self._ensure(
            "Deployment",
            generate_sentinel_deployment(rf, labels, owner_refs),
            self.apps_v1.read_namespaced_deployment,
            self.apps_v1.create_namespaced_deployment,
            self.apps_v1.patch_namespaced_deployment,
        )

    def ensure_pod_disruption_budgets(self, rf, labels, owner_refs) -> bool:
        changed = False
        for name, role in ((get_redis_name(rf), REDIS_ROLE), (get_sentinel_name(rf), SENTINEL_ROLE)):
            changed |= self._ensure(
                "PodDisruptionBudget",
                generate_pod_disruption_budget(name, rf, role, labels, owner_refs),
                self.policy_v1.read_namespaced_pod_disruption_budget,
                self.policy_v1.create_namespaced_pod_disruption_budget,
                self.policy_v1.patch_namespaced_pod_disruption_budget,
            )
        return changed

    def cleanup(self, namespace: str, owner_uid: str) -> list[OwnedObject]:
        """
        Delete every object owned by a removed RedisFailover.

        Returns:
            The objects that were deleted
        """
        return self.store.delete_owned_objects(namespace, owner_uid)

    def _ensure(
        self,
        kind: str,
        desired: Any,
        read_fn: Callable[..., Any],
        create_fn: Callable[..., Any],
        patch_fn: Callable[..., Any],
    ) -> bool:
        """
        Create the object if absent, patch it if it differs.

        Returns:
            True if a write was issued, False if the object already matched
        """
        name = desired.metadata.name
        namespace = desired.metadata.namespace
        if self.config.default_annotations:
            desired.metadata.annotations = merge_labels(
                self.config.default_annotations, desired.metadata.annotations
            )
        try:
            try:
                existing = read_fn(name, namespace)
            except ApiException as e:
                if e.status != 404:
                    raise
                existing = None

            if existing is None:
                create_fn(namespace=namespace, body=desired)
                logger.info(f"Created {kind} {namespace}/{name}")
                return True

            desired_body = self.api_client.sanitize_for_serialization(desired)
            existing_body = self.api_client.sanitize_for_serialization(existing)
            if is_subset(desired_body, existing_body):
                logger.debug(f"{kind} {namespace}/{name} up to date")
                return False

            patch_fn(name=name, namespace=namespace, body=desired_body)
            logger.info(f"Patched {kind} {namespace}/{name}")
            return True

        except ApiException as e:
            raise ObjectStoreError(
                f"ensuring {kind} {namespace}/{name} failed: {e.reason}", status=e.status
            ) from e
