"""Object store access: pods, RedisFailover objects and owned children."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential
from urllib3.exceptions import HTTPError

from .cluster import ClusterConnection
from .exceptions import ObjectStoreError, StatusWriteError
from .models import RedisFailover, RedisFailoverStatus
from .topology import PodInfo, label_selector

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {0, 429, 500, 502, 503, 504}


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ApiException):
        return (exc.status or 0) in TRANSIENT_STATUSES
    return isinstance(exc, HTTPError)


# Reads have no side effects, so retrying a transient API failure does not
# change what the pass observes. Writes are never retried here.
transient_read_retry = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


@dataclass(frozen=True)
class OwnedObject:
    """A child object whose owner reference points at a RedisFailover."""

    kind: str
    name: str
    namespace: str


class KubernetesObjectStore:
    """Reads and writes the objects the operator works with."""

    def __init__(
        self,
        cluster: ClusterConnection,
        group: str = "databases.spotahome.com",
        version: str = "v1",
        plural: str = "redisfailovers",
    ):
        """
        Initialize object store.

        Args:
            cluster: Cluster connection
            group: RedisFailover API group
            version: RedisFailover API version
            plural: RedisFailover resource plural
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.apps_v1 = cluster.apps_v1
        self.policy_v1 = cluster.policy_v1
        self.custom_objects = cluster.custom_objects
        self.group = group
        self.version = version
        self.plural = plural

    def list_pods(self, namespace: str, labels: dict[str, str]) -> list[PodInfo]:
        """
        List running pods with an assigned IP.

        Args:
            namespace: Kubernetes namespace
            labels: Label selector dict

        Returns:
            List of PodInfo in API order

        Raises:
            ObjectStoreError: If the listing fails
        """
        selector = label_selector(labels)
        try:
            pods = self._list_pods(namespace, selector)
        except (ApiException, HTTPError) as e:
            raise ObjectStoreError(
                f"listing pods {selector!r} in {namespace} failed: {e}",
                status=getattr(e, "status", None),
            ) from e

        return [
            PodInfo(
                name=pod.metadata.name,
                ip=pod.status.pod_ip,
                host_ip=pod.status.host_ip or "",
                created_at=pod.metadata.creation_timestamp,
            )
            for pod in pods
            if pod.status.phase == "Running"
            and pod.status.pod_ip
            and pod.metadata.deletion_timestamp is None
        ]

    @transient_read_retry
    def _list_pods(self, namespace: str, selector: str) -> list[Any]:
        return self.core_v1.list_namespaced_pod(
            namespace=namespace, label_selector=selector
        ).items

    def get_failover(self, namespace: str, name: str) -> Optional[RedisFailover]:
        """
        Get a RedisFailover.

        Returns:
            RedisFailover or None if not found
        """
        try:
            obj = self._get_failover(namespace, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise ObjectStoreError(
                f"reading redisfailover {namespace}/{name} failed: {e.reason}",
                status=e.status,
            ) from e
        except HTTPError as e:
            raise ObjectStoreError(f"reading redisfailover {namespace}/{name} failed: {e}") from e
        return RedisFailover.from_dict(obj)

    @transient_read_retry
    def _get_failover(self, namespace: str, name: str) -> dict[str, Any]:
        return self.custom_objects.get_namespaced_custom_object(
            self.group, self.version, namespace, self.plural, name
        )

    def list_failover_objects(self, namespace: Optional[str] = None) -> list[dict[str, Any]]:
        """
        List raw RedisFailover objects in one namespace, or in all namespaces when None.

        Items are left unparsed so one malformed object does not hide the rest.
        """
        try:
            result = self._list_failovers(namespace)
        except (ApiException, HTTPError) as e:
            raise ObjectStoreError(
                f"listing redisfailovers failed: {e}", status=getattr(e, "status", None)
            ) from e
        return list(result.get("items", []))

    @transient_read_retry
    def _list_failovers(self, namespace: Optional[str]) -> dict[str, Any]:
        if namespace:
            return self.custom_objects.list_namespaced_custom_object(
                self.group, self.version, namespace, self.plural
            )
        return self.custom_objects.list_cluster_custom_object(
            self.group, self.version, self.plural
        )

    def write_status(self, namespace: str, name: str, status: RedisFailoverStatus) -> bool:
        """
        Replace the status of a RedisFailover.

        The merge patch carries whole lists, so every node list is replaced
        rather than merged.

        Returns:
            True if written, False if the object no longer exists

        Raises:
            StatusWriteError: If the write fails
        """
        body = {"status": status.to_dict()}
        try:
            self.custom_objects.patch_namespaced_custom_object_status(
                self.group, self.version, namespace, self.plural, name, body
            )
        except ApiException as e:
            if e.status == 404:
                logger.warning(
                    f"Status of redisfailover {namespace}/{name} not written: not found. "
                    f"The object is gone or the {self.plural} CRD has no status subresource"
                )
                return False
            raise StatusWriteError(
                f"writing status of {namespace}/{name} failed: {e.reason}"
            ) from e
        except HTTPError as e:
            raise StatusWriteError(f"writing status of {namespace}/{name} failed: {e}") from e
        return True

    def enumerate_owned_objects(self, namespace: str, owner_uid: str) -> list[OwnedObject]:
        """
        List every managed child whose owner reference points at owner_uid.

        Raises:
            ObjectStoreError: If any listing fails
        """
        owned: list[OwnedObject] = []
        for kind, (list_fn, _) in self._kinds().items():
            try:
                items = list_fn(namespace=namespace).items
            except (ApiException, HTTPError) as e:
                raise ObjectStoreError(
                    f"listing {kind} in {namespace} failed: {e}",
                    status=getattr(e, "status", None),
                ) from e
            for item in items:
                refs = item.metadata.owner_references or []
                if any(ref.uid == owner_uid for ref in refs):
                    owned.append(OwnedObject(kind=kind, name=item.metadata.name, namespace=namespace))
        return owned

    def delete_owned_objects(self, namespace: str, owner_uid: str) -> list[OwnedObject]:
        """
        Delete every managed child of a RedisFailover.

        Kubernetes garbage collection usually gets there first through the
        owner references; objects already gone are skipped.

        Returns:
            The objects that were deleted
        """
        deleted: list[OwnedObject] = []
        kinds = self._kinds()
        for obj in self.enumerate_owned_objects(namespace, owner_uid):
            _, delete_fn = kinds[obj.kind]
            try:
                delete_fn(obj.name, obj.namespace)
            except ApiException as e:
                if e.status == 404:
                    continue
                raise ObjectStoreError(
                    f"deleting {obj.kind} {obj.namespace}/{obj.name} failed: {e.reason}",
                    status=e.status,
                ) from e
            logger.info(f"Deleted {obj.kind} {obj.namespace}/{obj.name}")
            deleted.append(obj)
        return deleted

    def _kinds(self) -> dict[str, tuple[Callable[..., Any], Callable[..., Any]]]:
        return {
            "ConfigMap": (
                self.core_v1.list_namespaced_config_map,
                self.core_v1.delete_namespaced_config_map,
            ),
            "Service": (
                self.core_v1.list_namespaced_service,
                self.core_v1.delete_namespaced_service,
            ),
            "StatefulSet": (
                self.apps_v1.list_namespaced_stateful_set,
                self.apps_v1.delete_namespaced_stateful_set,
            ),
            "Deployment": (
                self.apps_v1.list_namespaced_deployment,
                self.apps_v1.delete_namespaced_deployment,
            ),
            "PodDisruptionBudget": (
                self.policy_v1.list_namespaced_pod_disruption_budget,
                self.policy_v1.delete_namespaced_pod_disruption_budget,
            ),
            "PersistentVolumeClaim": (
                self.core_v1.list_namespaced_persistent_volume_claim,
                self.core_v1.delete_namespaced_persistent_volume_claim,
            ),
        }
