"""Kubernetes API client bootstrap for the operator."""

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, CustomObjectsApi, PolicyV1Api
from kubernetes.client.exceptions import ApiException

logger = logging.getLogger(__name__)


class ClusterConnection:
    """Represents a connection to the Kubernetes cluster the operator manages."""

    def __init__(self, kubeconfig_path: Optional[str] = None, context: Optional[str] = None):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_path: Path to a kubeconfig file, in-cluster config when None
            context: Specific kubeconfig context to use

        Raises:
            ValueError: If the configuration cannot be loaded
        """
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._apps_v1: Optional[AppsV1Api] = None
        self._policy_v1: Optional[PolicyV1Api] = None
        self._custom_objects: Optional[CustomObjectsApi] = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.kubeconfig_path:
                config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.context,
                )
            else:
                # Running inside the cluster as a pod
                config.load_incluster_config()

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._apps_v1 = AppsV1Api(self._api_client)
            self._policy_v1 = PolicyV1Api(self._api_client)
            self._custom_objects = CustomObjectsApi(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance."""
        if not self._apps_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._apps_v1

    @property
    def policy_v1(self) -> PolicyV1Api:
        """Get PolicyV1Api instance."""
        if not self._policy_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._policy_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance."""
        if not self._custom_objects:
            raise RuntimeError("Cluster connection not initialized")
        return self._custom_objects

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    def is_healthy(self) -> bool:
        """
        Check if the API server is reachable.

        Returns:
            True if cluster is reachable and healthy
        """
        try:
            self.core_v1.get_api_resources()
            return True
        except ApiException:
            return False

    def get_cluster_version(self) -> str:
        """Return the API server git version, e.g. ``v1.29.2``."""
        version_info = client.VersionApi(self.api_client).get_code()
        return version_info.git_version

    def close(self):
        """Close the cluster connection and clean up resources."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        self._core_v1 = None
        self._apps_v1 = None
        self._policy_v1 = None
        self._custom_objects = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
