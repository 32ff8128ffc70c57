"""Redis failover operator - Redis Sentinel clusters on Kubernetes."""

from .checker import Checker, CheckResult
from .cluster import ClusterConnection
from .config import OperatorConfig, Settings, get_settings
from .controller import FailoverController, FailoverWatcher, InstanceState
from .discrepancy import (
    ConfigDrift,
    Discrepancy,
    DiscrepancySet,
    MultipleMasters,
    NoMaster,
    SentinelMisconfigured,
    SentinelNeedsReset,
    UnreachableNode,
)
from .ensurer import Ensurer
from .exceptions import (
    NodeError,
    NodeUnreachable,
    ObjectStoreError,
    ProtocolRejected,
    RedisFailoverError,
    StatusWriteError,
    ValidationError,
)
from .healer import Healer
from .models import RedisFailover, RedisFailoverSpec, RedisFailoverStatus, WatchEvent
from .node_client import RedisNodeClient
from .reconciler import PassResult, Reconciler
from .store import KubernetesObjectStore
from .topology import Topology, get_quorum

__version__ = "0.1.0"

__all__ = [
    # Cluster access
    "ClusterConnection",
    "KubernetesObjectStore",
    "RedisNodeClient",
    # Reconciliation
    "Checker",
    "CheckResult",
    "Ensurer",
    "Healer",
    "Reconciler",
    "PassResult",
    "FailoverController",
    "FailoverWatcher",
    "InstanceState",
    # Discrepancies
    "Discrepancy",
    "DiscrepancySet",
    "NoMaster",
    "MultipleMasters",
    "SentinelMisconfigured",
    "SentinelNeedsReset",
    "ConfigDrift",
    "UnreachableNode",
    # Errors
    "RedisFailoverError",
    "ValidationError",
    "ObjectStoreError",
    "NodeError",
    "NodeUnreachable",
    "ProtocolRejected",
    "StatusWriteError",
    # Models and config
    "RedisFailover",
    "RedisFailoverSpec",
    "RedisFailoverStatus",
    "WatchEvent",
    "Topology",
    "get_quorum",
    "Settings",
    "OperatorConfig",
    "get_settings",
]
