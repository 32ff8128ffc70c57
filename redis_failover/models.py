"""RedisFailover resource models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from .exceptions import ValidationError

DEFAULT_REDIS_IMAGE = "redis:5.0-alpine"
DEFAULT_EXPORTER_IMAGE = "oliver006/redis_exporter:v0.33.0"
DEFAULT_REDIS_REPLICAS = 3
DEFAULT_SENTINEL_REPLICAS = 3
MAX_NAME_LENGTH = 48


class CamelModel(BaseModel):
    """Base model reading and writing the camelCase keys used by the CRD."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ObjectMeta(CamelModel):
    """Subset of Kubernetes object metadata the operator relies on."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    resource_version: Optional[str] = None
    deletion_timestamp: Optional[datetime] = None


class RedisStorage(CamelModel):
    """How Redis data is stored."""

    keep_after_deletion: bool = False
    empty_dir: Optional[dict[str, Any]] = None
    persistent_volume_claim: Optional[dict[str, Any]] = None


class RedisExporter(CamelModel):
    """Prometheus exporter sidecar settings."""

    enabled: bool = False
    image: Optional[str] = None


class RedisSettings(CamelModel):
    """Desired state of the Redis nodes."""

    image: Optional[str] = None
    image_pull_policy: str = "IfNotPresent"
    replicas: Optional[int] = None
    resources: dict[str, Any] = Field(default_factory=dict)
    custom_config: list[str] = Field(default_factory=list)
    command: list[str] = Field(default_factory=list)
    shutdown_config_map: Optional[str] = None
    storage: RedisStorage = Field(default_factory=RedisStorage)
    exporter: RedisExporter = Field(default_factory=RedisExporter)
    affinity: Optional[dict[str, Any]] = None
    security_context: Optional[dict[str, Any]] = None
    tolerations: list[dict[str, Any]] = Field(default_factory=list)
    node_selector: dict[str, str] = Field(default_factory=dict)
    password: str = ""


class SentinelSettings(CamelModel):
    """Desired state of the Sentinel nodes."""

    image: Optional[str] = None
    image_pull_policy: str = "IfNotPresent"
    replicas: Optional[int] = None
    resources: dict[str, Any] = Field(default_factory=dict)
    custom_config: list[str] = Field(default_factory=list)
    command: list[str] = Field(default_factory=list)
    affinity: Optional[dict[str, Any]] = None
    security_context: Optional[dict[str, Any]] = None
    tolerations: list[dict[str, Any]] = Field(default_factory=list)
    node_selector: dict[str, str] = Field(default_factory=dict)


class RedisFailoverSpec(CamelModel):
    """Declared desired state of one failover cluster."""

    redis: RedisSettings = Field(default_factory=RedisSettings)
    sentinel: SentinelSettings = Field(default_factory=SentinelSettings)


class RedisNode(BaseModel):
    """Observed Redis node as published in the status."""

    model_config = ConfigDict(populate_by_name=True)

    pod_ip: str = Field(alias="podIP")
    host_ip: str = Field(default="", alias="hostIP")
    is_master: bool = Field(default=False, alias="isMaster")


class SentinelNode(BaseModel):
    """Observed Sentinel node as published in the status."""

    model_config = ConfigDict(populate_by_name=True)

    pod_ip: str = Field(alias="podIP")
    host_ip: str = Field(default="", alias="hostIP")


class RedisFailoverStatus(CamelModel):
    """Observed state, replaced wholesale on every successful pass."""

    redis_nodes: list[RedisNode] = Field(default_factory=list)
    sentinel_nodes: list[SentinelNode] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class WatchEvent(BaseModel):
    """RedisFailover watch event."""

    event_type: str  # ADDED, MODIFIED, DELETED, ERROR
    name: str
    namespace: str
    object: dict[str, Any]
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class RedisFailover(CamelModel):
    """A RedisFailover custom resource."""

    api_version: str = "databases.spotahome.com/v1"
    kind: str = "RedisFailover"
    metadata: ObjectMeta
    spec: RedisFailoverSpec = Field(default_factory=RedisFailoverSpec)
    status: RedisFailoverStatus = Field(default_factory=RedisFailoverStatus)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "RedisFailover":
        """
        Build a RedisFailover from the raw custom object returned by the API.

        Raises:
            ValidationError: If the object does not match the resource schema
        """
        try:
            return cls.model_validate(obj)
        except SchemaError as e:
            metadata = obj.get("metadata") or {}
            raise ValidationError(
                f"redisfailover {metadata.get('namespace', '')}/{metadata.get('name', '')} "
                f"is malformed: {e.error_count()} schema errors, first: {e.errors()[0]['msg']}"
            ) from e

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """Namespaced key used to serialize passes per instance."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    def validated(self) -> "RedisFailover":
        """
        Check spec fields and fill in defaults.

        Returns:
            A defaulted copy; the receiver is left untouched

        Raises:
            ValidationError: If spec fields fail semantic checks
        """
        if len(self.metadata.name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"name length can't be higher than {MAX_NAME_LENGTH}"
            )

        rf = self.model_copy(deep=True)
        redis = rf.spec.redis
        sentinel = rf.spec.sentinel

        if redis.replicas is None:
            redis.replicas = DEFAULT_REDIS_REPLICAS
        elif redis.replicas <= 0:
            raise ValidationError(
                f"redis replicas must be positive, got {redis.replicas}"
            )

        if sentinel.replicas is None:
            sentinel.replicas = DEFAULT_SENTINEL_REPLICAS
        elif sentinel.replicas <= 0:
            raise ValidationError(
                f"sentinel replicas must be positive, got {sentinel.replicas}"
            )

        for role, lines in (("redis", redis.custom_config), ("sentinel", sentinel.custom_config)):
            for line in lines:
                if len(line.split(None, 1)) != 2:
                    raise ValidationError(
                        f"{role} custom config line {line!r} is not 'key value'"
                    )

        if not redis.image:
            redis.image = DEFAULT_REDIS_IMAGE
        if not sentinel.image:
            sentinel.image = redis.image
        if redis.exporter.enabled and not redis.exporter.image:
            redis.exporter.image = DEFAULT_EXPORTER_IMAGE

        return rf
