"""Desired Kubernetes objects for one RedisFailover."""

from typing import Any, Optional

from kubernetes.client import (
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1EmptyDirVolumeSource,
    V1EnvVar,
    V1EnvVarSource,
    V1ExecAction,
    V1LabelSelector,
    V1Lifecycle,
    V1LifecycleHandler,
    V1ObjectFieldSelector,
    V1ObjectMeta,
    V1OwnerReference,
    V1PodDisruptionBudget,
    V1PodDisruptionBudgetSpec,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Probe,
    V1ResourceRequirements,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1StatefulSetUpdateStrategy,
    V1Volume,
    V1VolumeMount,
)

from .models import RedisFailover
from .topology import (
    LABEL_COMPONENT,
    REDIS_ROLE,
    SENTINEL_ROLE,
    get_redis_name,
    get_redis_shutdown_config_map_name,
    get_sentinel_name,
    merge_labels,
    selector_labels,
)

REDIS_CONFIG_FILE = "redis.conf"
SENTINEL_CONFIG_FILE = "sentinel.conf"
REDIS_CONFIG_VOLUME = "redis-config"
REDIS_SHUTDOWN_VOLUME = "redis-shutdown-config"
REDIS_DATA_VOLUME = "redis-data"
SENTINEL_CONFIG_VOLUME = "sentinel-config"
SENTINEL_WRITABLE_VOLUME = "sentinel-config-writable"

EXPORTER_CONTAINER = "redis-exporter"
EXPORTER_PORT = 9121
EXPORTER_PORT_NAME = "http-metrics"
HOSTNAME_TOPOLOGY_KEY = "kubernetes.io/hostname"
GRACE_TIME = 30
PDB_MIN_AVAILABLE = 2


def owner_references(rf: RedisFailover) -> list[V1OwnerReference]:
    """Controller reference so deleting the RedisFailover cascades to its children."""
    return [
        V1OwnerReference(
            api_version=rf.api_version,
            kind=rf.kind,
            name=rf.name,
            uid=rf.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )
    ]


def _meta(
    name: str,
    rf: RedisFailover,
    labels: dict[str, str],
    owner_refs: list[V1OwnerReference],
    annotations: Optional[dict[str, str]] = None,
) -> V1ObjectMeta:
    return V1ObjectMeta(
        name=name,
        namespace=rf.namespace,
        labels=labels,
        annotations=annotations,
        owner_references=owner_refs,
    )


def generate_sentinel_service(rf, labels, owner_refs) -> V1Service:
    selector = selector_labels(SENTINEL_ROLE, rf.name)
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=_meta(get_sentinel_name(rf), rf, merge_labels(labels, selector), owner_refs),
        spec=V1ServiceSpec(
            selector=selector,
            ports=[
                V1ServicePort(name="sentinel", port=26379, target_port=26379, protocol="TCP")
            ],
        ),
    )


def generate_redis_service(rf, labels, owner_refs) -> V1Service:
    """Headless service exposing the exporter sidecars for scraping."""
    selector = selector_labels(REDIS_ROLE, rf.name)
    annotations = {
        "prometheus.io/scrape": "true",
        "prometheus.io/port": "http",
        "prometheus.io/path": "/metrics",
    }
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=_meta(
            get_redis_name(rf), rf, merge_labels(labels, selector), owner_refs, annotations
        ),
        spec=V1ServiceSpec(
            type="ClusterIP",
            cluster_ip="None",
            selector=selector,
            ports=[
                V1ServicePort(name=EXPORTER_PORT_NAME, port=EXPORTER_PORT, protocol="TCP")
            ],
        ),
    )


def generate_sentinel_config_map(rf, labels, owner_refs, master_group: str = "mymaster") -> V1ConfigMap:
    content = "\n".join(
        [
            f"sentinel monitor {master_group} 127.0.0.1 6379 2",
            f"sentinel down-after-milliseconds {master_group} 1000",
            f"sentinel failover-timeout {master_group} 3000",
            f"sentinel parallel-syncs {master_group} 2",
        ]
    )
    if rf.spec.redis.password:
        content += f"\nsentinel auth-pass {master_group} {rf.spec.redis.password}"
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_meta(
            get_sentinel_name(rf),
            rf,
            merge_labels(labels, selector_labels(SENTINEL_ROLE, rf.name)),
            owner_refs,
        ),
        data={SENTINEL_CONFIG_FILE: content},
    )


def generate_redis_config_map(rf, labels, owner_refs) -> V1ConfigMap:
    lines = [
        "slaveof 127.0.0.1 6379",
        "tcp-keepalive 60",
        "save 900 1",
        "save 300 10",
    ]
    if rf.spec.redis.password:
        lines += [
            f"requirepass {rf.spec.redis.password}",
            f"masterauth {rf.spec.redis.password}",
        ]
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_meta(
            get_redis_name(rf),
            rf,
            merge_labels(labels, selector_labels(REDIS_ROLE, rf.name)),
            owner_refs,
        ),
        data={REDIS_CONFIG_FILE: "\n".join(lines)},
    )


def generate_redis_shutdown_config_map(rf, labels, owner_refs, master_group: str = "mymaster") -> V1ConfigMap:
    """Pre-stop script: persist data and hand mastership over before the pod dies."""
    auth = f"-a {rf.spec.redis.password} " if rf.spec.redis.password else ""
    sentinel = get_sentinel_name(rf).upper().replace("-", "_")
    host = f"${{{sentinel}_SERVICE_HOST}}"
    port = f"${{{sentinel}_SERVICE_PORT_SENTINEL}}"
    script = (
        f"master=$(redis-cli -h {host} -p {port} --csv SENTINEL get-master-addr-by-name "
        f"{master_group} | tr ',' ' ' | tr -d '\\\"' | cut -d' ' -f1)\n"
        f"redis-cli {auth}SAVE\n"
        "if [ \"$master\" = \"$(hostname -i)\" ]; then\n"
        f"  redis-cli -h {host} -p {port} SENTINEL failover {master_group}\n"
        "fi"
    )
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_meta(
            get_redis_shutdown_config_map_name(rf),
            rf,
            merge_labels(labels, selector_labels(REDIS_ROLE, rf.name)),
            owner_refs,
        ),
        data={"shutdown.sh": script},
    )


def _affinity(affinity: Optional[dict[str, Any]], labels: dict[str, str]) -> dict[str, Any]:
    """User affinity, or a soft anti-affinity spreading pods across hosts."""
    if affinity:
        return affinity
    match_labels = {k: v for k, v in labels.items() if k != LABEL_COMPONENT}
    return {
        "podAntiAffinity": {
            "preferredDuringSchedulingIgnoredDuringExecution": [
                {
                    "weight": 100,
                    "podAffinityTerm": {
                        "topologyKey": HOSTNAME_TOPOLOGY_KEY,
                        "labelSelector": {"matchLabels": match_labels},
                    },
                }
            ]
        }
    }


def _exec_probe(command: str) -> V1Probe:
    return V1Probe(
        initial_delay_seconds=GRACE_TIME,
        timeout_seconds=5,
        _exec=V1ExecAction(command=["sh", "-c", command]),
    )


def _redis_command(rf: RedisFailover) -> list[str]:
    if rf.spec.redis.command:
        return rf.spec.redis.command
    return ["redis-server", f"/redis/{REDIS_CONFIG_FILE}"]


def _sentinel_command(rf: RedisFailover) -> list[str]:
    if rf.spec.sentinel.command:
        return rf.spec.sentinel.command
    return ["redis-server", f"/redis/{SENTINEL_CONFIG_FILE}", "--sentinel"]


def _redis_data_volume_name(rf: RedisFailover) -> str:
    pvc = rf.spec.redis.storage.persistent_volume_claim
    if pvc:
        return pvc.get("metadata", {}).get("name", REDIS_DATA_VOLUME)
    return REDIS_DATA_VOLUME


def _redis_volumes(rf: RedisFailover) -> list[V1Volume]:
    volumes = [
        V1Volume(
            name=REDIS_CONFIG_VOLUME,
            config_map=V1ConfigMapVolumeSource(name=get_redis_name(rf)),
        ),
        V1Volume(
            name=REDIS_SHUTDOWN_VOLUME,
            config_map=V1ConfigMapVolumeSource(
                name=get_redis_shutdown_config_map_name(rf), default_mode=0o744
            ),
        ),
    ]
    storage = rf.spec.redis.storage
    # the claim template provides the data volume when a PVC is requested
    if not storage.persistent_volume_claim:
        volumes.append(
            V1Volume(name=REDIS_DATA_VOLUME, empty_dir=storage.empty_dir or V1EmptyDirVolumeSource())
        )
    return volumes


def _exporter_container(rf: RedisFailover) -> V1Container:
    password = rf.spec.redis.password
    return V1Container(
        name=EXPORTER_CONTAINER,
        image=rf.spec.redis.exporter.image,
        image_pull_policy="IfNotPresent",
        env=[
            V1EnvVar(
                name="REDIS_ALIAS",
                value_from=V1EnvVarSource(
                    field_ref=V1ObjectFieldSelector(field_path="metadata.name")
                ),
            ),
            V1EnvVar(name="REDIS_PASSWORD", value=password),
        ],
        args=["--redis.addr=127.0.0.1:6379"],
        ports=[V1ContainerPort(name="metrics", container_port=EXPORTER_PORT, protocol="TCP")],
        resources=V1ResourceRequirements(
            limits={"cpu": "100m", "memory": "200Mi"},
            requests={"cpu": "25m", "memory": "50Mi"},
        ),
    )


def generate_redis_statefulset(rf, labels, owner_refs) -> V1StatefulSet:
    name = get_redis_name(rf)
    selector = selector_labels(REDIS_ROLE, rf.name)
    labels = merge_labels(labels, selector)
    redis = rf.spec.redis

    check_command = "redis-cli -h $(hostname) ping"
    if redis.password:
        check_command = f"redis-cli -h $(hostname) -a {redis.password} ping"

    container = V1Container(
        name="redis",
        image=redis.image,
        image_pull_policy=redis.image_pull_policy,
        command=_redis_command(rf),
        ports=[V1ContainerPort(name="redis", container_port=6379, protocol="TCP")],
        volume_mounts=[
            V1VolumeMount(name=REDIS_CONFIG_VOLUME, mount_path="/redis"),
            V1VolumeMount(name=REDIS_SHUTDOWN_VOLUME, mount_path="/redis-shutdown"),
            V1VolumeMount(name=_redis_data_volume_name(rf), mount_path="/data"),
        ],
        readiness_probe=_exec_probe(check_command),
        liveness_probe=_exec_probe(check_command),
        resources=redis.resources or None,
        lifecycle=V1Lifecycle(
            pre_stop=V1LifecycleHandler(
                _exec=V1ExecAction(command=["/bin/sh", "/redis-shutdown/shutdown.sh"])
            )
        ),
    )
    containers = [container]
    if redis.exporter.enabled:
        containers.append(_exporter_container(rf))

    volume_claim_templates = None
    pvc = redis.storage.persistent_volume_claim
    if pvc:
        pvc = dict(pvc)
        metadata = dict(pvc.get("metadata") or {})
        if not redis.storage.keep_after_deletion:
            # claims follow the failover into deletion
            metadata["ownerReferences"] = owner_refs
        pvc["metadata"] = metadata
        volume_claim_templates = [pvc]

    return V1StatefulSet(
        api_version="apps/v1",
        kind="StatefulSet",
        metadata=_meta(name, rf, labels, owner_refs),
        spec=V1StatefulSetSpec(
            service_name=name,
            replicas=redis.replicas,
            update_strategy=V1StatefulSetUpdateStrategy(type="RollingUpdate"),
            selector=V1LabelSelector(match_labels=selector),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=labels),
                spec=V1PodSpec(
                    affinity=_affinity(redis.affinity, labels),
                    tolerations=redis.tolerations or None,
                    node_selector=redis.node_selector or None,
                    security_context=redis.security_context,
                    containers=containers,
                    volumes=_redis_volumes(rf),
                ),
            ),
            volume_claim_templates=volume_claim_templates,
        ),
    )


def generate_sentinel_deployment(rf, labels, owner_refs) -> V1Deployment:
    name = get_sentinel_name(rf)
    selector = selector_labels(SENTINEL_ROLE, rf.name)
    labels = merge_labels(labels, selector)
    sentinel = rf.spec.sentinel
    check_command = "redis-cli -h $(hostname) -p 26379 ping"

    # sentinel rewrites its config file, so it runs from a writable copy
    init_container = V1Container(
        name="sentinel-config-copy",
        image=sentinel.image,
        image_pull_policy=sentinel.image_pull_policy,
        command=[
            "cp",
            f"/redis/{SENTINEL_CONFIG_FILE}",
            f"/redis-writable/{SENTINEL_CONFIG_FILE}",
        ],
        volume_mounts=[
            V1VolumeMount(name=SENTINEL_CONFIG_VOLUME, mount_path="/redis"),
            V1VolumeMount(name=SENTINEL_WRITABLE_VOLUME, mount_path="/redis-writable"),
        ],
        resources=V1ResourceRequirements(
            limits={"cpu": "10m", "memory": "16Mi"},
            requests={"cpu": "10m", "memory": "16Mi"},
        ),
    )
    container = V1Container(
        name="sentinel",
        image=sentinel.image,
        image_pull_policy=sentinel.image_pull_policy,
        command=_sentinel_command(rf),
        ports=[V1ContainerPort(name="sentinel", container_port=26379, protocol="TCP")],
        volume_mounts=[V1VolumeMount(name=SENTINEL_WRITABLE_VOLUME, mount_path="/redis")],
        readiness_probe=_exec_probe(check_command),
        liveness_probe=_exec_probe(check_command),
        resources=sentinel.resources or None,
    )

    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=_meta(name, rf, labels, owner_refs),
        spec=V1DeploymentSpec(
            replicas=sentinel.replicas,
            selector=V1LabelSelector(match_labels=selector),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=labels),
                spec=V1PodSpec(
                    affinity=_affinity(sentinel.affinity, labels),
                    tolerations=sentinel.tolerations or None,
                    node_selector=sentinel.node_selector or None,
                    security_context=sentinel.security_context,
                    init_containers=[init_container],
                    containers=[container],
                    volumes=[
                        V1Volume(
                            name=SENTINEL_CONFIG_VOLUME,
                            config_map=V1ConfigMapVolumeSource(name=name),
                        ),
                        V1Volume(name=SENTINEL_WRITABLE_VOLUME, empty_dir=V1EmptyDirVolumeSource()),
                    ],
                ),
            ),
        ),
    )


def generate_pod_disruption_budget(name, rf, role, labels, owner_refs) -> V1PodDisruptionBudget:
    selector = selector_labels(role, rf.name)
    replicas = rf.spec.redis.replicas if role == REDIS_ROLE else rf.spec.sentinel.replicas
    return V1PodDisruptionBudget(
        api_version="policy/v1",
        kind="PodDisruptionBudget",
        metadata=_meta(name, rf, merge_labels(labels, selector), owner_refs),
        spec=V1PodDisruptionBudgetSpec(
            min_available=min(PDB_MIN_AVAILABLE, max(replicas - 1, 0)),
            selector=V1LabelSelector(match_labels=selector),
        ),
    )
