"""
MCPServer translator

Turns an MCPServer spec into the Kubernetes objects that run it. The translator
is pure: it reads nothing from the cluster and builds fresh objects on every
call, so identical input always yields identical output.
"""

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import yaml
from kubernetes.client.models import (
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1EnvVar,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1ResourceRequirements,
    V1SecretVolumeSource,
    V1Service,
    V1ServiceAccount,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
    V1VolumeMount,
)

from .config import OperatorSettings
from .exceptions import ImageNotFoundError, InvalidConfigError
from .k8s_utils import to_manifest
from .models import API_GROUP, ServerDeployment, ServerSpec
from .overrides import (
    PRIMARY_CONTAINER_NAME,
    apply_container_overrides,
    apply_deployment_overrides,
    apply_pod_template_overrides,
)
from .transport import (
    ADAPTER_CONFIG_FILE,
    HTTP_PORT_NAME,
    TransportFragment,
    adapter_config_name,
    build_transport_fragment,
)

logger = logging.getLogger(__name__)

MANAGED_BY = "mcpserver-operator"
SERVER_LABEL = f"{API_GROUP}/server"
MANAGED_BY_LABEL = f"{API_GROUP}/managed-by"
TRANSPORT_LABEL = f"{API_GROUP}/transport"
TARGET_PATH_ANNOTATION = f"{API_GROUP}/target-path"

SECRET_MOUNT_ROOT = "/etc/secrets"
CONFIGMAP_MOUNT_ROOT = "/etc/configmaps"

DEFAULT_RESOURCE_REQUESTS = {"cpu": "50m", "memory": "128Mi"}

MAX_VOLUME_NAME_LENGTH = 63
VOLUME_NAME_HASH_LENGTH = 8

# Tags that are expected to move and should always be re-pulled
MUTABLE_TAGS = ["latest", "edge", "dev", "main", "master", "develop", "staging"]


@dataclass
class GeneratedWorkload:
    """Objects generated for one MCPServer in a single reconciliation pass"""

    deployment: V1Deployment
    service: V1Service | None = None
    config_map: V1ConfigMap | None = None
    service_account: V1ServiceAccount | None = None

    def objects(self) -> list[tuple[str, Any]]:
        """Generated objects as (kind, object) pairs in dependency order."""
        ordered: list[tuple[str, Any]] = [
            ("ServiceAccount", self.service_account),
            ("ConfigMap", self.config_map),
            ("Deployment", self.deployment),
            ("Service", self.service),
        ]
        return [(kind, obj) for kind, obj in ordered if obj is not None]

    def to_manifests(self) -> list[dict[str, Any]]:
        """Serialize every generated object to a camelCase manifest."""
        return [to_manifest(obj) for _, obj in self.objects()]


def determine_image_pull_policy(image: str) -> str:
    """
    Determine imagePullPolicy from the image reference.

    Mutable tags (latest, edge, dev, ...) and untagged images are always pulled;
    pinned tags and digests use IfNotPresent.
    """
    if "@" in image:
        return "IfNotPresent"

    # Ignore a registry port such as "registry:5000/app"
    last_segment = image.rsplit("/", 1)[-1]
    image_tag = last_segment.split(":")[-1] if ":" in last_segment else "latest"

    if image_tag in MUTABLE_TAGS:
        return "Always"

    return "IfNotPresent"


def deployment_name(name: str) -> str:
    return f"{name}-deployment"


def service_name(name: str) -> str:
    return f"{name}-service"


def _volume_name(prefix: str, ref_name: str) -> str:
    """DNS-1123 label for a referenced Secret or ConfigMap volume.

    Names that must be rewritten (dots, length) get a hash of the reference
    appended so that distinct references never share a volume.
    """
    candidate = f"{prefix}-{ref_name}"
    sanitized = candidate.replace(".", "-")
    if sanitized == candidate and len(sanitized) <= MAX_VOLUME_NAME_LENGTH:
        return sanitized
    digest = hashlib.sha256(ref_name.encode()).hexdigest()[:VOLUME_NAME_HASH_LENGTH]
    keep = MAX_VOLUME_NAME_LENGTH - VOLUME_NAME_HASH_LENGTH - 1
    return f"{sanitized[:keep].rstrip('-')}-{digest}"


class ResourceAssembler:
    """Builds the Deployment, Service, ConfigMap and ServiceAccount for an MCPServer"""

    def __init__(self, settings: OperatorSettings | None = None) -> None:
        self.settings = settings or OperatorSettings()

    def parse(self, spec: ServerSpec | Mapping[str, Any]) -> ServerSpec:
        if isinstance(spec, ServerSpec):
            return spec
        return ServerSpec.from_resource(spec, self.settings.default_transport_type)

    def assemble(
        self, name: str, namespace: str, spec: ServerSpec | Mapping[str, Any]
    ) -> GeneratedWorkload:
        """Translate a server spec into workload objects.

        Args:
            name: MCPServer name
            namespace: Namespace the objects are created in
            spec: Parsed spec or the raw ``spec`` mapping of the custom resource

        Raises:
            InvalidConfigError: spec is self-inconsistent
            UnsupportedTransportError: transport is unknown or cannot wrap the command
            ImageNotFoundError: no image given and no default configured
        """
        server_spec = self.parse(spec)
        reserved = adapter_config_name(name)
        if any(ref.name == reserved for ref in server_spec.deployment.configMapRefs):
            raise InvalidConfigError(
                f"ConfigMap name {reserved} is reserved for the generated adapter configuration",
                field="deployment.configMapRefs",
            )
        fragment = build_transport_fragment(name, server_spec, self.settings)

        image = server_spec.deployment.image or self.settings.default_image
        if not image:
            raise ImageNotFoundError(
                "no image specified and no default image configured", field="deployment.image"
            )

        labels = self._labels(name, fragment.transport_type)
        annotations = (
            {TARGET_PATH_ANNOTATION: fragment.target_path} if fragment.target_path else None
        )

        service_account = self._build_service_account(name, namespace, server_spec, labels)
        deployment = self._build_deployment(
            name, namespace, server_spec, image, fragment, labels, annotations
        )
        if service_account is not None:
            deployment.spec.template.spec.service_account_name = service_account.metadata.name

        overrides = server_spec.deployment
        apply_pod_template_overrides(deployment, overrides.podTemplate)
        apply_container_overrides(deployment, overrides.containerTemplate, PRIMARY_CONTAINER_NAME)
        apply_deployment_overrides(deployment, overrides.deploymentTemplate)

        workload = GeneratedWorkload(
            deployment=deployment,
            service=self._build_service(name, namespace, fragment, labels, annotations),
            config_map=self._build_config_map(name, namespace, fragment, labels),
            service_account=service_account,
        )
        logger.info(
            "Assembled %s transport workload for %s/%s: %s",
            fragment.transport_type,
            namespace,
            name,
            ", ".join(kind for kind, _ in workload.objects()),
        )
        return workload

    def _labels(self, name: str, transport_type: str) -> dict[str, str]:
        return {
            "app": name,
            SERVER_LABEL: name,
            MANAGED_BY_LABEL: MANAGED_BY,
            TRANSPORT_LABEL: transport_type,
        }

    def _resolve_volumes(
        self, deployment: ServerDeployment
    ) -> tuple[list[V1Volume], list[V1VolumeMount]]:
        """Collect volumes and mounts: secret refs, then configmap refs, then explicit entries.

        Later entries win on mount path; generated volumes left without a mount are dropped.
        """
        volumes: dict[str, V1Volume] = {}
        mounts: dict[str, V1VolumeMount] = {}

        for ref in deployment.secretRefs:
            volume_name = _volume_name("secret", ref.name)
            volumes[volume_name] = V1Volume(
                name=volume_name, secret=V1SecretVolumeSource(secret_name=ref.name)
            )
            mount_path = f"{SECRET_MOUNT_ROOT}/{ref.name}"
            mounts[mount_path] = V1VolumeMount(
                name=volume_name, mount_path=mount_path, read_only=True
            )

        for ref in deployment.configMapRefs:
            volume_name = _volume_name("configmap", ref.name)
            volumes[volume_name] = V1Volume(
                name=volume_name, config_map=V1ConfigMapVolumeSource(name=ref.name)
            )
            mount_path = f"{CONFIGMAP_MOUNT_ROOT}/{ref.name}"
            mounts[mount_path] = V1VolumeMount(
                name=volume_name, mount_path=mount_path, read_only=True
            )

        for volume in deployment.volumes:
            volumes[volume.name] = volume
        for mount in deployment.volumeMounts:
            mounts[mount.mount_path] = mount

        explicit = {volume.name for volume in deployment.volumes}
        mounted = {mount.name for mount in mounts.values()}
        kept = [
            volume
            for volume_name, volume in volumes.items()
            if volume_name in explicit or volume_name in mounted
        ]
        return kept, list(mounts.values())

    def _build_deployment(
        self,
        name: str,
        namespace: str,
        spec: ServerSpec,
        image: str,
        fragment: TransportFragment,
        labels: dict[str, str],
        annotations: dict[str, str] | None,
    ) -> V1Deployment:
        server = spec.deployment
        volumes, volume_mounts = self._resolve_volumes(server)

        used_paths = {mount.mount_path for mount in volume_mounts}
        used_volumes = {volume.name for volume in volumes}
        for mount in fragment.volume_mounts:
            if mount.mount_path in used_paths:
                raise InvalidConfigError(
                    f"mount path {mount.mount_path} is reserved by the {fragment.transport_type} "
                    "transport",
                    field="deployment.volumeMounts",
                )
        for volume in fragment.volumes:
            if volume.name in used_volumes:
                raise InvalidConfigError(
                    f"volume name {volume.name} is reserved by the {fragment.transport_type} "
                    "transport",
                    field="deployment.volumes",
                )

        if fragment.command is not None:
            command, args = fragment.command, fragment.args
        else:
            command = [server.cmd] if server.cmd else None
            args = list(server.args) or None

        container = V1Container(
            name=PRIMARY_CONTAINER_NAME,
            image=image,
            image_pull_policy=determine_image_pull_policy(image),
            command=command,
            args=args,
            ports=list(fragment.ports) or None,
            env=[V1EnvVar(name=key, value=value) for key, value in sorted(server.env.items())]
            or None,
            resources=V1ResourceRequirements(requests=dict(DEFAULT_RESOURCE_REQUESTS)),
            volume_mounts=[*volume_mounts, *fragment.volume_mounts] or None,
        )

        selector = {"app": name}
        return V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=V1ObjectMeta(
                name=deployment_name(name),
                namespace=namespace,
                labels=dict(labels),
                annotations=dict(annotations) if annotations else None,
            ),
            spec=V1DeploymentSpec(
                replicas=1,
                selector=V1LabelSelector(match_labels=selector),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=dict(labels)),
                    spec=V1PodSpec(
                        init_containers=list(fragment.init_containers) or None,
                        containers=[container],
                        volumes=[*volumes, *fragment.volumes] or None,
                    ),
                ),
            ),
        )

    def _build_service(
        self,
        name: str,
        namespace: str,
        fragment: TransportFragment,
        labels: dict[str, str],
        annotations: dict[str, str] | None,
    ) -> V1Service | None:
        port = fragment.exposed_port
        if port is None:
            return None

        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=V1ObjectMeta(
                name=service_name(name),
                namespace=namespace,
                labels=dict(labels),
                annotations=dict(annotations) if annotations else None,
            ),
            spec=V1ServiceSpec(
                selector={"app": name},
                ports=[
                    V1ServicePort(
                        name=HTTP_PORT_NAME,
                        port=port,
                        target_port=port,
                        protocol="TCP",
                    )
                ],
                type="ClusterIP",
            ),
        )

    def _build_config_map(
        self,
        name: str,
        namespace: str,
        fragment: TransportFragment,
        labels: dict[str, str],
    ) -> V1ConfigMap | None:
        if fragment.adapter_config is None:
            return None

        return V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=V1ObjectMeta(
                name=adapter_config_name(name),
                namespace=namespace,
                labels=dict(labels),
            ),
            data={
                ADAPTER_CONFIG_FILE: yaml.safe_dump(
                    fragment.adapter_config, default_flow_style=False, sort_keys=True
                )
            },
        )

    def _build_service_account(
        self,
        name: str,
        namespace: str,
        spec: ServerSpec,
        labels: dict[str, str],
    ) -> V1ServiceAccount | None:
        config = spec.deployment.serviceAccount
        if config is None:
            return None

        return V1ServiceAccount(
            api_version="v1",
            kind="ServiceAccount",
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels={**config.labels, **labels},
                annotations=dict(config.annotations) or None,
            ),
        )
