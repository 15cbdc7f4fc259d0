"""
Transport-specific fragments folded into the generated workload.

stdio servers are wrapped by a protocol adapter: an init container copies the
adapter binary into a shared in-memory volume and the server container starts
the adapter, which in turn spawns the configured server command. HTTP servers
expose their port directly.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from kubernetes.client.models import (
    V1ConfigMapVolumeSource,
    V1Container,
    V1ContainerPort,
    V1EmptyDirVolumeSource,
    V1Volume,
    V1VolumeMount,
)

from .config import OperatorSettings
from .exceptions import InvalidConfigError, UnsupportedTransportError
from .models import HttpTransport, ServerSpec, StdioTransport, TransportType

logger = logging.getLogger(__name__)

ADAPTER_INIT_CONTAINER_NAME = "copy-adapter"
ADAPTER_VOLUME_NAME = "adapter-bin"
ADAPTER_MOUNT_PATH = "/adapterbin"
ADAPTER_BINARY_SOURCE = "/usr/bin/agentgateway"
ADAPTER_BINARY = f"{ADAPTER_MOUNT_PATH}/agentgateway"

ADAPTER_CONFIG_VOLUME_NAME = "adapter-config"
ADAPTER_CONFIG_MOUNT_PATH = "/config"
ADAPTER_CONFIG_FILE = "adapter.yaml"

DEFAULT_TARGET_PATH = "/mcp"
HTTP_PORT_NAME = "http"


@dataclass
class TransportFragment:
    """Pieces a transport contributes to the server Deployment"""

    transport_type: str
    ports: list[V1ContainerPort] = field(default_factory=list)
    init_containers: list[V1Container] = field(default_factory=list)
    volumes: list[V1Volume] = field(default_factory=list)
    volume_mounts: list[V1VolumeMount] = field(default_factory=list)
    # Replaces the server container's command/args when set
    command: list[str] | None = None
    args: list[str] | None = None
    adapter_config: dict[str, Any] | None = None
    target_path: str | None = None

    @property
    def exposed_port(self) -> int | None:
        return self.ports[0].container_port if self.ports else None


def adapter_config_name(name: str) -> str:
    """Name of the ConfigMap holding the generated adapter configuration"""
    return f"{name}-config"


def build_transport_fragment(
    name: str, spec: ServerSpec, settings: OperatorSettings
) -> TransportFragment:
    """Build the fragment for the transport selected in ``spec``.

    Raises:
        UnsupportedTransportError: unknown transport, or a command the adapter cannot wrap
        InvalidConfigError: the transport is missing required configuration
    """
    transport = spec.transport
    if isinstance(transport, StdioTransport):
        return _build_stdio_fragment(name, spec, settings)
    if isinstance(transport, HttpTransport):
        return _build_http_fragment(spec, transport, settings)

    raise UnsupportedTransportError(
        f"unsupported transport type {getattr(transport, 'type', transport)!r}",
        field="transportType",
    )


def _build_stdio_fragment(
    name: str, spec: ServerSpec, settings: OperatorSettings
) -> TransportFragment:
    deployment = spec.deployment

    if not deployment.cmd:
        raise InvalidConfigError(
            "stdio transport requires a command for the adapter to launch",
            field="deployment.cmd",
        )
    if deployment.cmd.startswith(ADAPTER_MOUNT_PATH):
        raise UnsupportedTransportError(
            f"command {deployment.cmd!r} points into the adapter volume and cannot be wrapped",
            field="deployment.cmd",
        )

    init_config = deployment.initContainer
    adapter_image = (init_config.image if init_config else None) or settings.adapter_image
    pull_policy = (init_config.imagePullPolicy if init_config else None) or "IfNotPresent"

    binary_mount = V1VolumeMount(name=ADAPTER_VOLUME_NAME, mount_path=ADAPTER_MOUNT_PATH)
    init_container = V1Container(
        name=ADAPTER_INIT_CONTAINER_NAME,
        image=adapter_image,
        image_pull_policy=pull_policy,
        command=["sh"],
        args=["-c", f"cp {ADAPTER_BINARY_SOURCE} {ADAPTER_BINARY}"],
        volume_mounts=[binary_mount],
    )

    adapter_config = {
        "targets": [
            {
                "name": name,
                "stdio": {"cmd": deployment.cmd, "args": list(deployment.args)},
            }
        ]
    }

    logger.debug("Wrapping stdio server %s with adapter image %s", name, adapter_image)
    return TransportFragment(
        transport_type=TransportType.STDIO.value,
        init_containers=[init_container],
        volumes=[
            V1Volume(
                name=ADAPTER_VOLUME_NAME,
                empty_dir=V1EmptyDirVolumeSource(medium="Memory"),
            ),
            V1Volume(
                name=ADAPTER_CONFIG_VOLUME_NAME,
                config_map=V1ConfigMapVolumeSource(name=adapter_config_name(name)),
            ),
        ],
        volume_mounts=[
            binary_mount,
            V1VolumeMount(
                name=ADAPTER_CONFIG_VOLUME_NAME,
                mount_path=ADAPTER_CONFIG_MOUNT_PATH,
                read_only=True,
            ),
        ],
        command=[ADAPTER_BINARY],
        args=["-f", f"{ADAPTER_CONFIG_MOUNT_PATH}/{ADAPTER_CONFIG_FILE}"],
        adapter_config=adapter_config,
    )


def _build_http_fragment(
    spec: ServerSpec, transport: HttpTransport, settings: OperatorSettings
) -> TransportFragment:
    port = transport.targetPort or spec.deployment.port or settings.default_port
    if not port:
        raise InvalidConfigError(
            "http transport requires a target port", field="httpTransport.targetPort"
        )

    return TransportFragment(
        transport_type=transport.type,
        ports=[V1ContainerPort(container_port=port, name=HTTP_PORT_NAME, protocol="TCP")],
        target_path=transport.path or DEFAULT_TARGET_PATH,
    )
