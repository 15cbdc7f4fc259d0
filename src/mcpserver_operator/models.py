"""
MCPServer Models

Pydantic models for the MCPServer custom resource spec. Fields that embed core
Kubernetes structures (affinity, probes, volumes, ...) hold the official
``kubernetes.client`` models so the translator can assign them straight onto
generated objects.
"""

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from kubernetes.client.models import (
    V1Affinity,
    V1DeploymentStrategy,
    V1Lifecycle,
    V1PodSecurityContext,
    V1Probe,
    V1ResourceRequirements,
    V1SecurityContext,
    V1Toleration,
    V1Volume,
    V1VolumeMount,
)
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import InvalidConfigError, UnsupportedTransportError
from .k8s_utils import to_k8s_model

logger = logging.getLogger(__name__)

API_GROUP = "mcp.operator.dev"
API_VERSION = "v1alpha1"
KIND = "MCPServer"
PLURAL = "mcpservers"

PullPolicy = Literal["Always", "Never", "IfNotPresent"]


class TransportType(str, Enum):
    """Transport used to reach the MCP server process"""

    STDIO = "stdio"
    HTTP = "http"


class _SpecModel(BaseModel):
    """Base for spec fragments; converts embedded Kubernetes structures on input."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    # field name -> kubernetes client type name
    kubernetes_fields: ClassVar[dict[str, str]] = {}

    @model_validator(mode="before")
    @classmethod
    def _convert_kubernetes_fields(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or not cls.kubernetes_fields:
            return data
        converted = dict(data)
        for field, model_type in cls.kubernetes_fields.items():
            value = converted.get(field)
            if isinstance(value, Mapping) or (
                isinstance(value, list) and any(isinstance(item, Mapping) for item in value)
            ):
                converted[field] = to_k8s_model(value, model_type)
        return converted


class LocalObjectReference(_SpecModel):
    """Reference to a Secret or ConfigMap in the server's namespace"""

    name: str = Field(..., min_length=1, description="Name of the referenced object")


class InitContainerConfig(_SpecModel):
    """Init container that copies the transport adapter binary"""

    image: str | None = Field(
        default=None, description="Adapter image; overrides the operator default"
    )
    imagePullPolicy: PullPolicy | None = Field(default=None)


class ServiceAccountConfig(_SpecModel):
    """ServiceAccount generated for the server pod"""

    annotations: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class PodTemplateOverrides(_SpecModel):
    """Pod-level overrides merged onto the generated pod template"""

    kubernetes_fields: ClassVar[dict[str, str]] = {
        "tolerations": "list[V1Toleration]",
        "affinity": "V1Affinity",
        "securityContext": "V1PodSecurityContext",
    }

    nodeSelector: dict[str, str] | None = None
    tolerations: list[V1Toleration] | None = None
    affinity: V1Affinity | None = None
    securityContext: V1PodSecurityContext | None = None
    annotations: dict[str, str] | None = None
    labels: dict[str, str] | None = None
    hostNetwork: bool = False
    dnsPolicy: Literal["ClusterFirstWithHostNet", "ClusterFirst", "Default", "None"] | None = (
        None
    )
    priorityClassName: str | None = None
    runtimeClassName: str | None = None
    serviceAccountName: str | None = None


class ContainerOverrides(_SpecModel):
    """Container-level overrides merged onto the primary server container"""

    kubernetes_fields: ClassVar[dict[str, str]] = {
        "resources": "V1ResourceRequirements",
        "securityContext": "V1SecurityContext",
        "lifecycle": "V1Lifecycle",
        "livenessProbe": "V1Probe",
        "readinessProbe": "V1Probe",
        "startupProbe": "V1Probe",
    }

    resources: V1ResourceRequirements | None = None
    securityContext: V1SecurityContext | None = None
    lifecycle: V1Lifecycle | None = None
    imagePullPolicy: PullPolicy | None = None
    livenessProbe: V1Probe | None = None
    readinessProbe: V1Probe | None = None
    startupProbe: V1Probe | None = None
    terminationMessagePath: str | None = None
    terminationMessagePolicy: Literal["File", "FallbackToLogsOnError"] | None = None


class DeploymentOverrides(_SpecModel):
    """Deployment-level overrides"""

    kubernetes_fields: ClassVar[dict[str, str]] = {"strategy": "V1DeploymentStrategy"}

    replicas: int | None = Field(default=None, ge=0)
    strategy: V1DeploymentStrategy | None = None
    minReadySeconds: int = Field(default=0, ge=0)
    revisionHistoryLimit: int | None = Field(default=None, ge=0)
    progressDeadlineSeconds: int | None = Field(default=None, ge=1)
    paused: bool = False


class ServerDeployment(_SpecModel):
    """Container configuration used to run the MCP server"""

    kubernetes_fields: ClassVar[dict[str, str]] = {
        "volumeMounts": "list[V1VolumeMount]",
        "volumes": "list[V1Volume]",
    }

    image: str = Field(default="", description="Container image for the MCP server")
    port: int | None = Field(default=None, ge=1, le=65535, description="Server listen port")
    cmd: str = Field(default="", description="Command that starts the server")
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    secretRefs: list[LocalObjectReference] = Field(default_factory=list)
    configMapRefs: list[LocalObjectReference] = Field(default_factory=list)
    volumeMounts: list[V1VolumeMount] = Field(default_factory=list)
    volumes: list[V1Volume] = Field(default_factory=list)
    initContainer: InitContainerConfig | None = None
    serviceAccount: ServiceAccountConfig | None = None
    podTemplate: PodTemplateOverrides | None = None
    containerTemplate: ContainerOverrides | None = None
    deploymentTemplate: DeploymentOverrides | None = None


class StdioTransport(_SpecModel):
    """Server speaks MCP over stdin/stdout and is bridged by the adapter"""

    type: Literal["stdio"] = "stdio"


class HttpTransport(_SpecModel):
    """Server speaks Streamable HTTP directly"""

    type: Literal["http"] = "http"
    targetPort: int | None = Field(default=None, ge=1, le=65535)
    path: str | None = Field(default=None, pattern=r"^/.*", description="Path serving MCP")


Transport = Annotated[StdioTransport | HttpTransport, Field(discriminator="type")]


class ServerSpec(_SpecModel):
    """Parsed MCPServer spec.

    The custom resource carries ``transportType`` next to two optional payloads;
    the parsed model keeps only the payload selected by ``transportType`` in a
    single ``transport`` field.
    """

    deployment: ServerDeployment = Field(default_factory=ServerDeployment)
    transport: Transport = Field(default_factory=StdioTransport)

    @property
    def transport_type(self) -> str:
        return self.transport.type

    @classmethod
    def from_resource(
        cls, spec: Mapping[str, Any], default_transport_type: str = TransportType.STDIO.value
    ) -> "ServerSpec":
        """Parse the ``spec`` of an MCPServer custom resource.

        Raises:
            UnsupportedTransportError: transportType is not a known transport
            InvalidConfigError: the resource spec fails schema validation
        """
        raw = dict(spec)
        transport_type = raw.pop("transportType", None) or default_transport_type
        payloads = {
            TransportType.STDIO.value: raw.pop("stdioTransport", None),
            TransportType.HTTP.value: raw.pop("httpTransport", None),
        }

        if not isinstance(transport_type, str) or transport_type not in payloads:
            raise UnsupportedTransportError(
                f"unsupported transport type {transport_type!r}", field="transportType"
            )

        for other_type, payload in payloads.items():
            if other_type != transport_type and payload is not None:
                logger.debug(
                    "Ignoring %sTransport payload for %s transport", other_type, transport_type
                )

        selected = payloads[transport_type]
        if selected is not None and not isinstance(selected, Mapping):
            raise InvalidConfigError(
                "transport payload must be an object", field=f"{transport_type}Transport"
            )
        raw["transport"] = {**(selected or {}), "type": transport_type}

        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise InvalidConfigError(_format_validation_error(e)) from e


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'spec'}: {err['msg']}"
        for err in error.errors()
    )
