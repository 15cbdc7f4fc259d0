"""
Exceptions raised while translating an MCPServer and applying its objects
"""

from enum import Enum


class ConditionType(str, Enum):
    """Status condition types reported on an MCPServer"""

    ACCEPTED = "Accepted"
    RESOLVED_REFS = "ResolvedRefs"
    PROGRAMMED = "Programmed"
    READY = "Ready"


class ConditionReason(str, Enum):
    """Reasons attached to MCPServer status conditions"""

    # Accepted
    ACCEPTED = "Accepted"
    INVALID_CONFIG = "InvalidConfig"
    UNSUPPORTED_TRANSPORT = "UnsupportedTransport"

    # ResolvedRefs
    RESOLVED_REFS = "ResolvedRefs"
    IMAGE_NOT_FOUND = "ImageNotFound"

    # Programmed
    PROGRAMMED = "Programmed"
    DEPLOYMENT_FAILED = "DeploymentFailed"
    SERVICE_FAILED = "ServiceFailed"
    CONFIGMAP_FAILED = "ConfigMapFailed"

    # Ready
    READY = "Ready"
    PODS_NOT_READY = "PodsNotReady"
    AVAILABLE = "Available"
    NOT_AVAILABLE = "NotAvailable"


class TranslationError(Exception):
    """Base exception for failures turning a server spec into workload objects"""

    reason: ConditionReason = ConditionReason.INVALID_CONFIG
    # Validation-class errors make the generation unacceptable; the others are
    # reference-resolution failures on an otherwise valid spec.
    is_validation_error: bool = True

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class InvalidConfigError(TranslationError):
    """The server spec is internally inconsistent or structurally invalid"""

    reason = ConditionReason.INVALID_CONFIG


class UnsupportedTransportError(TranslationError):
    """The requested transport is unknown or cannot be combined with the server spec"""

    reason = ConditionReason.UNSUPPORTED_TRANSPORT


class ImageNotFoundError(TranslationError):
    """A referenced image could not be resolved"""

    reason = ConditionReason.IMAGE_NOT_FOUND
    is_validation_error = False


class ResourceConflictError(Exception):
    """A generated object's name is taken by an object this server does not manage"""

    def __init__(self, kind: str, name: str, server: str) -> None:
        super().__init__(f"{kind} {name} already exists and is not managed by MCPServer {server}")
        self.kind = kind
        self.name = name
