"""
Operator configuration read from the environment
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_ADAPTER_IMAGE = "ghcr.io/agentgateway/agentgateway:0.9.0-musl"
DEFAULT_PORT = 3000
DEFAULT_TRANSPORT_TYPE = "stdio"
DEFAULT_STATUS_INTERVAL = 30.0
DEFAULT_HEALTH_PORT = 8080

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class OperatorSettings:
    """Knobs consumed by the translator and the reconciliation driver.

    The translator only reads these values; it never mutates them, so a single
    instance can be shared between concurrent reconciliation passes.
    """

    adapter_image: str = DEFAULT_ADAPTER_IMAGE
    default_port: int | None = DEFAULT_PORT
    default_transport_type: str = DEFAULT_TRANSPORT_TYPE
    default_image: str | None = None
    status_interval: float = DEFAULT_STATUS_INTERVAL
    check_availability: bool = False
    log_level: str = "INFO"
    health_port: int = DEFAULT_HEALTH_PORT

    @classmethod
    def from_env(cls) -> "OperatorSettings":
        """Build settings from environment variables, falling back to defaults."""
        default_port_raw = os.getenv("MCP_DEFAULT_PORT", str(DEFAULT_PORT)).strip()
        if default_port_raw in ("", "0", "none"):
            # An explicit empty value disables the port fallback entirely
            default_port = None
        else:
            default_port = _parse_port("MCP_DEFAULT_PORT", default_port_raw)

        settings = cls(
            adapter_image=os.getenv("MCP_ADAPTER_IMAGE", DEFAULT_ADAPTER_IMAGE),
            default_port=default_port,
            default_transport_type=os.getenv("MCP_DEFAULT_TRANSPORT", DEFAULT_TRANSPORT_TYPE),
            default_image=os.getenv("MCP_DEFAULT_IMAGE") or None,
            status_interval=float(
                os.getenv("MCP_STATUS_INTERVAL", str(DEFAULT_STATUS_INTERVAL))
            ),
            check_availability=os.getenv("MCP_CHECK_AVAILABILITY", "false").lower()
            in _TRUE_VALUES,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            health_port=_parse_port(
                "OPERATOR_HEALTH_PORT", os.getenv("OPERATOR_HEALTH_PORT", str(DEFAULT_HEALTH_PORT))
            ),
        )
        logger.debug("Loaded operator settings: %s", settings)
        return settings


def _parse_port(variable: str, raw: str) -> int:
    try:
        port = int(raw)
    except ValueError as e:
        raise ValueError(f"{variable} must be an integer, got {raw!r}") from e
    if not 1 <= port <= 65535:
        raise ValueError(f"{variable} must be between 1 and 65535, got {port}")
    return port
