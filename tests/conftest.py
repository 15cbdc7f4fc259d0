"""Test configuration and fixtures."""

from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.models import (
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
)

from mcpserver_operator.apply import WorkloadApplier
from mcpserver_operator.config import OperatorSettings
from mcpserver_operator.translator import ResourceAssembler


@pytest.fixture
def settings() -> OperatorSettings:
    """Default operator settings."""
    return OperatorSettings()


@pytest.fixture
def assembler(settings: OperatorSettings) -> ResourceAssembler:
    """Translator using default settings."""
    return ResourceAssembler(settings)


@pytest.fixture
def base_deployment() -> V1Deployment:
    """Minimal single-container deployment to merge overrides onto."""
    return V1Deployment(
        metadata=V1ObjectMeta(name="test-deployment"),
        spec=V1DeploymentSpec(
            replicas=1,
            selector=V1LabelSelector(match_labels={"app": "test"}),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels={"app": "test"}),
                spec=V1PodSpec(
                    service_account_name="default",
                    containers=[V1Container(name="mcp-server", image="test:latest")],
                ),
            ),
        ),
    )


@pytest.fixture
def http_spec() -> dict[str, Any]:
    """Raw MCPServer spec using the HTTP transport."""
    return {
        "deployment": {
            "image": "ghcr.io/example/weather-mcp:1.2.0",
            "cmd": "weather-mcp",
            "args": ["--listen", "0.0.0.0"],
            "env": {"LOG_LEVEL": "debug", "API_URL": "https://api.example.com"},
        },
        "transportType": "http",
        "httpTransport": {"targetPort": 8080, "path": "/mcp"},
    }


@pytest.fixture
def stdio_spec() -> dict[str, Any]:
    """Raw MCPServer spec using the stdio transport."""
    return {
        "deployment": {
            "image": "node:22-alpine",
            "cmd": "npx",
            "args": ["-y", "@modelcontextprotocol/server-everything"],
        },
        "transportType": "stdio",
        "stdioTransport": {},
    }


@pytest.fixture
def mock_k8s_clients() -> dict[str, Any]:
    """Mocked Kubernetes API clients."""
    return {
        "core": MagicMock(spec=client.CoreV1Api),
        "apps": MagicMock(spec=client.AppsV1Api),
    }


@pytest.fixture
def applier(mock_k8s_clients: dict[str, Any]) -> WorkloadApplier:
    """Applier wired to mocked API clients."""
    return WorkloadApplier(core_api=mock_k8s_clients["core"], apps_api=mock_k8s_clients["apps"])
