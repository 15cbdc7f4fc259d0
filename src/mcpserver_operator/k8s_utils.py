"""
Kubernetes model helpers shared across the translator
"""

import json
from typing import Any

from kubernetes.client import ApiClient

# Only used for (de)serialization; never talks to a cluster.
_api_client = ApiClient()


class _JSONPayload:
    """Adapter exposing a ``data`` attribute the way ``ApiClient.deserialize`` expects"""

    def __init__(self, obj: Any) -> None:
        self.data = json.dumps(obj)


def to_k8s_model(data: Any, model_type: str) -> Any:
    """Deserialize a camelCase manifest fragment into a kubernetes client model.

    Args:
        data: Plain dict/list as found in a custom resource spec
        model_type: Client type name, e.g. ``"V1Affinity"`` or ``"list[V1Toleration]"``
    """
    return _api_client.deserialize(_JSONPayload(data), model_type)


def to_manifest(obj: Any) -> Any:
    """Serialize a kubernetes client model (or nested structure) to a camelCase dict."""
    return _api_client.sanitize_for_serialization(obj)
