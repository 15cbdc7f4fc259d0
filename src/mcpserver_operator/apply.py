"""
Cluster-facing side of a reconciliation pass: applies generated objects and
reads back the live state the status projection needs.

An existing object is only updated or deleted when it is managed by the
MCPServer being reconciled: it carries an owner reference to the server's uid,
or the operator's managed-by and server labels for that server.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import kopf
from kubernetes import client
from kubernetes.client.rest import ApiException

from .exceptions import ResourceConflictError
from .k8s_utils import to_manifest
from .models import ServerSpec
from .transport import adapter_config_name
from .translator import (
    MANAGED_BY,
    MANAGED_BY_LABEL,
    SERVER_LABEL,
    GeneratedWorkload,
    deployment_name,
    service_name,
)

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Per-kind outcome of applying a generated workload"""

    applied: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ReplicaState:
    """Replica counts read back from the live Deployment"""

    desired: int | None = None
    ready: int = 0
    available: bool = False


def is_managed_by(existing: Any, name: str, owner_uid: str | None = None) -> bool:
    """Whether a live object belongs to the MCPServer ``name``."""
    metadata = existing.metadata
    if metadata is None:
        return False
    if owner_uid and any(ref.uid == owner_uid for ref in metadata.owner_references or []):
        return True
    labels = metadata.labels or {}
    return labels.get(MANAGED_BY_LABEL) == MANAGED_BY and labels.get(SERVER_LABEL) == name


class WorkloadApplier:
    """Creates or updates generated objects and reads their live state"""

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        apps_api: client.AppsV1Api | None = None,
    ) -> None:
        self.k8s_core = core_api or client.CoreV1Api()
        self.k8s_apps = apps_api or client.AppsV1Api()

    def _operations(
        self, kind: str
    ) -> tuple[Callable[..., Any], Callable[..., Any], Callable[..., Any], Callable[..., Any]]:
        """(create, read, update, delete) calls for a kind.

        Services and ServiceAccounts are patched so that fields the cluster
        assigns (clusterIP, token secrets) survive; everything else is replaced.
        """
        core, apps = self.k8s_core, self.k8s_apps
        operations = {
            "ServiceAccount": (
                core.create_namespaced_service_account,
                core.read_namespaced_service_account,
                core.patch_namespaced_service_account,
                core.delete_namespaced_service_account,
            ),
            "ConfigMap": (
                core.create_namespaced_config_map,
                core.read_namespaced_config_map,
                core.replace_namespaced_config_map,
                core.delete_namespaced_config_map,
            ),
            "Deployment": (
                apps.create_namespaced_deployment,
                apps.read_namespaced_deployment,
                apps.replace_namespaced_deployment,
                apps.delete_namespaced_deployment,
            ),
            "Service": (
                core.create_namespaced_service,
                core.read_namespaced_service,
                core.patch_namespaced_service,
                core.delete_namespaced_service,
            ),
        }
        return operations[kind]

    def _upsert(
        self,
        kind: str,
        server: str,
        namespace: str,
        body: dict[str, Any],
        owner_uid: str | None,
    ) -> None:
        create, read, update, _ = self._operations(kind)
        object_name = body["metadata"]["name"]
        try:
            create(namespace=namespace, body=body)
            logger.info("Created %s %s/%s", kind, namespace, object_name)
            return
        except ApiException as e:
            if e.status != 409:
                raise

        existing = read(name=object_name, namespace=namespace)
        if not is_managed_by(existing, server, owner_uid):
            raise ResourceConflictError(kind, object_name, server)
        update(name=object_name, namespace=namespace, body=body)
        logger.info("Updated %s %s/%s", kind, namespace, object_name)

    def apply(
        self,
        name: str,
        namespace: str,
        workload: GeneratedWorkload,
        owner: Mapping[str, Any] | None = None,
    ) -> ApplyResult:
        """Apply every generated object, recording failures per kind.

        Objects a transport no longer produces (Service, adapter ConfigMap) are
        deleted so a transport switch does not leave them behind. Objects with
        a clashing name that this server does not manage are never touched;
        on apply they are reported as a conflict.
        """
        result = ApplyResult()
        owner_uid = (owner or {}).get("metadata", {}).get("uid")

        for kind, obj in workload.objects():
            body = to_manifest(obj)
            if owner is not None:
                kopf.append_owner_reference(body, owner=owner)
            try:
                self._upsert(kind, name, namespace, body, owner_uid)
                result.applied.append(kind)
            except ApiException as e:
                logger.error(
                    "Failed to apply %s %s/%s: %s", kind, namespace, body["metadata"]["name"], e
                )
                result.errors[kind] = f"{e.status} {e.reason}"
            except ResourceConflictError as e:
                logger.error("Refusing to overwrite %s in %s: %s", kind, namespace, e)
                result.errors[kind] = str(e)

        if workload.service is None:
            self._delete_if_managed("Service", name, service_name(name), namespace, owner_uid)
        if workload.config_map is None:
            self._delete_if_managed(
                "ConfigMap", name, adapter_config_name(name), namespace, owner_uid
            )

        return result

    def _delete_if_managed(
        self, kind: str, server: str, object_name: str, namespace: str, owner_uid: str | None
    ) -> None:
        _, read, _, delete = self._operations(kind)
        try:
            existing = read(name=object_name, namespace=namespace)
        except ApiException as e:
            if e.status != 404:
                logger.warning("Failed to read %s %s/%s: %s", kind, namespace, object_name, e)
            return

        if not is_managed_by(existing, server, owner_uid):
            logger.info(
                "Leaving %s %s/%s in place, not managed by MCPServer %s",
                kind,
                namespace,
                object_name,
                server,
            )
            return

        try:
            delete(name=object_name, namespace=namespace)
            logger.info("Deleted stale %s %s/%s", kind, namespace, object_name)
        except ApiException as e:
            if e.status != 404:
                logger.warning(
                    "Failed to delete stale %s %s/%s: %s", kind, namespace, object_name, e
                )

    def missing_references(self, namespace: str, spec: ServerSpec) -> tuple[str, ...]:
        """Describe every referenced Secret or ConfigMap that cannot be read."""
        missing = []
        lookups = [
            ("Secret", ref.name, self.k8s_core.read_namespaced_secret)
            for ref in spec.deployment.secretRefs
        ] + [
            ("ConfigMap", ref.name, self.k8s_core.read_namespaced_config_map)
            for ref in spec.deployment.configMapRefs
        ]

        for kind, ref_name, read in lookups:
            try:
                read(name=ref_name, namespace=namespace)
            except ApiException as e:
                if e.status == 404:
                    missing.append(f"{kind} {ref_name} not found")
                else:
                    logger.warning("Failed to read %s %s/%s: %s", kind, namespace, ref_name, e)
                    missing.append(f"{kind} {ref_name}: {e.reason}")

        return tuple(missing)

    def read_replicas(self, name: str, namespace: str) -> ReplicaState:
        """Read desired/ready replica counts from the live Deployment."""
        try:
            deployment = self.k8s_apps.read_namespaced_deployment_status(
                name=deployment_name(name), namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                logger.info("Deployment for %s not found in %s", name, namespace)
                return ReplicaState()
            raise

        desired = deployment.spec.replicas if deployment.spec else None
        status = deployment.status
        ready = (status.ready_replicas or 0) if status else 0
        available = any(
            condition.type == "Available" and condition.status == "True"
            for condition in ((status.conditions or []) if status else [])
        )
        return ReplicaState(desired=desired, ready=ready, available=available)
