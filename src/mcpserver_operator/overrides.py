"""
Merge user-supplied structural overrides onto a generated Deployment.

Merge rules, per field class:

* maps (node selector, labels, annotations) are merged key by key and the
  override wins on collision;
* objects (affinity, security contexts, probes, strategy, ...) and optional
  numbers are replaced wholesale when the override sets them;
* plain scalars are replaced only when the override value is non-empty;
* lists (tolerations) are replaced wholesale when non-empty, never appended.

All functions mutate the deployment in place and return ``None``.
"""

import logging

from kubernetes.client.models import (
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
)

from .exceptions import InvalidConfigError
from .models import ContainerOverrides, DeploymentOverrides, PodTemplateOverrides

logger = logging.getLogger(__name__)

PRIMARY_CONTAINER_NAME = "mcp-server"


def _merge_map(
    base: dict[str, str] | None, override: dict[str, str] | None
) -> dict[str, str] | None:
    if not override:
        return base
    merged = dict(base or {})
    merged.update(override)
    return merged


def _deployment_spec(deployment: V1Deployment) -> V1DeploymentSpec:
    if deployment.spec is None:
        deployment.spec = V1DeploymentSpec(
            selector=V1LabelSelector(), template=V1PodTemplateSpec()
        )
    return deployment.spec


def _pod_template(deployment: V1Deployment) -> V1PodTemplateSpec:
    _deployment_spec(deployment)
    if deployment.spec.template is None:
        deployment.spec.template = V1PodTemplateSpec()
    template = deployment.spec.template
    if template.metadata is None:
        template.metadata = V1ObjectMeta()
    if template.spec is None:
        template.spec = V1PodSpec(containers=[])
    return template


def apply_pod_template_overrides(
    deployment: V1Deployment, overrides: PodTemplateOverrides | None
) -> None:
    """Apply pod-level overrides to the deployment's pod template."""
    if overrides is None:
        return

    template = _pod_template(deployment)
    pod_spec = template.spec

    pod_spec.node_selector = _merge_map(pod_spec.node_selector, overrides.nodeSelector)
    template.metadata.annotations = _merge_map(
        template.metadata.annotations, overrides.annotations
    )
    template.metadata.labels = _merge_map(template.metadata.labels, overrides.labels)

    if overrides.tolerations:
        pod_spec.tolerations = list(overrides.tolerations)
    if overrides.affinity is not None:
        pod_spec.affinity = overrides.affinity
    if overrides.securityContext is not None:
        pod_spec.security_context = overrides.securityContext
    if overrides.runtimeClassName is not None:
        pod_spec.runtime_class_name = overrides.runtimeClassName

    if overrides.hostNetwork:
        pod_spec.host_network = True
    if overrides.dnsPolicy:
        pod_spec.dns_policy = overrides.dnsPolicy
    if overrides.priorityClassName:
        pod_spec.priority_class_name = overrides.priorityClassName
    if overrides.serviceAccountName:
        pod_spec.service_account_name = overrides.serviceAccountName


def find_container(deployment: V1Deployment, container_name: str) -> V1Container:
    """Return the named container from the pod template.

    Raises:
        InvalidConfigError: the pod has no containers or none with that name
    """
    containers = _pod_template(deployment).spec.containers or []
    if not containers:
        raise InvalidConfigError(
            "deployment has no containers to apply container overrides to",
            field="deployment.containerTemplate",
        )
    for container in containers:
        if container.name == container_name:
            return container
    raise InvalidConfigError(
        f"container {container_name!r} not found in pod template",
        field="deployment.containerTemplate",
    )


def apply_container_overrides(
    deployment: V1Deployment,
    overrides: ContainerOverrides | None,
    container_name: str = PRIMARY_CONTAINER_NAME,
) -> None:
    """Apply container-level overrides to the named container."""
    if overrides is None:
        return

    container = find_container(deployment, container_name)

    if overrides.resources is not None:
        container.resources = overrides.resources
    if overrides.securityContext is not None:
        container.security_context = overrides.securityContext
    if overrides.lifecycle is not None:
        container.lifecycle = overrides.lifecycle
    if overrides.livenessProbe is not None:
        container.liveness_probe = overrides.livenessProbe
    if overrides.readinessProbe is not None:
        container.readiness_probe = overrides.readinessProbe
    if overrides.startupProbe is not None:
        container.startup_probe = overrides.startupProbe

    if overrides.imagePullPolicy:
        container.image_pull_policy = overrides.imagePullPolicy
    if overrides.terminationMessagePath:
        container.termination_message_path = overrides.terminationMessagePath
    if overrides.terminationMessagePolicy:
        container.termination_message_policy = overrides.terminationMessagePolicy


def apply_deployment_overrides(
    deployment: V1Deployment, overrides: DeploymentOverrides | None
) -> None:
    """Apply deployment-level overrides (replicas, strategy, rollout tuning)."""
    if overrides is None:
        return

    spec = _deployment_spec(deployment)

    if overrides.replicas is not None:
        spec.replicas = overrides.replicas
    if overrides.strategy is not None:
        spec.strategy = overrides.strategy
    if overrides.revisionHistoryLimit is not None:
        spec.revision_history_limit = overrides.revisionHistoryLimit
    if overrides.progressDeadlineSeconds is not None:
        spec.progress_deadline_seconds = overrides.progressDeadlineSeconds

    if overrides.minReadySeconds:
        spec.min_ready_seconds = overrides.minReadySeconds
    if overrides.paused:
        spec.paused = True

    logger.debug("Applied deployment overrides, replicas=%s", spec.replicas)
