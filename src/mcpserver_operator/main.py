#!/usr/bin/env python3
"""
MCPServer Operator for Kubernetes

Reconciliation driver around the translator: parses MCPServer resources,
applies the generated objects and writes the resulting conditions back to the
status subresource.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import kopf
from kubernetes import config

from ._version import __version__
from .apply import WorkloadApplier
from .config import OperatorSettings
from .exceptions import ConditionType, TranslationError
from .models import API_GROUP, API_VERSION, PLURAL
from .status import ReconcileObservation, build_status, get_condition
from .translator import ResourceAssembler

logger = logging.getLogger(__name__)

RESOURCE = (API_GROUP, API_VERSION, PLURAL)


def load_kubernetes_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded local Kubernetes config")


def reconcile(
    name: str,
    namespace: str,
    spec: Mapping[str, Any],
    generation: int,
    previous_status: Mapping[str, Any] | None,
    assembler: ResourceAssembler,
    applier: WorkloadApplier,
    owner: Mapping[str, Any] | None = None,
    check_availability: bool = False,
) -> dict[str, Any]:
    """Run one reconciliation pass and return the new status payload.

    Translation failures are terminal for the generation and only reported
    through conditions; Kubernetes API errors while reading live state
    propagate so the framework retries the pass.
    """
    try:
        server_spec = assembler.parse(spec)
        workload = assembler.assemble(name, namespace, server_spec)
    except TranslationError as e:
        logger.warning("Failed to translate MCPServer %s/%s: %s", namespace, name, e)
        return build_status(ReconcileObservation(generation=generation, error=e), previous_status)

    unresolved = applier.missing_references(namespace, server_spec)
    if unresolved:
        logger.warning(
            "MCPServer %s/%s has unresolved references: %s", namespace, name, unresolved
        )
        return build_status(
            ReconcileObservation(generation=generation, unresolved_refs=unresolved),
            previous_status,
        )

    result = applier.apply(name, namespace, workload, owner=owner)
    if not result.succeeded:
        return build_status(
            ReconcileObservation(generation=generation, apply_errors=result.errors),
            previous_status,
        )

    replicas = applier.read_replicas(name, namespace)
    desired = replicas.desired
    if desired is None:
        desired = workload.deployment.spec.replicas
    observation = ReconcileObservation(
        generation=generation,
        desired_replicas=desired,
        ready_replicas=replicas.ready,
        available=replicas.available if check_availability else None,
    )
    return build_status(observation, previous_status)


async def reconcile_mcpserver(  # type: ignore
    spec, meta, status, body, name, namespace, patch, memo, logger, **_kwargs
):
    """Handle MCPServer creation, updates, resumes and periodic refreshes"""
    settings: OperatorSettings = memo.operator_settings
    new_status = await asyncio.to_thread(
        reconcile,
        name,
        namespace,
        spec,
        meta.get("generation", 0),
        status,
        memo.assembler,
        memo.applier,
        body,
        settings.check_availability,
    )
    patch.status.update(new_status)

    ready = get_condition(new_status["conditions"], ConditionType.READY)
    logger.info(
        "Reconciled MCPServer %s: Ready=%s (%s)",
        name,
        ready["status"] if ready else "Unknown",
        ready["reason"] if ready else "",
    )


def build_registry(operator_settings: OperatorSettings) -> kopf.OperatorRegistry:
    """Register the operator's handlers on a dedicated registry."""
    registry = kopf.OperatorRegistry()

    @kopf.on.startup(registry=registry)
    async def configure(memo: kopf.Memo, **_kwargs: Any) -> None:
        load_kubernetes_config()
        memo.operator_settings = operator_settings
        memo.assembler = ResourceAssembler(operator_settings)
        memo.applier = WorkloadApplier()

    kopf.on.create(*RESOURCE, id="reconcile-create", registry=registry)(reconcile_mcpserver)
    kopf.on.update(*RESOURCE, id="reconcile-update", registry=registry)(reconcile_mcpserver)
    kopf.on.resume(*RESOURCE, id="reconcile-resume", registry=registry)(reconcile_mcpserver)
    kopf.timer(
        *RESOURCE,
        id="refresh-status",
        interval=operator_settings.status_interval,
        initial_delay=operator_settings.status_interval,
        registry=registry,
    )(reconcile_mcpserver)

    return registry


def main() -> None:
    """Main entry point for the operator."""
    operator_settings = OperatorSettings.from_env()
    logging.basicConfig(level=operator_settings.log_level)

    logger.info("Starting MCPServer Operator %s...", __version__)
    logger.info(
        "Default transport %s, adapter image %s",
        operator_settings.default_transport_type,
        operator_settings.adapter_image,
    )

    kopf.run(
        registry=build_registry(operator_settings),
        clusterwide=True,
        liveness_endpoint=f"http://0.0.0.0:{operator_settings.health_port}/healthz",
    )


if __name__ == "__main__":
    main()
