"""
Status projection for MCPServer resources.

Conditions are derived from what a reconciliation pass observed (translation
result, apply outcome, live replica counts) and recomputed in full on every
pass. Nothing here performs I/O.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .exceptions import ConditionReason, ConditionType, TranslationError

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

# Apply order of generated kinds; the first failing kind names the reason
APPLY_FAILURE_REASONS: dict[str, ConditionReason] = {
    "ServiceAccount": ConditionReason.DEPLOYMENT_FAILED,
    "ConfigMap": ConditionReason.CONFIGMAP_FAILED,
    "Deployment": ConditionReason.DEPLOYMENT_FAILED,
    "Service": ConditionReason.SERVICE_FAILED,
}

_Evaluation = tuple[ConditionType, str, ConditionReason, str]


@dataclass(frozen=True)
class ReconcileObservation:
    """Facts gathered by one reconciliation pass"""

    generation: int
    # Error raised by the translator, if any
    error: TranslationError | None = None
    # Secret/ConfigMap references that could not be read
    unresolved_refs: tuple[str, ...] = ()
    # Object kind -> error message reported by the apply step
    apply_errors: Mapping[str, str] = field(default_factory=dict)
    desired_replicas: int | None = None
    ready_replicas: int | None = None
    # None when no availability check was requested
    available: bool | None = None


def _evaluate(observation: ReconcileObservation) -> list[_Evaluation]:
    error = observation.error

    if error is not None and error.is_validation_error:
        blocked = f"Spec not accepted: {error.reason.value}"
        return [
            (ConditionType.ACCEPTED, STATUS_FALSE, error.reason, str(error)),
            (ConditionType.RESOLVED_REFS, STATUS_UNKNOWN, error.reason, blocked),
            (ConditionType.PROGRAMMED, STATUS_UNKNOWN, error.reason, blocked),
            (ConditionType.READY, STATUS_FALSE, ConditionReason.PODS_NOT_READY, blocked),
        ]

    accepted = (
        ConditionType.ACCEPTED,
        STATUS_TRUE,
        ConditionReason.ACCEPTED,
        "MCPServer configuration accepted",
    )

    unresolved = ([str(error)] if error is not None else []) + list(observation.unresolved_refs)
    if unresolved:
        blocked = "References not resolved"
        return [
            accepted,
            (
                ConditionType.RESOLVED_REFS,
                STATUS_FALSE,
                ConditionReason.IMAGE_NOT_FOUND,
                "; ".join(unresolved),
            ),
            (ConditionType.PROGRAMMED, STATUS_UNKNOWN, ConditionReason.IMAGE_NOT_FOUND, blocked),
            (ConditionType.READY, STATUS_FALSE, ConditionReason.PODS_NOT_READY, blocked),
        ]

    resolved = (
        ConditionType.RESOLVED_REFS,
        STATUS_TRUE,
        ConditionReason.RESOLVED_REFS,
        "All references resolved",
    )

    if observation.apply_errors:
        failed = [kind for kind in APPLY_FAILURE_REASONS if kind in observation.apply_errors]
        # Kinds outside the known set still fail the pass
        failed += sorted(set(observation.apply_errors) - set(APPLY_FAILURE_REASONS))
        reason = APPLY_FAILURE_REASONS.get(failed[0], ConditionReason.DEPLOYMENT_FAILED)
        message = "; ".join(f"{kind}: {observation.apply_errors[kind]}" for kind in failed)
        return [
            accepted,
            resolved,
            (ConditionType.PROGRAMMED, STATUS_FALSE, reason, message),
            (
                ConditionType.READY,
                STATUS_FALSE,
                ConditionReason.PODS_NOT_READY,
                "Workload not programmed",
            ),
        ]

    programmed = (
        ConditionType.PROGRAMMED,
        STATUS_TRUE,
        ConditionReason.PROGRAMMED,
        "All generated objects applied",
    )

    desired = 1 if observation.desired_replicas is None else observation.desired_replicas
    ready = observation.ready_replicas or 0
    replicas = f"{ready}/{desired} replicas ready"

    if ready < desired:
        readiness = (ConditionType.READY, STATUS_FALSE, ConditionReason.PODS_NOT_READY, replicas)
    elif observation.available is None:
        readiness = (ConditionType.READY, STATUS_TRUE, ConditionReason.READY, replicas)
    elif observation.available:
        readiness = (ConditionType.READY, STATUS_TRUE, ConditionReason.AVAILABLE, replicas)
    else:
        readiness = (
            ConditionType.READY,
            STATUS_FALSE,
            ConditionReason.NOT_AVAILABLE,
            f"{replicas}, deployment not available",
        )

    return [accepted, resolved, programmed, readiness]


def project_conditions(
    observation: ReconcileObservation,
    previous: Iterable[Mapping[str, Any]] | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Compute the full condition set for a reconciliation pass.

    ``lastTransitionTime`` is carried over from ``previous`` only when a
    condition keeps its status; everything else is overwritten.
    """
    timestamp = (now or datetime.now(UTC)).isoformat()
    previous_by_type = {
        condition.get("type"): condition for condition in previous or () if condition
    }

    conditions = []
    for condition_type, status, reason, message in _evaluate(observation):
        last = previous_by_type.get(condition_type.value)
        transition = (
            last.get("lastTransitionTime", timestamp)
            if last is not None and last.get("status") == status
            else timestamp
        )
        conditions.append(
            {
                "type": condition_type.value,
                "status": status,
                "reason": reason.value,
                "message": message,
                "observedGeneration": observation.generation,
                "lastTransitionTime": transition,
            }
        )
    return conditions


def build_status(
    observation: ReconcileObservation,
    previous_status: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Status subresource payload: conditions plus the observed generation."""
    previous = (previous_status or {}).get("conditions")
    return {
        "conditions": project_conditions(observation, previous, now),
        "observedGeneration": observation.generation,
    }


def get_condition(
    conditions: Iterable[Mapping[str, Any]], condition_type: ConditionType | str
) -> Mapping[str, Any] | None:
    """Return the condition of the given type, if present."""
    wanted = condition_type.value if isinstance(condition_type, ConditionType) else condition_type
    for condition in conditions:
        if condition.get("type") == wanted:
            return condition
    return None
