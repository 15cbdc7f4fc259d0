"""Tests for override merging."""

import copy

import pytest
from kubernetes.client.models import (
    V1Affinity,
    V1Capabilities,
    V1Container,
    V1Deployment,
    V1DeploymentStrategy,
    V1ExecAction,
    V1HTTPGetAction,
    V1LabelSelector,
    V1Lifecycle,
    V1LifecycleHandler,
    V1PodAffinityTerm,
    V1PodAntiAffinity,
    V1PodSecurityContext,
    V1Probe,
    V1ResourceRequirements,
    V1RollingUpdateDeployment,
    V1SecurityContext,
    V1Toleration,
    V1WeightedPodAffinityTerm,
)

from mcpserver_operator.exceptions import InvalidConfigError
from mcpserver_operator.k8s_utils import to_manifest
from mcpserver_operator.models import (
    ContainerOverrides,
    DeploymentOverrides,
    PodTemplateOverrides,
)
from mcpserver_operator.overrides import (
    apply_container_overrides,
    apply_deployment_overrides,
    apply_pod_template_overrides,
    find_container,
)


class TestPodTemplateOverrides:
    """Test pod-level override merging."""

    def test_applies_all_pod_fields(self, base_deployment: V1Deployment) -> None:
        """Test every pod-level override lands on the pod template."""
        overrides = PodTemplateOverrides(
            nodeSelector={"disktype": "ssd", "zone": "us-east-1a"},
            tolerations=[
                V1Toleration(
                    key="dedicated",
                    operator="Equal",
                    value="mcp-workloads",
                    effect="NoSchedule",
                )
            ],
            affinity=V1Affinity(
                pod_anti_affinity=V1PodAntiAffinity(
                    preferred_during_scheduling_ignored_during_execution=[
                        V1WeightedPodAffinityTerm(
                            weight=100,
                            pod_affinity_term=V1PodAffinityTerm(
                                label_selector=V1LabelSelector(match_labels={"app": "test"}),
                                topology_key="kubernetes.io/hostname",
                            ),
                        )
                    ]
                )
            ),
            securityContext=V1PodSecurityContext(
                run_as_non_root=True, run_as_user=1000, fs_group=2000
            ),
            annotations={"prometheus.io/scrape": "true", "prometheus.io/port": "9090"},
            labels={"environment": "production"},
            priorityClassName="system-cluster-critical",
        )

        apply_pod_template_overrides(base_deployment, overrides)

        template = base_deployment.spec.template
        pod_spec = template.spec
        assert pod_spec.node_selector == {"disktype": "ssd", "zone": "us-east-1a"}
        assert len(pod_spec.tolerations) == 1
        assert pod_spec.tolerations[0].key == "dedicated"
        assert pod_spec.affinity.pod_anti_affinity is not None
        assert pod_spec.security_context.run_as_non_root is True
        assert pod_spec.security_context.run_as_user == 1000
        assert template.metadata.annotations["prometheus.io/scrape"] == "true"
        assert template.metadata.labels == {"app": "test", "environment": "production"}
        assert pod_spec.priority_class_name == "system-cluster-critical"

    def test_map_fields_merge_key_by_key(self, base_deployment: V1Deployment) -> None:
        """Test base-only keys survive, shared keys are replaced, new keys are added."""
        pod_spec = base_deployment.spec.template.spec
        pod_spec.node_selector = {"pool": "general", "zone": "a"}
        base_deployment.spec.template.metadata.annotations = {"team": "platform"}

        overrides = PodTemplateOverrides(
            nodeSelector={"zone": "b", "disktype": "ssd"},
            annotations={"team": "mcp", "owner": "alice"},
            labels={"app": "overridden"},
        )
        apply_pod_template_overrides(base_deployment, overrides)

        assert pod_spec.node_selector == {"pool": "general", "zone": "b", "disktype": "ssd"}
        assert base_deployment.spec.template.metadata.annotations == {
            "team": "mcp",
            "owner": "alice",
        }
        assert base_deployment.spec.template.metadata.labels == {"app": "overridden"}

    def test_tolerations_replace_wholesale(self, base_deployment: V1Deployment) -> None:
        """Test tolerations are replaced, not appended."""
        pod_spec = base_deployment.spec.template.spec
        pod_spec.tolerations = [V1Toleration(key="old", operator="Exists")]

        apply_pod_template_overrides(
            base_deployment,
            PodTemplateOverrides(tolerations=[V1Toleration(key="new", operator="Exists")]),
        )

        assert [t.key for t in pod_spec.tolerations] == ["new"]

    def test_empty_tolerations_keep_base(self, base_deployment: V1Deployment) -> None:
        """Test an empty toleration list leaves the base untouched."""
        pod_spec = base_deployment.spec.template.spec
        pod_spec.tolerations = [V1Toleration(key="old", operator="Exists")]

        apply_pod_template_overrides(base_deployment, PodTemplateOverrides(tolerations=[]))

        assert [t.key for t in pod_spec.tolerations] == ["old"]

    def test_pointer_fields_keep_base_when_unset(self, base_deployment: V1Deployment) -> None:
        """Test unset affinity/securityContext leave the base values in place."""
        pod_spec = base_deployment.spec.template.spec
        affinity = V1Affinity(pod_anti_affinity=V1PodAntiAffinity())
        security_context = V1PodSecurityContext(run_as_user=10)
        pod_spec.affinity = affinity
        pod_spec.security_context = security_context

        apply_pod_template_overrides(base_deployment, PodTemplateOverrides(nodeSelector={"a": "b"}))

        assert pod_spec.affinity is affinity
        assert pod_spec.security_context is security_context

    def test_scalar_fields_replace_only_when_set(self, base_deployment: V1Deployment) -> None:
        """Test empty scalars keep base values and set scalars replace them."""
        pod_spec = base_deployment.spec.template.spec
        pod_spec.dns_policy = "ClusterFirst"

        apply_pod_template_overrides(base_deployment, PodTemplateOverrides())
        assert pod_spec.service_account_name == "default"
        assert pod_spec.dns_policy == "ClusterFirst"
        assert pod_spec.host_network is None

        apply_pod_template_overrides(
            base_deployment,
            PodTemplateOverrides(
                serviceAccountName="mcp-runner",
                dnsPolicy="ClusterFirstWithHostNet",
                hostNetwork=True,
                runtimeClassName="gvisor",
            ),
        )
        assert pod_spec.service_account_name == "mcp-runner"
        assert pod_spec.dns_policy == "ClusterFirstWithHostNet"
        assert pod_spec.host_network is True
        assert pod_spec.runtime_class_name == "gvisor"


class TestContainerOverrides:
    """Test container-level override merging."""

    def test_applies_all_container_fields(self, base_deployment: V1Deployment) -> None:
        """Test resources, lifecycle, security context, probes and pull policy are applied."""
        overrides = ContainerOverrides(
            resources=V1ResourceRequirements(
                requests={"cpu": "100m", "memory": "128Mi"},
                limits={"cpu": "500m", "memory": "512Mi"},
            ),
            lifecycle=V1Lifecycle(
                post_start=V1LifecycleHandler(
                    _exec=V1ExecAction(command=["/bin/sh", "-c", "echo Started"])
                ),
                pre_stop=V1LifecycleHandler(
                    _exec=V1ExecAction(command=["/bin/sh", "-c", "sleep 15"])
                ),
            ),
            securityContext=V1SecurityContext(
                allow_privilege_escalation=False, capabilities=V1Capabilities(drop=["ALL"])
            ),
            livenessProbe=V1Probe(
                http_get=V1HTTPGetAction(path="/healthz", port=3000),
                initial_delay_seconds=30,
                period_seconds=10,
            ),
            readinessProbe=V1Probe(
                http_get=V1HTTPGetAction(path="/ready", port=3000),
                initial_delay_seconds=5,
                period_seconds=5,
            ),
            imagePullPolicy="Always",
        )

        apply_container_overrides(base_deployment, overrides)

        container = base_deployment.spec.template.spec.containers[0]
        assert container.resources.requests == {"cpu": "100m", "memory": "128Mi"}
        assert container.resources.limits == {"cpu": "500m", "memory": "512Mi"}
        assert container.lifecycle.post_start._exec.command[0] == "/bin/sh"
        assert container.security_context.allow_privilege_escalation is False
        assert container.liveness_probe.http_get.path == "/healthz"
        assert container.readiness_probe.http_get.path == "/ready"
        assert container.image_pull_policy == "Always"

    def test_pull_policy_only_leaves_other_fields(self, base_deployment: V1Deployment) -> None:
        """Test overriding only imagePullPolicy keeps resources, probes, lifecycle and security."""
        container = base_deployment.spec.template.spec.containers[0]
        resources = V1ResourceRequirements(requests={"cpu": "50m"})
        probe = V1Probe(http_get=V1HTTPGetAction(path="/health", port="http"))
        lifecycle = V1Lifecycle(pre_stop=V1LifecycleHandler(_exec=V1ExecAction(command=["true"])))
        security_context = V1SecurityContext(read_only_root_filesystem=True)
        container.resources = resources
        container.liveness_probe = probe
        container.readiness_probe = probe
        container.lifecycle = lifecycle
        container.security_context = security_context
        container.image_pull_policy = "IfNotPresent"

        apply_container_overrides(base_deployment, ContainerOverrides(imagePullPolicy="Always"))

        assert container.image_pull_policy == "Always"
        assert container.resources is resources
        assert container.liveness_probe is probe
        assert container.readiness_probe is probe
        assert container.lifecycle is lifecycle
        assert container.security_context is security_context

    def test_termination_message_fields(self, base_deployment: V1Deployment) -> None:
        """Test termination message path and policy replace when set."""
        apply_container_overrides(
            base_deployment,
            ContainerOverrides(
                terminationMessagePath="/var/log/termination",
                terminationMessagePolicy="FallbackToLogsOnError",
            ),
        )

        container = base_deployment.spec.template.spec.containers[0]
        assert container.termination_message_path == "/var/log/termination"
        assert container.termination_message_policy == "FallbackToLogsOnError"

    def test_targets_named_container(self, base_deployment: V1Deployment) -> None:
        """Test overrides only touch the named container in a multi-container pod."""
        sidecar = V1Container(name="sidecar", image="sidecar:1.0")
        base_deployment.spec.template.spec.containers.insert(0, sidecar)

        apply_container_overrides(base_deployment, ContainerOverrides(imagePullPolicy="Never"))

        assert sidecar.image_pull_policy is None
        assert find_container(base_deployment, "mcp-server").image_pull_policy == "Never"

    def test_no_containers_raises(self, base_deployment: V1Deployment) -> None:
        """Test container overrides on a pod without containers fail."""
        base_deployment.spec.template.spec.containers = []

        with pytest.raises(InvalidConfigError, match="no containers"):
            apply_container_overrides(base_deployment, ContainerOverrides(imagePullPolicy="Always"))

    def test_unknown_container_name_raises(self, base_deployment: V1Deployment) -> None:
        """Test targeting a container that does not exist fails."""
        with pytest.raises(InvalidConfigError, match="'missing' not found"):
            apply_container_overrides(
                base_deployment, ContainerOverrides(imagePullPolicy="Always"), "missing"
            )


class TestDeploymentOverrides:
    """Test deployment-level override merging."""

    def test_replicas_strategy_and_min_ready(self, base_deployment: V1Deployment) -> None:
        """Test replicas, rolling update strategy and minReadySeconds are applied."""
        original_selector = base_deployment.spec.selector
        original_template = base_deployment.spec.template

        overrides = DeploymentOverrides(
            replicas=3,
            strategy=V1DeploymentStrategy(
                type="RollingUpdate",
                rolling_update=V1RollingUpdateDeployment(max_surge=1, max_unavailable=0),
            ),
            minReadySeconds=10,
        )
        apply_deployment_overrides(base_deployment, overrides)

        spec = base_deployment.spec
        assert spec.replicas == 3
        assert spec.strategy.type == "RollingUpdate"
        assert spec.strategy.rolling_update.max_surge == 1
        assert spec.strategy.rolling_update.max_unavailable == 0
        assert spec.min_ready_seconds == 10
        assert spec.selector is original_selector
        assert spec.template is original_template
        assert spec.revision_history_limit is None
        assert spec.paused is None

    def test_optional_numbers(self, base_deployment: V1Deployment) -> None:
        """Test revisionHistoryLimit, progressDeadlineSeconds and paused."""
        apply_deployment_overrides(
            base_deployment,
            DeploymentOverrides(
                revisionHistoryLimit=5, progressDeadlineSeconds=120, paused=True
            ),
        )

        assert base_deployment.spec.revision_history_limit == 5
        assert base_deployment.spec.progress_deadline_seconds == 120
        assert base_deployment.spec.paused is True

    def test_zero_replicas_is_applied(self, base_deployment: V1Deployment) -> None:
        """Test an explicit replicas=0 scales the deployment down."""
        apply_deployment_overrides(base_deployment, DeploymentOverrides(replicas=0))

        assert base_deployment.spec.replicas == 0

    def test_unset_fields_keep_base(self, base_deployment: V1Deployment) -> None:
        """Test an empty deployment override changes nothing."""
        before = copy.deepcopy(to_manifest(base_deployment))

        apply_deployment_overrides(base_deployment, DeploymentOverrides())

        assert to_manifest(base_deployment) == before


class TestNilOverrides:
    """Test that missing overrides are no-ops."""

    def test_none_overrides_do_not_change_deployment(self, base_deployment: V1Deployment) -> None:
        """Test None overrides leave the deployment untouched."""
        before = copy.deepcopy(to_manifest(base_deployment))

        apply_pod_template_overrides(base_deployment, None)
        apply_container_overrides(base_deployment, None)
        apply_deployment_overrides(base_deployment, None)

        assert to_manifest(base_deployment) == before

    def test_empty_overrides_do_not_change_deployment(self, base_deployment: V1Deployment) -> None:
        """Test overrides with every field unset leave the deployment untouched."""
        before = copy.deepcopy(to_manifest(base_deployment))

        apply_pod_template_overrides(base_deployment, PodTemplateOverrides())
        apply_container_overrides(base_deployment, ContainerOverrides())
        apply_deployment_overrides(base_deployment, DeploymentOverrides())

        assert to_manifest(base_deployment) == before
