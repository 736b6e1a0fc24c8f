"""Cluster lifecycle orchestration.

The orchestrator composes the runtime, chart installer, Kubernetes client,
session store and GitOps scaffolder into the create, delete, start and stop
workflows. Every collaborator is passed in, so tests can substitute fakes.

Two result channels are used. Fatal errors are raised as LabError
subclasses. Best-effort steps that fail are logged at WARNING and collected
in the returned Outcome, so callers can show them without aborting.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from lab_manager import argocd, cilium, gitops
from lab_manager.config import Settings
from lab_manager.exceptions import (
    ClusterExistsError,
    ConfigurationError,
    CreatePhaseError,
    KubernetesError,
    LabError,
)
from lab_manager.kube import KubeClient, kube_context
from lab_manager.models.session import (
    CLUSTER_NAME_PATTERN,
    ArgoCDInfo,
    ClusterSession,
    HostPorts,
    HubbleInfo,
    RuntimeConfig,
    ServiceInfo,
    SessionState,
)
from lab_manager.ports import resolve_host_ports
from lab_manager.readiness import ReadinessPoller
from lab_manager.runtime import ClusterSpec, K3sArg, PortMapping, VolumeMount

# k3s flags: Cilium replaces flannel and network policy, and its ingress
# replaces Traefik and ServiceLB
K3S_ARGS = [
    "--flannel-backend=none",
    "--disable-network-policy",
    "--disable=traefik",
    "--disable=servicelb",
]


class Phase(Enum):
    """Ordered phases of cluster creation."""

    PORTS = "port resolution"
    SCAFFOLD = "gitops scaffold"
    MATERIALIZE = "cluster materialization"
    KUBECONFIG = "kubeconfig"
    NETWORK = "network layer"
    GITOPS_CONTROLLER = "gitops controller"
    REGISTER_APPS = "application registration"
    ROOT_APP = "root application"


@dataclass
class CreateOptions:
    """Where to scaffold the GitOps repository from."""

    bootstrap_url: str
    bootstrap_version: str | None = None


@dataclass
class StepWarning:
    """A best-effort step that failed without aborting the operation."""

    step: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.step}: {self.error}"


@dataclass
class Outcome:
    """Result of an orchestrator operation."""

    value: Any = None
    warnings: list[StepWarning] = field(default_factory=list)


def build_cluster_spec(
    name: str, settings: Settings, ports: HostPorts, gitops_dir: str | Path
) -> ClusterSpec:
    """Build the k3d spec for a new cluster."""
    return ClusterSpec(
        name=name,
        image=settings.k3s_image,
        servers=settings.servers,
        agents=settings.agents,
        api_port=ports.api_server,
        ports=[
            PortMapping(host_port=ports.http, container_port=cilium.INGRESS_HTTP_NODE_PORT),
            PortMapping(host_port=ports.https, container_port=cilium.INGRESS_HTTPS_NODE_PORT),
            PortMapping(host_port=ports.argocd_ui, container_port=argocd.UI_NODE_PORT),
            PortMapping(host_port=ports.hubble_ui, container_port=cilium.HUBBLE_UI_NODE_PORT),
        ],
        volumes=[
            VolumeMount(host_path=str(gitops_dir), container_path=argocd.LOCAL_GITOPS_PATH)
        ],
        k3s_args=[K3sArg(arg=arg) for arg in K3S_ARGS],
    )


def validate_cluster_name(name: str) -> None:
    """Reject names k3d would refuse.

    Raises:
        ConfigurationError: If the name is not a valid cluster name
    """
    if len(name) > 32 or not CLUSTER_NAME_PATTERN.match(name):
        raise ConfigurationError(
            f"Invalid cluster name '{name}'",
            "Use at most 32 lowercase letters, digits or hyphens, "
            "starting and ending with a letter or digit",
        )


class ClusterOrchestrator:
    """Drives cluster create, delete, start and stop."""

    def __init__(
        self,
        runtime,
        charts,
        kube_factory: Callable[[str], KubeClient],
        store,
        scaffolder: Callable[[str, str | None, Path], None],
        settings: Settings,
        logger: logging.Logger,
        port_resolver: Callable[[], HostPorts] = resolve_host_ports,
        poller_factory: Callable[..., ReadinessPoller] = ReadinessPoller,
    ):
        """Initialize the orchestrator.

        Args:
            runtime: Cluster runtime (K3dRuntime)
            charts: Chart installer (HelmInstaller)
            kube_factory: Returns a KubeClient for a cluster name
            store: SessionStore
            scaffolder: Populates the GitOps directory, ``(url, version, target_dir)``
            settings: Node counts, image and timeouts
            logger: Logger for progress and warnings
            port_resolver: Returns the host ports for a new cluster
            poller_factory: Builds a poller from ``(timeout, interval)``
        """
        self.runtime = runtime
        self.charts = charts
        self.kube_factory = kube_factory
        self.store = store
        self.scaffolder = scaffolder
        self.settings = settings
        self.logger = logger
        self.port_resolver = port_resolver
        self.poller_factory = poller_factory

    def _warn(self, outcome: Outcome, step: str, error: Exception) -> None:
        self.logger.warning(f"{step} failed: {error}")
        outcome.warnings.append(StepWarning(step, error))

    def _poller(self, timeout: float) -> ReadinessPoller:
        return self.poller_factory(timeout, self.settings.poll_interval)

    def exists(self, name: str) -> bool:
        """Return True if the runtime has a cluster with this name.

        The session store is not consulted; a record without a cluster is stale.
        """
        return any(handle.name == name for handle in self.runtime.list_clusters())

    def create(
        self, name: str, options: CreateOptions, cancel: threading.Event | None = None
    ) -> Outcome:
        """Create a cluster and bootstrap its GitOps stack.

        Args:
            name: Cluster name
            options: Bootstrap repository to scaffold from
            cancel: Aborts readiness polling when set

        Returns:
            Outcome whose value is the persisted ClusterSession

        Raises:
            ConfigurationError: If the name is not a valid cluster name
            ClusterExistsError: If the runtime already has this cluster
            CreatePhaseError: If a phase fails, wrapping the cause
        """
        validate_cluster_name(name)
        if self.exists(name):
            raise ClusterExistsError(name)

        outcome = Outcome()
        gitops_dir = self.store.gitops_dir(name)
        ctx = kube_context(name)

        self.logger.info(f"Creating cluster '{name}'")

        with self._phase(Phase.PORTS):
            ports = self.port_resolver()
        self.logger.info(f"Host ports: {ports.as_list()}")

        with self._phase(Phase.SCAFFOLD):
            try:
                self.store.remove(name)
            except (LabError, OSError) as e:
                self._warn(outcome, "remove stale session", e)
            self.scaffolder(options.bootstrap_url, options.bootstrap_version, gitops_dir)

        self.logger.info(f"Phase: {Phase.MATERIALIZE.value}")
        try:
            self.runtime.create(build_cluster_spec(name, self.settings, ports, gitops_dir))
        except Exception as e:
            self.logger.error(f"Cluster materialization failed, rolling back: {e}")
            try:
                self.runtime.delete(name)
            except Exception as rollback_error:
                self._warn(outcome, "rollback cluster", rollback_error)
            raise CreatePhaseError(Phase.MATERIALIZE, e, outcome.warnings) from e

        # Later phases leave the cluster in place for inspection
        with self._phase(Phase.KUBECONFIG):
            self.runtime.write_kubeconfig(name)
            kube = self.kube_factory(name)

        with self._phase(Phase.NETWORK):
            api_ip = self.runtime.api_server_ip(name)
            cilium_chart = self.charts.locate_chart(cilium.REPO_URL, cilium.CHART_NAME)
            cilium_values = cilium.values(api_ip)
            self.charts.deploy(
                cilium_chart,
                cilium_values,
                cilium.NAMESPACE,
                cilium.RELEASE_NAME,
                timeout=self.settings.helm_timeout,
                kube_context=ctx,
            )
            self._poller(self.settings.node_timeout).wait(
                cilium.node_readiness(kube), cancel=cancel, description="nodes"
            )

        with self._phase(Phase.GITOPS_CONTROLLER):
            argocd_chart = self.charts.locate_chart(argocd.REPO_URL, argocd.CHART_NAME)
            argocd_values = argocd.values()
            self.charts.deploy(
                argocd_chart,
                argocd_values,
                argocd.NAMESPACE,
                argocd.RELEASE_NAME,
                create_namespace=True,
                timeout=self.settings.helm_timeout,
                kube_context=ctx,
            )
            self._poller(self.settings.argocd_timeout).wait(
                argocd.deployment_readiness(kube), cancel=cancel, description="Argo CD deployments"
            )

        password = ""
        try:
            password = argocd.extract_admin_password(kube)
        except KubernetesError as e:
            self._warn(outcome, "read Argo CD admin password", e)

        with self._phase(Phase.REGISTER_APPS):
            argocd.create_applications(
                kube,
                [
                    argocd.AppParams(
                        name=cilium.RELEASE_NAME,
                        namespace=cilium.NAMESPACE,
                        repo_url=cilium.REPO_URL,
                        chart_name=cilium.CHART_NAME,
                        chart_version=cilium_chart.version,
                        values=cilium_values,
                    ),
                    argocd.AppParams(
                        name=argocd.RELEASE_NAME,
                        namespace=argocd.NAMESPACE,
                        repo_url=argocd.REPO_URL,
                        chart_name=argocd.CHART_NAME,
                        chart_version=argocd_chart.version,
                        values=argocd_values,
                    ),
                ],
            )

        with self._phase(Phase.ROOT_APP):
            gitops.apply_root_app(kube, gitops_dir)

        session = ClusterSession(
            cluster_name=name,
            state=SessionState.RUNNING,
            created_at=datetime.now(timezone.utc),
            bootstrap_url=options.bootstrap_url,
            bootstrap_version=options.bootstrap_version,
            gitops_path=str(gitops_dir),
            services=ServiceInfo(
                argocd=ArgoCDInfo(
                    url=f"http://localhost:{ports.argocd_ui}",
                    password=password,
                    chart_version=argocd_chart.version,
                ),
                hubble=HubbleInfo(url=f"http://localhost:{ports.hubble_ui}"),
                cilium_chart_version=cilium_chart.version,
            ),
            runtime=RuntimeConfig(
                image=self.settings.k3s_image,
                servers=self.settings.servers,
                agents=self.settings.agents,
            ),
            host_ports=ports,
        )
        try:
            self.store.save(session)
        except LabError as e:
            self._warn(outcome, "save session", e)

        self.logger.info(f"Cluster '{name}' is ready")
        outcome.value = session
        return outcome

    def delete(self, name: str) -> Outcome:
        """Delete a cluster, its kubeconfig entries and its session directory.

        Raises:
            ClusterNotFoundError: If the runtime has no such cluster
        """
        outcome = Outcome()
        self.runtime.get(name)
        self.runtime.delete(name)

        try:
            self.runtime.remove_kubeconfig(name)
        except (LabError, OSError) as e:
            self._warn(outcome, "remove kubeconfig entries", e)
        try:
            self.store.remove(name)
        except (LabError, OSError) as e:
            self._warn(outcome, "remove session", e)

        self.logger.info(f"Cluster '{name}' deleted")
        return outcome

    def stop(self, name: str) -> Outcome:
        """Stop a cluster's nodes and record it as stopped.

        Raises:
            ClusterNotFoundError: If the runtime has no such cluster
        """
        self.runtime.get(name)
        self.runtime.stop(name)
        return self._record_state(name, SessionState.STOPPED)

    def start(self, name: str) -> Outcome:
        """Start a stopped cluster and record it as running.

        Raises:
            ClusterNotFoundError: If the runtime has no such cluster
        """
        self.runtime.get(name)
        self.runtime.start(name)
        return self._record_state(name, SessionState.RUNNING)

    def _record_state(self, name: str, state: SessionState) -> Outcome:
        outcome = Outcome()
        try:
            session = self.store.load(name)
            session.state = state
            self.store.save(session)
            outcome.value = session
        except LabError as e:
            self._warn(outcome, "update session state", e)
        return outcome

    def _phase(self, phase: Phase) -> "_PhaseGuard":
        self.logger.info(f"Phase: {phase.value}")
        return _PhaseGuard(phase)


class _PhaseGuard:
    """Wraps any exception raised inside a phase in CreatePhaseError."""

    def __init__(self, phase: Phase):
        self.phase = phase

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or not isinstance(exc, Exception) or isinstance(exc, CreatePhaseError):
            return False
        raise CreatePhaseError(self.phase, exc) from exc
