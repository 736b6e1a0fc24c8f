"""Unit tests for the cluster orchestrator."""

import logging
from unittest.mock import Mock

import pytest
import yaml

from lab_manager.config import Settings
from lab_manager.exceptions import (
    ClusterExistsError,
    ClusterNotFoundError,
    CommandError,
    ConfigurationError,
    CreatePhaseError,
    KubernetesError,
    ReadinessTimeoutError,
    SessionError,
)
from lab_manager.helm import ChartMetadata
from lab_manager.models.session import HostPorts, SessionState
from lab_manager.orchestrator import (
    ClusterOrchestrator,
    CreateOptions,
    Phase,
    build_cluster_spec,
)
from lab_manager.runtime import ClusterHandle

PORTS = HostPorts(api_server=16443, http=18080, https=18443, argocd_ui=31080, hubble_ui=31081)
OPTIONS = CreateOptions(bootstrap_url="https://github.com/example/bootstrap.git")


def fake_scaffold(url, version, target_dir):
    bootstrap = target_dir / "bootstrap"
    bootstrap.mkdir(parents=True)
    for name in ("root-app", "root-catalog"):
        manifest = {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "Application",
            "metadata": {"name": name, "namespace": "argocd"},
        }
        (bootstrap / f"{name}.yaml").write_text(yaml.safe_dump(manifest))


def locate_chart(repo_url, name):
    versions = {"cilium": "1.16.5", "argo-cd": "7.7.0"}
    return ChartMetadata(name=name, version=versions[name], repo_url=repo_url)


@pytest.fixture
def runtime():
    runtime = Mock()
    runtime.list_clusters.return_value = []
    runtime.api_server_ip.return_value = "172.18.0.3"
    return runtime


@pytest.fixture
def kube():
    kube = Mock()
    kube.get_secret_value.return_value = "s3cret"
    return kube


@pytest.fixture
def charts():
    charts = Mock()
    charts.locate_chart.side_effect = locate_chart
    return charts


@pytest.fixture
def poller():
    poller = Mock()
    poller.wait.return_value = 1
    return poller


@pytest.fixture
def orchestrator(runtime, charts, kube, store, poller):
    return make_orchestrator(runtime, charts, kube, store, poller)


class InMemoryRuntime:
    """Runtime that tracks clusters in a dict, optionally failing after create."""

    def __init__(self, create_error=None):
        self.clusters = {}
        self.create_error = create_error

    def create(self, spec):
        self.clusters[spec.name] = ClusterHandle(name=spec.name, servers_count=spec.servers)
        if self.create_error is not None:
            raise self.create_error

    def delete(self, name):
        self.clusters.pop(name, None)

    def list_clusters(self):
        return list(self.clusters.values())

    def get(self, name):
        if name not in self.clusters:
            raise ClusterNotFoundError(name)
        return self.clusters[name]

    def start(self, name):
        pass

    def stop(self, name):
        pass

    def write_kubeconfig(self, name):
        pass

    def remove_kubeconfig(self, name):
        pass

    def api_server_ip(self, name):
        return "172.18.0.3"


def make_orchestrator(runtime, charts, kube, store, poller):
    return ClusterOrchestrator(
        runtime=runtime,
        charts=charts,
        kube_factory=Mock(return_value=kube),
        store=store,
        scaffolder=Mock(side_effect=fake_scaffold),
        settings=Settings(),
        logger=logging.getLogger("test.orchestrator"),
        port_resolver=Mock(return_value=PORTS),
        poller_factory=Mock(return_value=poller),
    )


def test_build_cluster_spec(tmp_path):
    """Test the k3d spec derived from settings and ports."""
    spec = build_cluster_spec("dev", Settings(), PORTS, tmp_path / "gitops")

    assert spec.servers == 1
    assert spec.agents == 2
    assert spec.api_port == 16443
    assert [(p.host_port, p.container_port) for p in spec.ports] == [
        (18080, 30082),
        (18443, 30083),
        (31080, 30080),
        (31081, 30081),
    ]
    assert spec.volumes[0].container_path == "/local-gitops"
    assert spec.volumes[0].host_path == str(tmp_path / "gitops")
    assert [a.arg for a in spec.k3s_args] == [
        "--flannel-backend=none",
        "--disable-network-policy",
        "--disable=traefik",
        "--disable=servicelb",
    ]


def test_create_success(orchestrator, runtime, charts, kube, store):
    """Test that a successful create persists a running session."""
    outcome = orchestrator.create("demo", OPTIONS)

    assert outcome.warnings == []
    session = outcome.value
    assert session.state == SessionState.RUNNING
    assert session.host_ports == PORTS
    assert session.services.argocd.url == "http://localhost:31080"
    assert session.services.argocd.password == "s3cret"
    assert session.services.argocd.chart_version == "7.7.0"
    assert session.services.hubble.url == "http://localhost:31081"
    assert session.services.cilium_chart_version == "1.16.5"
    assert session.gitops_path == str(store.gitops_dir("demo"))
    assert store.load("demo") == session

    runtime.write_kubeconfig.assert_called_once_with("demo")
    deploys = [c.args[3] for c in charts.deploy.call_args_list]
    assert deploys == ["cilium", "argocd"]
    assert all(c.kwargs["kube_context"] == "k3d-demo" for c in charts.deploy.call_args_list)
    assert charts.deploy.call_args_list[1].kwargs["create_namespace"] is True

    created = [c.args[0]["metadata"]["name"] for c in kube.create_custom_object.call_args_list]
    assert created == ["cilium", "argocd", "root-app", "root-catalog"]


def test_create_uses_configured_timeouts(orchestrator):
    orchestrator.create("demo", OPTIONS)

    timeouts = [c.args[0] for c in orchestrator.poller_factory.call_args_list]
    assert timeouts == [120.0, 180.0]


def test_create_existing_cluster_runs_no_phase(orchestrator, runtime):
    """Test that creating an existing cluster fails before any phase."""
    runtime.list_clusters.return_value = [ClusterHandle(name="demo")]

    with pytest.raises(ClusterExistsError):
        orchestrator.create("demo", OPTIONS)

    orchestrator.port_resolver.assert_not_called()
    orchestrator.scaffolder.assert_not_called()
    runtime.create.assert_not_called()


def test_create_invalid_name(orchestrator, runtime):
    with pytest.raises(ConfigurationError):
        orchestrator.create("Not_Valid", OPTIONS)

    runtime.list_clusters.assert_not_called()


def test_create_port_failure(orchestrator):
    orchestrator.port_resolver.side_effect = CommandError("no ports")

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.phase is Phase.PORTS


def test_create_removes_stale_session(orchestrator, store, make_session):
    """Test that a leftover session directory is replaced."""
    store.save(make_session("demo", state=SessionState.STOPPED))
    (store.gitops_dir("demo") / "stale").mkdir(parents=True)

    orchestrator.create("demo", OPTIONS)

    assert not (store.gitops_dir("demo") / "stale").exists()
    assert store.load("demo").state == SessionState.RUNNING


def test_materialize_failure_rolls_back(orchestrator, runtime):
    """Test that a failed materialization deletes the partial cluster."""
    cause = CommandError("k3d cluster create failed")
    runtime.create.side_effect = cause

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.phase is Phase.MATERIALIZE
    assert exc_info.value.cause is cause
    assert exc_info.value.warnings == []
    runtime.delete.assert_called_once_with("demo")


def test_materialize_failure_leaves_no_cluster(charts, kube, store, poller):
    """Test that a cluster half-created by the runtime is gone after the failure."""
    runtime = InMemoryRuntime(create_error=CommandError("k3d cluster create failed"))
    orchestrator = make_orchestrator(runtime, charts, kube, store, poller)

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.phase is Phase.MATERIALIZE
    assert orchestrator.exists("demo") is False


def test_create_twice(charts, kube, store, poller):
    """Test that a second create of the same name fails before resolving ports."""
    runtime = InMemoryRuntime()
    orchestrator = make_orchestrator(runtime, charts, kube, store, poller)

    orchestrator.create("demo", OPTIONS)
    assert orchestrator.exists("demo") is True

    with pytest.raises(ClusterExistsError):
        orchestrator.create("demo", OPTIONS)

    orchestrator.port_resolver.assert_called_once()
    assert list(runtime.clusters) == ["demo"]


def test_rollback_failure_keeps_original_cause(orchestrator, runtime):
    """Test that a failing rollback is a warning, not the reported error."""
    cause = CommandError("k3d cluster create failed")
    runtime.create.side_effect = cause
    runtime.delete.side_effect = CommandError("k3d cluster delete failed")

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.cause is cause
    assert [w.step for w in exc_info.value.warnings] == ["rollback cluster"]


def test_later_failure_keeps_cluster(orchestrator, runtime, poller):
    """Test that failures after materialization leave the cluster in place."""
    poller.wait.side_effect = ReadinessTimeoutError(1, 3, "nodes")

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.phase is Phase.NETWORK
    assert isinstance(exc_info.value.cause, ReadinessTimeoutError)
    runtime.delete.assert_not_called()


def test_kubeconfig_failure(orchestrator, runtime):
    runtime.write_kubeconfig.side_effect = CommandError("merge failed")

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.phase is Phase.KUBECONFIG


def test_gitops_controller_failure(orchestrator, charts):
    charts.deploy.side_effect = [None, CommandError("helm install argocd failed")]

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.phase is Phase.GITOPS_CONTROLLER


def test_root_app_failure(orchestrator, kube):
    kube.create_custom_object.side_effect = [None, None, KubernetesError("forbidden")]

    with pytest.raises(CreatePhaseError) as exc_info:
        orchestrator.create("demo", OPTIONS)

    assert exc_info.value.phase is Phase.ROOT_APP


def test_missing_password_is_warning(orchestrator, kube):
    """Test that an unreadable admin password does not fail creation."""
    kube.get_secret_value.side_effect = KubernetesError("secret not found")

    outcome = orchestrator.create("demo", OPTIONS)

    assert outcome.value.services.argocd.password == ""
    assert [w.step for w in outcome.warnings] == ["read Argo CD admin password"]


def test_session_save_failure_is_warning(orchestrator, tmp_path):
    store = Mock()
    store.gitops_dir.return_value = tmp_path / "gitops"
    store.save.side_effect = SessionError("disk full")
    orchestrator.store = store

    outcome = orchestrator.create("demo", OPTIONS)

    assert outcome.value.state == SessionState.RUNNING
    assert [w.step for w in outcome.warnings] == ["save session"]


def test_exists_uses_runtime_only(orchestrator, runtime, store, make_session):
    """Test that a session record alone does not count as an existing cluster."""
    store.save(make_session("demo"))

    assert orchestrator.exists("demo") is False

    runtime.list_clusters.return_value = [ClusterHandle(name="demo")]
    assert orchestrator.exists("demo") is True


def test_delete(orchestrator, runtime, store, make_session):
    store.save(make_session("demo"))

    outcome = orchestrator.delete("demo")

    assert outcome.warnings == []
    runtime.delete.assert_called_once_with("demo")
    runtime.remove_kubeconfig.assert_called_once_with("demo")
    assert not store.cluster_dir("demo").exists()


def test_delete_missing_cluster(orchestrator, runtime):
    """Test that deleting an unknown cluster fails without side effects."""
    runtime.get.side_effect = ClusterNotFoundError("demo")

    with pytest.raises(ClusterNotFoundError):
        orchestrator.delete("demo")

    runtime.delete.assert_not_called()


def test_delete_cleanup_failures_are_warnings(orchestrator, runtime):
    runtime.remove_kubeconfig.side_effect = OSError("read-only")

    outcome = orchestrator.delete("demo")

    assert [w.step for w in outcome.warnings] == ["remove kubeconfig entries"]


def test_stop_and_start_record_state(orchestrator, runtime, store, make_session):
    store.save(make_session("demo"))

    stopped = orchestrator.stop("demo")
    assert stopped.value.state == SessionState.STOPPED
    assert store.load("demo").state == SessionState.STOPPED
    runtime.stop.assert_called_once_with("demo")

    started = orchestrator.start("demo")
    assert started.value.state == SessionState.RUNNING
    assert store.load("demo").state == SessionState.RUNNING
    runtime.start.assert_called_once_with("demo")


def test_stop_without_session_is_warning(orchestrator, runtime):
    """Test that a missing record does not fail the runtime operation."""
    outcome = orchestrator.stop("demo")

    runtime.stop.assert_called_once_with("demo")
    assert outcome.value is None
    assert [w.step for w in outcome.warnings] == ["update session state"]


def test_start_runtime_failure_is_fatal(orchestrator, runtime):
    runtime.start.side_effect = CommandError("k3d cluster start failed")

    with pytest.raises(CommandError):
        orchestrator.start("demo")
