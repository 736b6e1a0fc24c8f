"""Individual health checks.

A check returns zero or more CheckResults and never raises: anything that
goes wrong while checking becomes a failing result with a cause and a fix.
"""

import sys

from lab_manager import argocd, catalog, cilium
from lab_manager.exceptions import CatalogError, CommandError, KubernetesError
from lab_manager.kube import KubeClient, deployment_available, node_ready
from lab_manager.logging_config import get_logger
from lab_manager.models.health import CheckResult
from lab_manager.preflight import check_docker

logger = get_logger(__name__)


class Check:
    """Base class for health checks."""

    name = ""

    def run(self) -> list[CheckResult]:
        raise NotImplementedError

    def ok(self, message: str) -> CheckResult:
        return CheckResult(name=self.name, ok=True, message=message)

    def fail(self, cause: str, fix: str = "", message: str = "") -> CheckResult:
        return CheckResult(name=self.name, ok=False, message=message, cause=cause, fix=fix)


def run_all(checks: list[Check]) -> list[CheckResult]:
    """Run checks in order and concatenate their results.

    A check that raises anyway is reported as a single failing result.
    """
    results: list[CheckResult] = []
    for check in checks:
        try:
            results.extend(check.run() or [])
        except Exception as e:
            logger.debug(f"Check '{check.name}' raised", exc_info=True)
            results.append(check.fail(f"check error: {e}"))
    return results


def docker_fix_hint(platform: str = sys.platform) -> str:
    if platform == "darwin":
        return "open -a Docker"
    return "systemctl start docker"


class DockerCheck(Check):
    """The Docker daemon is reachable."""

    name = "Docker daemon"

    def run(self) -> list[CheckResult]:
        try:
            version = check_docker()
        except CommandError as e:
            return [self.fail(e.format_message(), docker_fix_hint())]
        return [self.ok(f"running (v{version})" if version else "running")]


class NodesCheck(Check):
    """Every node reports Ready."""

    name = "k3d cluster"
    fix = "labctl cluster start"

    def __init__(self, kube: KubeClient):
        self.kube = kube

    def run(self) -> list[CheckResult]:
        try:
            nodes = self.kube.list_nodes()
        except KubernetesError as e:
            return [self.fail(f"listing nodes: {e.message}", self.fix)]

        total = len(nodes)
        if total == 0:
            return [self.fail("no nodes found", self.fix)]

        ready = sum(1 for node in nodes if node_ready(node))
        if ready < total:
            return [self.fail(f"{ready}/{total} nodes ready", self.fix)]
        return [self.ok(f"{ready}/{total} nodes ready")]


class CiliumCheck(Check):
    """The Cilium agent DaemonSet is fully ready."""

    name = "Cilium"
    fix = "kubectl -n kube-system logs -l app.kubernetes.io/name=cilium-agent"

    def __init__(self, kube: KubeClient):
        self.kube = kube

    def run(self) -> list[CheckResult]:
        try:
            daemonset = self.kube.get_daemonset(cilium.NAMESPACE, "cilium")
        except KubernetesError as e:
            return [self.fail(f"getting cilium DaemonSet: {e.message}", self.fix)]

        status = daemonset.status
        if status is None:
            return [self.fail("cilium DaemonSet has no status yet", self.fix)]
        desired = status.desired_number_scheduled or 0
        ready = status.number_ready or 0
        if ready < desired:
            return [self.fail(f"DaemonSet {ready}/{desired} ready", self.fix)]
        return [self.ok(f"DaemonSet {ready}/{desired} ready")]


class HubbleCheck(Check):
    """The hubble-relay Deployment is Available."""

    name = "Hubble"
    fix = "labctl argocd sync"

    def __init__(self, kube: KubeClient):
        self.kube = kube

    def run(self) -> list[CheckResult]:
        try:
            deployment = self.kube.get_deployment(cilium.NAMESPACE, "hubble-relay")
        except KubernetesError as e:
            return [self.fail(f"getting hubble-relay Deployment: {e.message}", self.fix)]

        if deployment_available(deployment):
            return [self.ok("relay deployment ready")]

        replicas = deployment.spec.replicas if deployment.spec else None
        desired = replicas if replicas is not None else 1
        ready = (deployment.status.ready_replicas if deployment.status else None) or 0
        return [self.fail(f"hubble-relay not Available (ready {ready}/{desired})", self.fix)]


class ArgoCDCheck(Check):
    """The core Argo CD Deployments are Available."""

    name = "ArgoCD"
    fix = "kubectl -n argocd get deployments"

    def __init__(self, kube: KubeClient):
        self.kube = kube

    def run(self) -> list[CheckResult]:
        total = len(argocd.CORE_DEPLOYMENTS)
        available = 0
        first_failure = ""

        for name in argocd.CORE_DEPLOYMENTS:
            try:
                deployment = self.kube.get_deployment(argocd.NAMESPACE, name)
            except KubernetesError as e:
                first_failure = first_failure or f"getting {name}: {e.message}"
                continue
            if deployment_available(deployment):
                available += 1
            else:
                first_failure = first_failure or f"{name} not Available"

        if available < total:
            return [self.fail(first_failure, self.fix)]
        return [self.ok(f"{available}/{total} deployments ready")]


def extract_degraded_cause(status: dict) -> str:
    """Describe the first resource in an Application status that is not healthy.

    Resources without a health status are skipped.

    Returns:
        ``"<kind> <name> in namespace <ns>[: <message>]"``, or "" if none
    """
    resources = status.get("resources")
    if not isinstance(resources, list):
        return ""

    for resource in resources:
        if not isinstance(resource, dict):
            continue
        health = resource.get("health")
        if not isinstance(health, dict):
            continue
        health_status = health.get("status") or ""
        if health_status in ("", "Healthy"):
            continue

        cause = (
            f"{resource.get('kind', '')} {resource.get('name', '')} "
            f"in namespace {resource.get('namespace', '')}"
        )
        if health.get("message"):
            cause += f": {health['message']}"
        return cause
    return ""


class AppsCheck(Check):
    """Each enabled catalog app is Healthy and Synced in Argo CD."""

    name = "Apps"

    def __init__(self, kube: KubeClient, gitops_path: str):
        self.kube = kube
        self.gitops_path = gitops_path

    def run(self) -> list[CheckResult]:
        try:
            entries = catalog.list_entries(self.gitops_path)
        except CatalogError as e:
            return [self.fail(f"listing catalog: {e.message}")]
        return [self._check_app(entry) for entry in entries if entry.enabled]

    def _check_app(self, entry: catalog.CatalogEntry) -> CheckResult:
        name = f"App: {entry.name}"
        fix = f"labctl catalog disable {entry.name}"

        try:
            app = self.kube.get_custom_object(argocd.APPLICATION_GVR, argocd.NAMESPACE, entry.name)
        except KubernetesError as e:
            return CheckResult(
                name=name, ok=False, cause=f"getting Application: {e.message}", fix=fix
            )

        status = app.get("status")
        if not isinstance(status, dict):
            return CheckResult(
                name=name,
                ok=False,
                cause="no status found on Application",
                fix="labctl argocd sync",
            )

        health = (status.get("health") or {}).get("status", "")
        sync = (status.get("sync") or {}).get("status", "")
        if health == "Healthy" and sync == "Synced":
            return CheckResult(name=name, ok=True, message="Healthy, Synced")

        return CheckResult(
            name=name,
            ok=False,
            message=f"{health} -- {sync}",
            cause=extract_degraded_cause(status),
            fix=fix,
        )
