"""Argo CD: chart values, readiness, credentials, Applications and sync."""

import json

import requests
import yaml
from pydantic import BaseModel, Field

from lab_manager.exceptions import KubernetesError, ResourceExistsError
from lab_manager.kube import GroupVersionResource, KubeClient, deployment_available
from lab_manager.logging_config import get_logger

logger = get_logger(__name__)

NAMESPACE = "argocd"
REPO_URL = "https://argoproj.github.io/argo-helm"
CHART_NAME = "argo-cd"
RELEASE_NAME = "argocd"
UI_NODE_PORT = 30080

ADMIN_SECRET = "argocd-initial-admin-secret"
APPLICATION_GVR = GroupVersionResource("argoproj.io", "v1alpha1", "applications")
LOCAL_GITOPS_PATH = "/local-gitops"

# Deployments that must be Available before the install counts as done
CORE_DEPLOYMENTS = [
    "argocd-server",
    "argocd-repo-server",
    "argocd-applicationset-controller",
]

APPSET_WEBHOOK_SERVICE = "argocd-applicationset-controller:http-webhook"

# Minimal GitHub push event whose URLs match the local repository
WEBHOOK_PAYLOAD = {
    "repository": {
        "clone_url": LOCAL_GITOPS_PATH,
        "html_url": LOCAL_GITOPS_PATH,
        "ssh_url": LOCAL_GITOPS_PATH,
    }
}
WEBHOOK_HEADERS = {"Content-Type": "application/json", "X-GitHub-Event": "push"}

INGRESS_HEALTH_LUA = """hs = {}
hs.status = "Healthy"
hs.message = "Ingress is ready"
if obj.status ~= nil and obj.status.loadBalancer ~= nil then
  if obj.status.loadBalancer.ingress ~= nil then
    hs.message = "Ingress has address assigned"
  end
end
return hs
"""


def _resources(req_cpu: str, req_mem: str, lim_cpu: str, lim_mem: str) -> dict:
    return {
        "requests": {"cpu": req_cpu, "memory": req_mem},
        "limits": {"cpu": lim_cpu, "memory": lim_mem},
    }


def values() -> dict:
    """Return Helm values for Argo CD.

    The repo server mounts the node's /local-gitops hostPath, which k3d binds
    to the scaffolded GitOps directory on the workstation.
    """
    return {
        "server": {
            "extraArgs": ["--insecure", "--repo-server-plaintext"],
            "resources": _resources("50m", "128Mi", "500m", "512Mi"),
            "ingress": {"enabled": False},
            "service": {"type": "NodePort", "nodePortHttp": UI_NODE_PORT},
        },
        "repoServer": {
            "resources": _resources("50m", "128Mi", "500m", "512Mi"),
            "volumes": [
                {
                    "name": "gitops",
                    "hostPath": {"path": LOCAL_GITOPS_PATH, "type": "Directory"},
                }
            ],
            "volumeMounts": [{"name": "gitops", "mountPath": LOCAL_GITOPS_PATH, "readOnly": True}],
        },
        "controller": {
            "extraArgs": ["--repo-server-plaintext"],
            "resources": _resources("100m", "256Mi", "1000m", "1Gi"),
            "metrics": {"enabled": True, "serviceMonitor": {"enabled": False}},
        },
        "redis": {"resources": _resources("50m", "64Mi", "200m", "256Mi")},
        "dex": {"enabled": False},
        "notifications": {
            "enabled": True,
            "resources": _resources("25m", "64Mi", "100m", "128Mi"),
        },
        "applicationSet": {
            "enabled": True,
            "extraArgs": ["--repo-server-plaintext"],
            "resources": _resources("25m", "64Mi", "200m", "256Mi"),
        },
        "configs": {
            "repositories": {"local-gitops": {"type": "git", "url": LOCAL_GITOPS_PATH}},
            "cm": {
                "admin.enabled": "true",
                "timeout.reconciliation": "180s",
                "statusbadge.enabled": "true",
                "application.resourceTrackingMethod": "annotation",
                "resource.customizations.health.networking.k8s.io_Ingress": INGRESS_HEALTH_LUA,
            },
            "params": {
                "server.insecure": True,
                "reposerver.disable.tls": True,
                "controller.repo.server.plaintext": True,
            },
            "secret": {"createSecret": True},
            "rbac": {"policy.default": "role:readonly", "policy.csv": "g, admin, role:admin\n"},
        },
    }


def deployment_readiness(kube: KubeClient):
    """Return a probe reporting (available, total) for the core deployments.

    A deployment that cannot be fetched yet counts as not available.
    """

    def probe() -> tuple[int, int]:
        ready = 0
        for name in CORE_DEPLOYMENTS:
            try:
                deployment = kube.get_deployment(NAMESPACE, name)
            except KubernetesError as e:
                logger.debug(f"Deployment {name} not readable yet: {e.message}")
                continue
            if deployment_available(deployment):
                ready += 1
        return ready, len(CORE_DEPLOYMENTS)

    return probe


def extract_admin_password(kube: KubeClient) -> str:
    """Read the generated admin password.

    Raises:
        KubernetesError: If the secret or its password key is missing
    """
    return kube.get_secret_value(NAMESPACE, ADMIN_SECRET, "password")


class AppParams(BaseModel):
    """A Helm-based Argo CD Application to register."""

    name: str
    namespace: str  # destination namespace, e.g. kube-system
    repo_url: str
    chart_name: str
    chart_version: str
    values: dict = Field(default_factory=dict)


def build_application(app: AppParams) -> dict:
    """Render an Argo CD Application manifest for a Helm chart."""
    source = {
        "repoURL": app.repo_url,
        "chart": app.chart_name,
        "targetRevision": app.chart_version,
        "helm": {"releaseName": app.name},
    }
    if app.values:
        source["helm"]["values"] = yaml.safe_dump(app.values, default_flow_style=False)

    return {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {
            "name": app.name,
            "namespace": NAMESPACE,
            "finalizers": ["resources-finalizer.argocd.argoproj.io"],
        },
        "spec": {
            "project": "default",
            "source": source,
            "destination": {"server": "https://kubernetes.default.svc", "namespace": app.namespace},
            "syncPolicy": {
                "automated": {"selfHeal": False, "prune": False},
                "syncOptions": ["CreateNamespace=true", "ServerSideApply=true"],
            },
        },
    }


def create_applications(kube: KubeClient, apps: list[AppParams]) -> list[str]:
    """Register each app as an Argo CD Application.

    Applications that already exist are skipped.

    Returns:
        Names of the applications that were skipped

    Raises:
        KubernetesError: If creating an Application fails for another reason
    """
    skipped = []
    for app in apps:
        logger.info(f"Creating Argo CD application '{app.name}'")
        try:
            kube.create_custom_object(build_application(app), NAMESPACE)
        except ResourceExistsError:
            logger.warning(f"Argo CD application '{app.name}' already exists, skipping")
            skipped.append(app.name)
            continue
        logger.info(f"Argo CD application '{app.name}' created")
    return skipped


def sync(kube: KubeClient | None, argocd_url: str, timeout: float = 10) -> list[str]:
    """Trigger immediate reconciliation with synthetic push webhooks.

    The first webhook goes to the Argo CD server and invalidates the repo
    server cache. The second is proxied through the API server to the
    ApplicationSet controller, which is only reachable inside the cluster.
    Failures are reported, not raised, since Argo CD still reconciles on its
    normal poll interval.

    Returns:
        Human-readable descriptions of the webhooks that failed
    """
    failures = []

    url = f"{argocd_url.rstrip('/')}/api/webhook"
    logger.info(f"Sending webhook to {url}")
    try:
        response = requests.post(
            url, data=json.dumps(WEBHOOK_PAYLOAD), headers=WEBHOOK_HEADERS, timeout=timeout
        )
        if response.status_code != 200:
            failures.append(f"argocd server webhook returned {response.status_code}")
    except requests.RequestException as e:
        failures.append(f"argocd server webhook: {e}")

    if kube is None:
        failures.append("applicationset webhook: no cluster connection")
    else:
        logger.info("Sending webhook to the applicationset controller")
        try:
            kube.proxy_post(
                NAMESPACE, APPSET_WEBHOOK_SERVICE, "api/webhook", WEBHOOK_PAYLOAD, WEBHOOK_HEADERS
            )
        except KubernetesError as e:
            failures.append(f"applicationset webhook: {e.message}")

    for failure in failures:
        logger.warning(failure)
    return failures
