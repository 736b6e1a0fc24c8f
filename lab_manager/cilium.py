"""Cilium networking layer: chart coordinates, values and node readiness."""

from lab_manager.kube import KubeClient, node_ready

NAMESPACE = "kube-system"
REPO_URL = "https://helm.cilium.io/"
CHART_NAME = "cilium"
RELEASE_NAME = "cilium"

# NodePorts exposed by the chart, mapped to host ports by k3d
INGRESS_HTTP_NODE_PORT = 30082
INGRESS_HTTPS_NODE_PORT = 30083
HUBBLE_UI_NODE_PORT = 30081


def _resources(req_cpu: str, req_mem: str, lim_cpu: str, lim_mem: str) -> dict:
    return {
        "requests": {"cpu": req_cpu, "memory": req_mem},
        "limits": {"cpu": lim_cpu, "memory": lim_mem},
    }


def values(api_server_ip: str) -> dict:
    """Return Helm values for Cilium.

    Args:
        api_server_ip: Docker network IP of the first server node. Agents
            must reach the API server on it once kube-proxy is replaced.
    """
    return {
        "k8sServiceHost": api_server_ip,
        "k8sServicePort": 6443,
        "kubeProxyReplacement": True,
        # Cilium ingress replaces the disabled Traefik
        "ingressController": {
            "enabled": True,
            "default": True,
            "loadbalancerMode": "shared",
            "service": {
                "type": "NodePort",
                "insecureNodePort": INGRESS_HTTP_NODE_PORT,
                "secureNodePort": INGRESS_HTTPS_NODE_PORT,
            },
        },
        "hubble": {
            "enabled": True,
            "relay": {"enabled": True, "resources": _resources("50m", "64Mi", "200m", "256Mi")},
            "ui": {
                "enabled": True,
                "ingress": {"enabled": False},
                "service": {"type": "NodePort", "nodePort": HUBBLE_UI_NODE_PORT},
                "resources": _resources("50m", "64Mi", "200m", "256Mi"),
            },
        },
        "operator": {"replicas": 1, "resources": _resources("50m", "128Mi", "500m", "256Mi")},
        "resources": _resources("100m", "256Mi", "1000m", "1Gi"),
        "ipam": {"mode": "kubernetes"},
        "bpf": {"masquerade": True, "hostLegacyRouting": False},
        # Tunnel mode works well inside Docker
        "routingMode": "tunnel",
        "tunnelProtocol": "vxlan",
        "policyEnforcementMode": "default",
        "debug": {"enabled": False},
    }


def node_readiness(kube: KubeClient):
    """Return a probe reporting (ready nodes, total nodes)."""

    def probe() -> tuple[int, int]:
        nodes = kube.list_nodes()
        return sum(1 for node in nodes if node_ready(node)), len(nodes)

    return probe
