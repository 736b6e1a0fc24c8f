"""k3d cluster runtime driven through the k3d and docker CLIs."""

import json
import os
import tempfile
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from lab_manager.exceptions import ClusterNotFoundError, CommandError
from lab_manager.logging_config import get_logger
from lab_manager.shell import run_command

logger = get_logger(__name__)

K3D_CONFIG_API_VERSION = "k3d.io/v1alpha5"


class PortMapping(BaseModel):
    """A host port published to a container port on matching nodes."""

    host_port: int
    container_port: int
    node_filters: list[str] = Field(default_factory=lambda: ["server:*"])


class VolumeMount(BaseModel):
    """A host path mounted into matching nodes."""

    host_path: str
    container_path: str
    node_filters: list[str] = Field(default_factory=lambda: ["all"])


class K3sArg(BaseModel):
    """An extra k3s flag applied to matching nodes."""

    arg: str
    node_filters: list[str] = Field(default_factory=lambda: ["server:*"])


class ClusterSpec(BaseModel):
    """Everything the runtime needs to materialize a cluster."""

    name: str
    image: str
    servers: int
    agents: int
    api_port: int
    ports: list[PortMapping] = Field(default_factory=list)
    volumes: list[VolumeMount] = Field(default_factory=list)
    k3s_args: list[K3sArg] = Field(default_factory=list)

    def to_simple_config(self) -> dict:
        """Render as a k3d SimpleConfig document."""
        return {
            "apiVersion": K3D_CONFIG_API_VERSION,
            "kind": "Simple",
            "metadata": {"name": self.name},
            "servers": self.servers,
            "agents": self.agents,
            "image": self.image,
            "kubeAPI": {"hostPort": str(self.api_port)},
            "ports": [
                {"port": f"{p.host_port}:{p.container_port}", "nodeFilters": p.node_filters}
                for p in self.ports
            ],
            "volumes": [
                {"volume": f"{v.host_path}:{v.container_path}", "nodeFilters": v.node_filters}
                for v in self.volumes
            ],
            "options": {
                "k3s": {
                    "extraArgs": [
                        {"arg": a.arg, "nodeFilters": a.node_filters} for a in self.k3s_args
                    ]
                },
                "kubeconfig": {"updateDefaultKubeconfig": False, "switchCurrentContext": False},
            },
        }


class ClusterHandle(BaseModel):
    """A cluster as reported by ``k3d cluster list``."""

    name: str
    servers_count: int = 0
    servers_running: int = 0
    agents_count: int = 0
    agents_running: int = 0

    @property
    def running(self) -> bool:
        return self.servers_count > 0 and self.servers_running == self.servers_count

    @classmethod
    def from_k3d(cls, data: dict) -> "ClusterHandle":
        return cls(
            name=data["name"],
            servers_count=data.get("serversCount", 0),
            servers_running=data.get("serversRunning", 0),
            agents_count=data.get("agentsCount", 0),
            agents_running=data.get("agentsRunning", 0),
        )


def _k3d_env() -> dict[str, str]:
    env = os.environ.copy()
    # k3d's DNS fix breaks Docker Desktop, see k3d-io/k3d#1515
    env["K3D_FIX_DNS"] = "0"
    return env


class K3dRuntime:
    """Creates, starts, stops and deletes k3d clusters."""

    def __init__(self, kubeconfig: str | Path | None = None, timeout: float = 600):
        """Initialize the runtime.

        Args:
            kubeconfig: Kubeconfig file to update (defaults to $KUBECONFIG or ~/.kube/config)
            timeout: Seconds allowed for each k3d command
        """
        if kubeconfig is None:
            kubeconfig = os.environ.get("KUBECONFIG", "~/.kube/config").split(os.pathsep)[0]
        self.kubeconfig = Path(kubeconfig).expanduser()
        self.timeout = timeout

    def create(self, spec: ClusterSpec) -> ClusterHandle:
        """Create a cluster from a spec and return its handle."""
        logger.info(f"Creating k3d cluster '{spec.name}'")
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", prefix="k3d-") as config_file:
            yaml.safe_dump(spec.to_simple_config(), config_file, default_flow_style=False)
            config_file.flush()
            run_command(
                ["k3d", "cluster", "create", "--config", config_file.name],
                timeout=self.timeout,
                env=_k3d_env(),
            )
        return self.get(spec.name)

    def delete(self, name: str) -> None:
        logger.info(f"Deleting k3d cluster '{name}'")
        run_command(["k3d", "cluster", "delete", name], timeout=self.timeout)

    def start(self, name: str) -> None:
        logger.info(f"Starting k3d cluster '{name}'")
        run_command(
            ["k3d", "cluster", "start", name, "--wait"], timeout=self.timeout, env=_k3d_env()
        )

    def stop(self, name: str) -> None:
        logger.info(f"Stopping k3d cluster '{name}'")
        run_command(["k3d", "cluster", "stop", name], timeout=self.timeout)

    def list_clusters(self) -> list[ClusterHandle]:
        """Return the live cluster inventory."""
        result = run_command(["k3d", "cluster", "list", "-o", "json"], timeout=60)
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError:
            raise CommandError(
                "Failed to parse k3d cluster list output",
                "k3d returned invalid JSON. Check that your k3d version supports '-o json'.",
            )
        return [ClusterHandle.from_k3d(item) for item in data or []]

    def get(self, name: str) -> ClusterHandle:
        """Return the handle for a cluster.

        Raises:
            ClusterNotFoundError: If k3d has no cluster with that name
        """
        for handle in self.list_clusters():
            if handle.name == name:
                return handle
        raise ClusterNotFoundError(name, "List clusters with: k3d cluster list")

    def write_kubeconfig(self, name: str) -> None:
        """Merge the cluster's credentials into the kubeconfig and switch to it."""
        logger.info(f"Writing kubeconfig for '{name}' to {self.kubeconfig}")
        self.kubeconfig.parent.mkdir(parents=True, exist_ok=True)
        run_command(
            [
                "k3d",
                "kubeconfig",
                "merge",
                name,
                "--output",
                str(self.kubeconfig),
                "--kubeconfig-switch-context",
            ],
            timeout=60,
        )

    def remove_kubeconfig(self, name: str) -> None:
        """Remove the cluster, context and user entries for a cluster."""
        if not self.kubeconfig.is_file():
            return

        context = f"k3d-{name}"
        with open(self.kubeconfig) as f:
            data = yaml.safe_load(f) or {}

        data["clusters"] = [c for c in data.get("clusters") or [] if c.get("name") != context]
        data["contexts"] = [c for c in data.get("contexts") or [] if c.get("name") != context]
        data["users"] = [u for u in data.get("users") or [] if u.get("name") != f"admin@{context}"]
        if data.get("current-context") == context:
            data["current-context"] = ""

        with open(self.kubeconfig, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False)
        logger.debug(f"Removed kubeconfig entries for {context}")

    def api_server_ip(self, name: str) -> str:
        """Return the Docker network IP of the first server node.

        Cilium agents need this address once kube-proxy is replaced, since
        the loopback address k3d writes into the kubeconfig is unreachable
        from inside the cluster network.
        """
        container = f"k3d-{name}-server-0"
        result = run_command(["docker", "inspect", container], timeout=60)
        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError:
            raise CommandError(f"Failed to parse docker inspect output for {container}")

        for item in info:
            networks = (item.get("NetworkSettings") or {}).get("Networks") or {}
            for network in networks.values():
                if network.get("IPAddress"):
                    return network["IPAddress"]
        raise CommandError(f"No IP address found for container {container}")
