"""Data models for the persisted cluster session record."""

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Same rule k3d applies to cluster names
CLUSTER_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class SessionState(str, Enum):
    """Lifecycle state recorded for a cluster."""

    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"


class HostPorts(BaseModel):
    """Host-side port assignments for a cluster.

    Container-internal ports stay fixed; only the host side varies.
    """

    model_config = ConfigDict(frozen=True)

    api_server: int = 6443  # -> container 6443
    http: int = 8080  # -> container 30082
    https: int = 8443  # -> container 30083
    argocd_ui: int = 30080  # -> container 30080
    hubble_ui: int = 30081  # -> container 30081

    def as_list(self) -> list[int]:
        """Return the ports in a fixed order."""
        return [self.api_server, self.http, self.https, self.argocd_ui, self.hubble_ui]

    @classmethod
    def from_list(cls, ports: list[int]) -> "HostPorts":
        """Build from five ports in the order used by as_list()."""
        api_server, http, https, argocd_ui, hubble_ui = ports
        return cls(
            api_server=api_server, http=http, https=https, argocd_ui=argocd_ui, hubble_ui=hubble_ui
        )


class ArgoCDInfo(BaseModel):
    """Argo CD access details."""

    url: str = ""
    username: str = "admin"
    password: str = ""
    chart_version: str = ""


class HubbleInfo(BaseModel):
    """Hubble UI access details."""

    url: str = ""


class ServiceInfo(BaseModel):
    """Access details for every installed controller."""

    argocd: ArgoCDInfo = Field(default_factory=ArgoCDInfo)
    hubble: HubbleInfo = Field(default_factory=HubbleInfo)
    cilium_chart_version: str = ""


class RuntimeConfig(BaseModel):
    """The k3d configuration a cluster was created with."""

    image: str
    servers: int
    agents: int


class ClusterSession(BaseModel):
    """Everything labctl knows about a cluster it created."""

    cluster_name: str
    state: SessionState = SessionState.CREATING
    created_at: datetime
    bootstrap_url: str
    bootstrap_version: str | None = None
    gitops_path: str
    services: ServiceInfo = Field(default_factory=ServiceInfo)
    runtime: RuntimeConfig
    host_ports: HostPorts = Field(default_factory=HostPorts)

    @field_validator("cluster_name")
    @classmethod
    def validate_cluster_name(cls, v: str) -> str:
        """Validate the cluster name is usable as a k3d name and directory."""
        if not v:
            raise ValueError("cluster_name cannot be empty")
        if len(v) > 32 or not CLUSTER_NAME_PATTERN.match(v):
            raise ValueError(
                f"cluster_name '{v}' must be at most 32 lowercase alphanumeric characters "
                "or hyphens, and cannot start or end with a hyphen"
            )
        return v

    @property
    def kube_context(self) -> str:
        return f"k3d-{self.cluster_name}"
