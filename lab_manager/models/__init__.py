"""Data models for cluster sessions, ports and health checks."""

from lab_manager.models.health import CheckResult
from lab_manager.models.session import (
    ArgoCDInfo,
    ClusterSession,
    HostPorts,
    HubbleInfo,
    RuntimeConfig,
    ServiceInfo,
    SessionState,
)

__all__ = [
    "ArgoCDInfo",
    "CheckResult",
    "ClusterSession",
    "HostPorts",
    "HubbleInfo",
    "RuntimeConfig",
    "ServiceInfo",
    "SessionState",
]
