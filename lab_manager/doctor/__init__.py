"""Health checks for a cluster and the components labctl installs."""

from lab_manager.doctor.checks import (
    AppsCheck,
    ArgoCDCheck,
    Check,
    CiliumCheck,
    DockerCheck,
    HubbleCheck,
    NodesCheck,
    extract_degraded_cause,
    run_all,
)
from lab_manager.doctor.runner import app_checks, cluster_checks, diagnose, infra_checks

__all__ = [
    "AppsCheck",
    "ArgoCDCheck",
    "Check",
    "CiliumCheck",
    "DockerCheck",
    "HubbleCheck",
    "NodesCheck",
    "app_checks",
    "cluster_checks",
    "diagnose",
    "extract_degraded_cause",
    "infra_checks",
    "run_all",
]
