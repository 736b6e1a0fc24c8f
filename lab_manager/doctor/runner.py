"""Tiered diagnosis of a cluster.

Infrastructure checks always run. Cluster and app checks only run when a
session exists and the cluster's API server is reachable; otherwise a
synthetic failing result explains what is missing.
"""

import logging
from collections.abc import Callable

from lab_manager.doctor.checks import (
    AppsCheck,
    ArgoCDCheck,
    Check,
    CiliumCheck,
    DockerCheck,
    HubbleCheck,
    NodesCheck,
    run_all,
)
from lab_manager.exceptions import KubernetesError, SessionError, SessionNotFoundError
from lab_manager.kube import KubeClient
from lab_manager.logging_config import get_logger
from lab_manager.models.health import CheckResult

CLUSTER_CHECK_NAME = "k3d cluster"


def infra_checks() -> list[Check]:
    """Checks that need no Kubernetes client."""
    return [DockerCheck()]


def cluster_checks(kube: KubeClient) -> list[Check]:
    return [NodesCheck(kube), CiliumCheck(kube), HubbleCheck(kube), ArgoCDCheck(kube)]


def app_checks(kube: KubeClient, gitops_path: str) -> list[Check]:
    return [AppsCheck(kube, gitops_path)]


def diagnose(
    cluster_name: str,
    store,
    kube_factory: Callable[[str], KubeClient],
    infra: list[Check] | None = None,
    logger: logging.Logger | None = None,
) -> list[CheckResult]:
    """Run every check that applies to the cluster's current state.

    Args:
        cluster_name: Cluster to diagnose
        store: SessionStore holding the cluster's record
        kube_factory: Returns a KubeClient for a cluster name
        infra: Infrastructure checks (defaults to infra_checks())
        logger: Logger for tier decisions

    Returns:
        Results in check order; never raises for cluster problems
    """
    logger = logger or get_logger(__name__)
    checks = infra if infra is not None else infra_checks()

    try:
        session = store.load(cluster_name)
    except SessionNotFoundError:
        logger.info(f"No session found for '{cluster_name}', running infrastructure checks only")
        return run_all(checks) + [
            CheckResult(
                name=CLUSTER_CHECK_NAME,
                ok=False,
                cause=f"no session found for cluster '{cluster_name}'",
                fix="labctl cluster create",
            )
        ]
    except SessionError as e:
        logger.warning(f"Session for '{cluster_name}' is unreadable: {e.message}")
        return run_all(checks) + [
            CheckResult(
                name=CLUSTER_CHECK_NAME,
                ok=False,
                cause=f"session record is unreadable: {e.message}",
                fix=f"labctl cluster delete --cluster {cluster_name}",
            )
        ]

    try:
        kube = kube_factory(cluster_name)
    except KubernetesError as e:
        logger.warning(f"Could not create Kubernetes client: {e.message}")
        return run_all(checks) + [
            CheckResult(
                name=CLUSTER_CHECK_NAME,
                ok=False,
                cause=f"cannot connect to cluster: {e.message}",
                fix="labctl cluster start",
            )
        ]

    return run_all(checks + cluster_checks(kube) + app_checks(kube, session.gitops_path))
