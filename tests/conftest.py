"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from hypothesis import Verbosity, settings

from lab_manager.models.session import (
    ArgoCDInfo,
    ClusterSession,
    HubbleInfo,
    RuntimeConfig,
    ServiceInfo,
    SessionState,
)
from lab_manager.session import SessionStore

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


@pytest.fixture
def store(tmp_path):
    """Session store rooted in a temporary directory."""
    return SessionStore(tmp_path / "home")


@pytest.fixture
def make_session():
    """Factory for session records."""

    def _make(name="demo", state=SessionState.RUNNING, gitops_path="/tmp/gitops"):
        return ClusterSession(
            cluster_name=name,
            state=state,
            created_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
            bootstrap_url="https://github.com/example/bootstrap.git",
            bootstrap_version="v0.1.0",
            gitops_path=str(gitops_path),
            services=ServiceInfo(
                argocd=ArgoCDInfo(
                    url="http://localhost:30080", password="s3cret", chart_version="7.7.0"
                ),
                hubble=HubbleInfo(url="http://localhost:30081"),
                cilium_chart_version="1.16.5",
            ),
            runtime=RuntimeConfig(image="rancher/k3s:v1.29.1-k3s2", servers=1, agents=2),
        )

    return _make


@pytest.fixture
def make_node():
    """Factory for Node objects with a Ready condition."""

    def _make(ready=True):
        condition = SimpleNamespace(type="Ready", status="True" if ready else "False")
        return SimpleNamespace(status=SimpleNamespace(conditions=[condition]))

    return _make


@pytest.fixture
def make_deployment():
    """Factory for Deployment objects with an Available condition."""

    def _make(available=True, replicas=1, ready_replicas=None):
        condition = SimpleNamespace(type="Available", status="True" if available else "False")
        if ready_replicas is None:
            ready_replicas = replicas if available else 0
        return SimpleNamespace(
            spec=SimpleNamespace(replicas=replicas),
            status=SimpleNamespace(conditions=[condition], ready_replicas=ready_replicas),
        )

    return _make
