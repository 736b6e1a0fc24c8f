"""Tests for error handling across components."""

import logging

from lab_manager.exceptions import (
    CatalogError,
    ClusterExistsError,
    ClusterNotFoundError,
    CommandError,
    ConfigurationError,
    CreatePhaseError,
    KubernetesError,
    LabError,
    PortAllocationError,
    ReadinessCancelledError,
    ReadinessError,
    ReadinessTimeoutError,
    ResourceExistsError,
    SessionError,
    SessionNotFoundError,
)
from lab_manager.logging_config import get_logger, setup_logging
from lab_manager.orchestrator import Phase


def test_custom_exception_with_details():
    """Test that custom exceptions support message and details."""
    error = CommandError("k3d failed", "Is Docker running?")

    assert error.message == "k3d failed"
    assert error.details == "Is Docker running?"
    assert "k3d failed" in str(error)
    assert "Details: Is Docker running?" in str(error)


def test_custom_exception_without_details():
    """Test that custom exceptions work without details."""
    error = ConfigurationError("Invalid input")

    assert error.message == "Invalid input"
    assert error.details is None
    assert str(error) == "Invalid input"


def test_exception_hierarchy():
    """Test that all custom exceptions inherit from LabError."""
    for cls in (
        ConfigurationError,
        PortAllocationError,
        SessionError,
        ClusterExistsError,
        ClusterNotFoundError,
        CreatePhaseError,
        ReadinessError,
        CommandError,
        KubernetesError,
        CatalogError,
    ):
        assert issubclass(cls, LabError)
    assert issubclass(SessionNotFoundError, SessionError)
    assert issubclass(ReadinessTimeoutError, ReadinessError)
    assert issubclass(ReadinessCancelledError, ReadinessError)
    assert issubclass(ResourceExistsError, KubernetesError)


def test_cluster_exists_error_suggests_delete():
    """Test that ClusterExistsError names the cluster and how to remove it."""
    error = ClusterExistsError("dev")

    assert error.cluster_name == "dev"
    assert "'dev' already exists" in error.message
    assert "labctl cluster delete --cluster dev" in error.details


def test_create_phase_error_wraps_cause():
    """Test that CreatePhaseError keeps the phase and original cause."""
    cause = CommandError("k3d cluster create failed")
    error = CreatePhaseError(Phase.MATERIALIZE, cause)

    assert error.phase is Phase.MATERIALIZE
    assert error.cause is cause
    assert error.warnings == []
    assert "cluster materialization" in error.message
    assert "k3d cluster create failed" in error.message


def test_readiness_timeout_error_carries_counts():
    """Test that the timeout error reports the last observed counts."""
    error = ReadinessTimeoutError(2, 3, "nodes")

    assert (error.ready, error.total) == (2, 3)
    assert "nodes" in error.message
    assert "2/3" in error.message


def test_logging_setup():
    """Test that logging can be configured."""
    setup_logging(level="INFO", verbose=False)

    logger = get_logger("test")
    assert logger.name == "test"
    assert logging.getLogger().level == logging.INFO


def test_logging_with_verbose():
    """Test that verbose mode sets DEBUG level."""
    setup_logging(verbose=True)

    assert logging.getLogger().level == logging.DEBUG


def test_logging_with_file(tmp_path):
    """Test that a log file handler is added."""
    log_file = tmp_path / "logs" / "labctl.log"
    setup_logging(log_file=log_file)

    get_logger("test").warning("written to file")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_file.exists()
    assert "written to file" in log_file.read_text()


def test_noisy_libraries_quieted():
    """Test that client libraries only log warnings."""
    setup_logging(verbose=True)

    assert logging.getLogger("urllib3").level == logging.WARNING
    assert logging.getLogger("kubernetes").level == logging.WARNING
