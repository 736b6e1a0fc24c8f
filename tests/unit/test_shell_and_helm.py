"""Unit tests for the subprocess wrapper and the Helm installer."""

import subprocess
from unittest.mock import patch

import pytest
import yaml

from lab_manager.exceptions import CommandError
from lab_manager.helm import ChartMetadata, HelmInstaller
from lab_manager.shell import run_command


@patch("subprocess.run", side_effect=FileNotFoundError())
def test_run_command_missing_binary(mock_run):
    """Test that a missing binary suggests how to install it."""
    with pytest.raises(CommandError) as exc_info:
        run_command(["k3d", "version"])

    assert "k3d is not installed" in exc_info.value.message
    assert "k3d.io" in exc_info.value.details


@patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="helm", timeout=5))
def test_run_command_timeout(mock_run):
    with pytest.raises(CommandError, match="timed out"):
        run_command(["helm", "install", "x"], timeout=5)


@patch("subprocess.run")
def test_run_command_failure_includes_stderr(mock_run):
    """Test that a non-zero exit carries stderr as details."""
    mock_run.side_effect = subprocess.CalledProcessError(
        1, ["git", "clone"], stderr="fatal: repository not found\n"
    )

    with pytest.raises(CommandError) as exc_info:
        run_command(["git", "clone", "https://example.com/x.git"])

    assert "exit code 1" in exc_info.value.message
    assert exc_info.value.details == "fatal: repository not found"


@patch("lab_manager.helm.run_command")
def test_locate_chart(mock_run):
    mock_run.return_value = subprocess.CompletedProcess(
        [], 0, stdout="name: cilium\nversion: 1.16.5\nappVersion: 1.16.5\n", stderr=""
    )

    chart = HelmInstaller().locate_chart("https://helm.cilium.io/", "cilium")

    assert chart == ChartMetadata(
        name="cilium", version="1.16.5", repo_url="https://helm.cilium.io/", app_version="1.16.5"
    )
    assert mock_run.call_args.args[0] == [
        "helm", "show", "chart", "cilium", "--repo", "https://helm.cilium.io/"
    ]


@patch("lab_manager.helm.run_command")
def test_locate_chart_without_version(mock_run):
    mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="name: x\n", stderr="")

    with pytest.raises(CommandError, match="has no version"):
        HelmInstaller().locate_chart("https://charts.example.com", "x")


@patch("lab_manager.helm.run_command")
def test_deploy_arguments(mock_run):
    """Test the helm upgrade --install invocation and the values file contents."""
    seen = {}

    def fake_run(args, **kwargs):
        with open(args[args.index("--values") + 1]) as f:
            seen["values"] = yaml.safe_load(f)
        seen["args"] = args
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    mock_run.side_effect = fake_run
    chart = ChartMetadata(
        name="argo-cd", version="7.7.0", repo_url="https://argoproj.github.io/argo-helm"
    )

    HelmInstaller().deploy(
        chart,
        {"dex": {"enabled": False}},
        "argocd",
        "argocd",
        create_namespace=True,
        timeout=120,
        kube_context="k3d-dev",
    )

    args = seen["args"]
    assert args[:5] == ["helm", "upgrade", "--install", "argocd", "argo-cd"]
    assert args[args.index("--version") + 1] == "7.7.0"
    assert args[args.index("--namespace") + 1] == "argocd"
    assert args[args.index("--timeout") + 1] == "120s"
    assert args[args.index("--kube-context") + 1] == "k3d-dev"
    assert "--create-namespace" in args
    assert "--wait" in args
    assert seen["values"] == {"dex": {"enabled": False}}


@patch("lab_manager.helm.run_command")
def test_deploy_without_namespace_creation(mock_run):
    mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="", stderr="")
    chart = ChartMetadata(name="cilium", version="1.16.5", repo_url="https://helm.cilium.io/")

    HelmInstaller().deploy(chart, {}, "kube-system", "cilium")

    args = mock_run.call_args.args[0]
    assert "--create-namespace" not in args
    assert "--kube-context" not in args
