"""Helm chart installation through the helm CLI."""

import tempfile

import yaml
from pydantic import BaseModel

from lab_manager.exceptions import CommandError
from lab_manager.logging_config import get_logger
from lab_manager.shell import run_command

logger = get_logger(__name__)


class ChartMetadata(BaseModel):
    """A chart located in a repository, pinned to the version found."""

    name: str
    version: str
    repo_url: str
    app_version: str = ""


class HelmInstaller:
    """Locates and installs Helm charts."""

    def __init__(self, kube_context: str | None = None):
        """Initialize the installer.

        Args:
            kube_context: Kubeconfig context to install into (defaults to current)
        """
        self.kube_context = kube_context

    def _context_args(self, kube_context: str | None = None) -> list[str]:
        context = kube_context or self.kube_context
        return ["--kube-context", context] if context else []

    def locate_chart(self, repo_url: str, name: str) -> ChartMetadata:
        """Resolve the latest version of a chart in a repository.

        Raises:
            CommandError: If the chart cannot be found or its metadata parsed
        """
        logger.info(f"Locating chart '{name}' in {repo_url}")
        result = run_command(["helm", "show", "chart", name, "--repo", repo_url], timeout=120)
        try:
            metadata = yaml.safe_load(result.stdout) or {}
        except yaml.YAMLError as e:
            raise CommandError(f"Failed to parse metadata for chart '{name}': {e}")

        version = metadata.get("version")
        if not version:
            raise CommandError(f"Chart '{name}' in {repo_url} has no version")

        logger.info(f"Found chart {name} version {version}")
        return ChartMetadata(
            name=name,
            version=str(version),
            repo_url=repo_url,
            app_version=str(metadata.get("appVersion", "")),
        )

    def deploy(
        self,
        chart: ChartMetadata,
        values: dict,
        namespace: str,
        release_name: str,
        create_namespace: bool = False,
        timeout: float = 300,
        kube_context: str | None = None,
    ) -> None:
        """Install or upgrade a chart release and wait for its resources.

        Args:
            chart: Chart returned by locate_chart()
            values: Nested values document
            namespace: Target namespace
            release_name: Helm release name
            create_namespace: Create the namespace if missing
            timeout: Seconds helm waits for the release to become ready
            kube_context: Context override for this release
        """
        logger.info(f"Installing {chart.name} {chart.version} as '{release_name}' in {namespace}")
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", prefix="values-") as values_file:
            yaml.safe_dump(values, values_file, default_flow_style=False)
            values_file.flush()

            args = [
                "helm",
                "upgrade",
                "--install",
                release_name,
                chart.name,
                "--repo",
                chart.repo_url,
                "--version",
                chart.version,
                "--namespace",
                namespace,
                "--values",
                values_file.name,
                "--wait",
                "--timeout",
                f"{int(timeout)}s",
                *self._context_args(kube_context),
            ]
            if create_namespace:
                args.append("--create-namespace")

            # helm enforces its own --timeout; allow some slack before killing it
            run_command(args, timeout=timeout + 60)
        logger.info(f"Release '{release_name}' deployed")
