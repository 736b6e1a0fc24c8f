"""Runtime settings for labctl.

Settings come from environment variables with sensible defaults for a single
workstation. ``LABCTL_HOME`` relocates all persisted state, which tests use for
isolation.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from lab_manager.exceptions import ConfigurationError

DEFAULT_HOME = Path("~/.labctl")
DEFAULT_BOOTSTRAP_URL = "https://github.com/sikifanso/sikifanso-homelab-bootstrap.git"
DEFAULT_K3S_IMAGE = "rancher/k3s:v1.29.1-k3s2"

HOME_ENV = "LABCTL_HOME"


class Settings(BaseModel):
    """Cluster runtime and polling settings."""

    home: Path = Field(default_factory=lambda: DEFAULT_HOME.expanduser())
    k3s_image: str = DEFAULT_K3S_IMAGE
    servers: int = 1
    agents: int = 2
    node_timeout: float = 120.0
    argocd_timeout: float = 180.0
    poll_interval: float = 5.0
    helm_timeout: float = 300.0

    @field_validator("k3s_image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        """Validate the node image reference is not empty."""
        if not v:
            raise ValueError("k3s_image cannot be empty")
        return v

    @field_validator("servers")
    @classmethod
    def validate_servers(cls, v: int) -> int:
        """A cluster needs at least one server node."""
        if v < 1:
            raise ValueError("servers must be at least 1")
        return v

    @field_validator("agents")
    @classmethod
    def validate_agents(cls, v: int) -> int:
        if v < 0:
            raise ValueError("agents cannot be negative")
        return v

    @field_validator("node_timeout", "argocd_timeout", "poll_interval", "helm_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and intervals must be positive")
        return v

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "Settings":
        """Build settings from ``LABCTL_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        mapping = {
            "home": HOME_ENV,
            "k3s_image": "LABCTL_K3S_IMAGE",
            "servers": "LABCTL_SERVERS",
            "agents": "LABCTL_AGENTS",
            "node_timeout": "LABCTL_NODE_TIMEOUT",
            "argocd_timeout": "LABCTL_ARGOCD_TIMEOUT",
            "poll_interval": "LABCTL_POLL_INTERVAL",
            "helm_timeout": "LABCTL_HELM_TIMEOUT",
        }
        values = {field: env[var] for field, var in mapping.items() if env.get(var)}
        if "home" in values:
            values["home"] = Path(values["home"]).expanduser()

        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(
                "Invalid labctl configuration",
                f"{e}\n\nCheck the LABCTL_* environment variables.",
            )


def resolve_bootstrap_version(
    cli_version: str, is_default_bootstrap: bool, explicit_version: str | None, version_set: bool
) -> str | None:
    """Return the bootstrap repo tag to clone, or None for HEAD.

    Resolution order:
        1. An explicit --bootstrap-version wins (empty string forces HEAD)
        2. Custom bootstrap URLs track HEAD, they may not share our tags
        3. Development and pre-release builds track HEAD
        4. Release builds pin the tag matching the CLI version
    """
    if version_set:
        return explicit_version or None
    if not is_default_bootstrap:
        return None
    if cli_version == "dev" or "-" in cli_version:
        return None
    return cli_version if cli_version.startswith("v") else f"v{cli_version}"
