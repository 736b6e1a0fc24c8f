"""Persistent per-cluster session records.

Each cluster gets a directory ``<root>/clusters/<name>/`` holding
``session.yaml`` and the scaffolded ``gitops/`` working tree. The store only
persists and retrieves records, it never changes them.
"""

import os
import shutil
from pathlib import Path

import yaml
from pydantic import ValidationError

from lab_manager.config import DEFAULT_HOME, HOME_ENV
from lab_manager.exceptions import SessionError, SessionNotFoundError
from lab_manager.logging_config import get_logger
from lab_manager.models.session import ClusterSession

logger = get_logger(__name__)

CLUSTERS_DIR = "clusters"
SESSION_FILE = "session.yaml"
GITOPS_DIR = "gitops"


class SessionStore:
    """Reads and writes cluster session records under a root directory."""

    def __init__(self, root: str | Path | None = None):
        """Initialize the store.

        Args:
            root: Storage root. Defaults to $LABCTL_HOME, then ~/.labctl
        """
        if root is None:
            root = os.environ.get(HOME_ENV) or DEFAULT_HOME
        self.root = Path(root).expanduser()

    def cluster_dir(self, cluster_name: str) -> Path:
        """Return the session directory for a cluster."""
        return self.root / CLUSTERS_DIR / cluster_name

    def gitops_dir(self, cluster_name: str) -> Path:
        """Return the GitOps working directory for a cluster."""
        return self.cluster_dir(cluster_name) / GITOPS_DIR

    def session_path(self, cluster_name: str) -> Path:
        return self.cluster_dir(cluster_name) / SESSION_FILE

    def save(self, session: ClusterSession) -> None:
        """Write the full session record, replacing any previous one.

        The file is created owner-readable only since it holds credentials.

        Raises:
            SessionError: If the record cannot be written
        """
        path = self.session_path(session.cluster_name)
        logger.debug(f"Saving session to {path}")

        data = yaml.safe_dump(session.model_dump(mode="json"), default_flow_style=False)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(data)
            # O_CREAT mode does not apply to a file that already existed
            os.chmod(path, 0o600)
        except OSError as e:
            logger.error(f"Failed to write session file {path}: {e}")
            raise SessionError(
                f"Failed to write session for cluster '{session.cluster_name}': {e}",
                f"Check permissions on {path.parent}",
            )

    def load(self, cluster_name: str) -> ClusterSession:
        """Read the session record for a cluster.

        Raises:
            SessionNotFoundError: If no record exists
            SessionError: If the record cannot be read or parsed
        """
        path = self.session_path(cluster_name)
        if not path.is_file():
            raise SessionNotFoundError(cluster_name)

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise SessionError(f"Failed to read session file {path}: {e}")

        if not isinstance(data, dict):
            raise SessionError(f"Session file {path} is empty or malformed")

        try:
            return ClusterSession(**data)
        except ValidationError as e:
            raise SessionError(f"Session file {path} is invalid", str(e))

    def remove(self, cluster_name: str) -> None:
        """Delete the whole session directory. Missing directories are fine."""
        directory = self.cluster_dir(cluster_name)
        if not directory.exists():
            return
        logger.debug(f"Removing session directory {directory}")
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise SessionError(f"Failed to remove session directory {directory}: {e}")

    def list_all(self) -> list[ClusterSession]:
        """Return every readable session, sorted by cluster name.

        Directories without a session file and records that fail to parse are
        skipped so one bad record cannot hide the others.
        """
        clusters_root = self.root / CLUSTERS_DIR
        if not clusters_root.is_dir():
            return []

        sessions = []
        for entry in sorted(clusters_root.iterdir()):
            if not entry.is_dir() or not (entry / SESSION_FILE).is_file():
                continue
            try:
                sessions.append(self.load(entry.name))
            except SessionError as e:
                logger.warning(f"Skipping unreadable session '{entry.name}': {e.message}")
        return sessions
