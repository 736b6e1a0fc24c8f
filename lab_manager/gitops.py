"""Local GitOps repository: scaffolding, commits and root application."""

import shutil
from pathlib import Path

import yaml

from lab_manager.exceptions import KubernetesError, LabError, ResourceExistsError
from lab_manager.kube import KubeClient
from lab_manager.logging_config import get_logger
from lab_manager.shell import run_command

logger = get_logger(__name__)

BOT_NAME = "labctl"
BOT_EMAIL = "labctl@local"
DEFAULT_NAMESPACE = "argocd"

# Applied in order once Argo CD is running
BOOTSTRAP_MANIFESTS = [
    "bootstrap/root-app.yaml",
    "bootstrap/root-catalog.yaml",
]


def _git(repo_dir: Path, *args: str) -> None:
    run_command(
        ["git", "-c", f"user.name={BOT_NAME}", "-c", f"user.email={BOT_EMAIL}", *args],
        timeout=120,
        cwd=str(repo_dir),
    )


def scaffold(repo_url: str, version: str | None, target_dir: str | Path) -> None:
    """Clone a template repository and turn it into a fresh single-commit repo.

    Args:
        repo_url: Template repository URL
        version: Tag or branch to clone, None for HEAD
        target_dir: Directory to create
    """
    target = Path(target_dir)
    ref = version or "HEAD"
    logger.info(f"Cloning bootstrap repo {repo_url} ({ref}) into {target}")

    target.parent.mkdir(parents=True, exist_ok=True)
    clone = ["git", "clone", "--depth", "1"]
    if version:
        clone += ["--branch", version]
    run_command([*clone, repo_url, str(target)], timeout=300)

    # Strip upstream history
    shutil.rmtree(target / ".git")
    _git(target, "init", "--quiet")
    _git(target, "add", ".")
    _git(target, "commit", "--quiet", "-m", f"Initial scaffold from {repo_url} ({ref})")
    logger.info(f"GitOps repo scaffolded at {target}")


def commit(repo_dir: str | Path, message: str, *paths: str) -> None:
    """Stage the given paths (including deletions) and commit them."""
    repo = Path(repo_dir)
    _git(repo, "add", "--all", "--", *paths)
    _git(repo, "commit", "--quiet", "-m", message)


def load_manifest(path: Path) -> dict:
    """Read a single-document YAML manifest.

    Raises:
        LabError: If the file is missing or not a mapping
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise LabError(f"Failed to read manifest {path.name}: {e}")
    if not isinstance(data, dict):
        raise LabError(f"Manifest {path.name} is not a Kubernetes object")
    return data


def apply_root_app(kube: KubeClient, gitops_dir: str | Path) -> list[str]:
    """Create the bootstrap manifests from the GitOps directory in the cluster.

    Manifests that already exist are skipped.

    Returns:
        Names of the manifests that already existed

    Raises:
        LabError: If a manifest cannot be read
        KubernetesError: If creating an object fails for another reason
    """
    skipped = []
    for rel in BOOTSTRAP_MANIFESTS:
        manifest = load_manifest(Path(gitops_dir) / rel)
        metadata = manifest.get("metadata") or {}
        name = metadata.get("name", rel)
        namespace = metadata.get("namespace") or DEFAULT_NAMESPACE

        logger.info(f"Applying bootstrap manifest {manifest.get('kind')} {namespace}/{name}")
        try:
            kube.create_custom_object(manifest, namespace)
        except ResourceExistsError:
            logger.warning(f"Manifest '{name}' already exists, skipping")
            skipped.append(name)
        except KubernetesError as e:
            raise KubernetesError(f"Failed to apply {rel}: {e.message}", e.details)
    return skipped
