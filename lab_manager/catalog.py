"""Curated catalog of optional applications in the GitOps repository.

Each entry is one ``catalog/<name>.yaml`` file. Toggling rewrites the file with
ruamel.yaml so comments and key order survive.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from lab_manager.exceptions import CatalogError
from lab_manager.logging_config import get_logger

logger = get_logger(__name__)

CATALOG_DIR = "catalog"


class CatalogEntry(BaseModel):
    """A single application in the catalog."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    category: str = ""
    description: str = ""
    repo_url: str = Field("", alias="repoURL")
    chart: str = ""
    target_revision: str = Field("", alias="targetRevision")
    namespace: str = ""
    enabled: bool = False


def _yaml() -> YAML:
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.default_flow_style = False
    yaml.indent(mapping=2, sequence=2, offset=0)
    return yaml


def catalog_dir(gitops_path: str | Path) -> Path:
    return Path(gitops_path) / CATALOG_DIR


def list_entries(gitops_path: str | Path) -> list[CatalogEntry]:
    """Return every catalog entry sorted by name, enabled or not.

    Subdirectories (such as catalog/values/) and non-YAML files are ignored.
    A missing catalog directory yields an empty list.

    Raises:
        CatalogError: If a catalog file cannot be read or parsed
    """
    directory = catalog_dir(gitops_path)
    if not directory.is_dir():
        return []

    yaml = _yaml()
    entries = []
    for path in directory.glob("*.yaml"):
        if not path.is_file():
            continue
        try:
            with open(path) as f:
                data = yaml.load(f)
        except (OSError, YAMLError) as e:
            raise CatalogError(f"Failed to parse catalog file {path.name}", str(e))
        if not isinstance(data, dict):
            raise CatalogError(
                f"Failed to parse catalog file {path.name}",
                f"expected a mapping, got {type(data).__name__}",
            )
        try:
            entries.append(CatalogEntry.model_validate(dict(data)))
        except ValidationError as e:
            raise CatalogError(f"Failed to parse catalog file {path.name}", str(e))

    return sorted(entries, key=lambda e: e.name)


def find_entry(gitops_path: str | Path, name: str) -> CatalogEntry:
    """Return the entry with the given name.

    Raises:
        CatalogError: If no entry matches; lists the available names
    """
    entries = list_entries(gitops_path)
    for entry in entries:
        if entry.name == name:
            return entry
    available = ", ".join(e.name for e in entries) or "none"
    raise CatalogError(f"App '{name}' not found in catalog", f"Available: {available}")


def set_enabled(gitops_path: str | Path, name: str, enabled: bool) -> Path:
    """Flip the enabled flag of a catalog entry on disk.

    Does not commit; the caller commits the returned file.

    Returns:
        Path of the rewritten file relative to the GitOps directory
    """
    rel = Path(CATALOG_DIR) / f"{name}.yaml"
    path = Path(gitops_path) / rel
    if not path.is_file():
        raise CatalogError(f"App '{name}' not found in catalog")

    yaml = _yaml()
    try:
        with open(path) as f:
            data = yaml.load(f)
        data["enabled"] = enabled
        with open(path, "w") as f:
            yaml.dump(data, f)
    except (OSError, YAMLError, TypeError) as e:
        raise CatalogError(f"Failed to update catalog file {path.name}: {e}")

    logger.info(f"Catalog app '{name}' {'enabled' if enabled else 'disabled'}")
    return rel
