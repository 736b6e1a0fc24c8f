"""Data model for health check results."""

from pydantic import BaseModel


class CheckResult(BaseModel):
    """The outcome of a single health check.

    Produced fresh on every run and never persisted.
    """

    name: str
    ok: bool
    message: str = ""  # human-readable status, e.g. "3/3 nodes ready"
    cause: str = ""  # only populated on failure
    fix: str = ""  # suggested fix command, only on failure
