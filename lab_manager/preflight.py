"""Host prerequisites checked before touching a cluster."""

from lab_manager.shell import run_command


def check_docker() -> str:
    """Verify the Docker daemon is reachable.

    Returns:
        The server version reported by the daemon

    Raises:
        CommandError: If docker is missing or the daemon does not answer
    """
    result = run_command(["docker", "version", "--format", "{{.Server.Version}}"], timeout=30)
    return result.stdout.strip()
