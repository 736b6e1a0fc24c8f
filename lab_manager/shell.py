"""Thin wrapper around subprocess for the external CLIs labctl drives."""

import subprocess

from lab_manager.exceptions import CommandError
from lab_manager.logging_config import get_logger

logger = get_logger(__name__)

INSTALL_HINTS = {
    "k3d": "Install k3d from https://k3d.io",
    "helm": "Install Helm from https://helm.sh/docs/intro/install/",
    "docker": "Install Docker from https://docs.docker.com/get-docker/",
    "git": "Install git from https://git-scm.com/downloads",
}


def run_command(
    args: list[str],
    timeout: float | None = 600,
    env: dict[str, str] | None = None,
    input: str | None = None,
    cwd: str | None = None,
) -> subprocess.CompletedProcess:
    """Run a command and return the completed process.

    Args:
        args: Command and arguments
        timeout: Seconds before the command is killed
        env: Environment for the child process
        input: Text passed on stdin
        cwd: Working directory

    Returns:
        The completed process with captured text output

    Raises:
        CommandError: If the binary is missing, times out, or exits non-zero
    """
    binary = args[0]
    logger.debug(f"Running: {' '.join(args)}")

    try:
        return subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
            env=env,
            input=input,
            cwd=cwd,
        )
    except FileNotFoundError:
        logger.error(f"{binary} binary not found in PATH")
        raise CommandError(
            f"{binary} is not installed or not in PATH",
            INSTALL_HINTS.get(binary, f"Ensure the '{binary}' command is in your PATH"),
        )
    except subprocess.TimeoutExpired:
        logger.error(f"{binary} command timed out after {timeout} seconds")
        raise CommandError(
            f"{binary} command timed out",
            f"'{' '.join(args[:3])}' did not finish within {timeout} seconds",
        )
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        logger.error(f"{binary} command failed with return code {e.returncode}: {stderr}")
        raise CommandError(
            f"{' '.join(args[:3])} failed with exit code {e.returncode}",
            stderr or None,
        )
