"""Host port allocation for cluster port mappings."""

import socket

from lab_manager.exceptions import PortAllocationError
from lab_manager.logging_config import get_logger
from lab_manager.models.session import HostPorts

logger = get_logger(__name__)

DEFAULT_PORTS = HostPorts()


def _bind(port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("", port))
        sock.listen(1)
    except OSError:
        sock.close()
        raise
    return sock


def all_available(ports: list[int]) -> bool:
    """Return True if every port can be bound on all interfaces.

    Each listener is closed again immediately.
    """
    for port in ports:
        try:
            sock = _bind(port)
        except OSError:
            logger.debug(f"Port {port} is already in use")
            return False
        sock.close()
    return True


def find_free_ports(count: int) -> list[int]:
    """Ask the OS for ``count`` distinct ephemeral ports.

    All listeners stay open until every port number has been read back, so the
    OS cannot hand out the same port twice within one call.

    Raises:
        PortAllocationError: If the OS cannot satisfy the bindings
    """
    listeners: list[socket.socket] = []
    try:
        for _ in range(count):
            listeners.append(_bind(0))
        return [sock.getsockname()[1] for sock in listeners]
    except OSError as e:
        raise PortAllocationError(
            f"Failed to allocate {count} free ports: {e}",
            "Close some applications holding local ports and try again",
        )
    finally:
        for sock in listeners:
            sock.close()


def resolve_host_ports() -> HostPorts:
    """Return host ports for a new cluster.

    The defaults are used when all five are free, which keeps URLs stable for
    the common single-cluster case. Otherwise all five come from the OS.
    """
    if all_available(DEFAULT_PORTS.as_list()):
        logger.debug("All default host ports are free")
        return DEFAULT_PORTS

    logger.info("Default host ports are taken, allocating free ports")
    return HostPorts.from_list(find_free_ports(len(DEFAULT_PORTS.as_list())))
