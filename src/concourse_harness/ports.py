"""Collision-free port assignment for server installations.

Ports are drawn at random from the ephemeral range and probed with a
throwaway listener. The probe is released immediately, so a port handed out
here can in principle be taken before the server binds it; the server binds
at start time and the window is accepted.
"""

from __future__ import annotations

import errno
import random
import socket

from concourse_harness.errors import PortAllocationError
from concourse_harness.logging import get_logger

log = get_logger("ports")

PORT_RANGE_MIN = 49512
PORT_RANGE_MAX = 65535  # exclusive

# Errors meaning "someone else has this port"; anything else is an environment problem.
_RETRYABLE_ERRNOS = frozenset({errno.EADDRINUSE, errno.EACCES})

_rng = random.Random()


def is_port_available(port: int, host: str = "") -> bool:
    """Return True if a listener can be bound on *port* right now.

    Raises:
        PortAllocationError: If binding fails for a reason other than the
            port being in use.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(1)
    except OSError as exc:
        if exc.errno in _RETRYABLE_ERRNOS:
            return False
        raise PortAllocationError(f"Cannot probe port {port}: {exc}") from exc
    finally:
        sock.close()
    return True


def allocate_port(*, rng: random.Random | None = None, host: str = "") -> int:
    """Return a currently bindable port in ``[PORT_RANGE_MIN, PORT_RANGE_MAX)``."""
    draw = rng or _rng
    while True:
        port = draw.randrange(PORT_RANGE_MIN, PORT_RANGE_MAX)
        if is_port_available(port, host):
            return port
        log.debug("Port %d is in use, drawing another", port)


def allocate_ports(count: int, *, rng: random.Random | None = None, host: str = "") -> list[int]:
    """Return *count* distinct bindable ports."""
    ports: list[int] = []
    while len(ports) < count:
        port = allocate_port(rng=rng, host=host)
        if port not in ports:
            ports.append(port)
    return ports
