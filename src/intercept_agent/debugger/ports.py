"""Local port allocation for debug channels."""

from __future__ import annotations

import socket
from collections.abc import Collection

from intercept_agent.errors import no_free_port_error

_MAX_PORT = 65535


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(
    preferred: int,
    *,
    exclude: Collection[int] = (),
    host: str = "127.0.0.1",
) -> int:
    """Return the first bindable port at or above ``preferred``, skipping ``exclude``."""
    for port in range(max(preferred, 1024), _MAX_PORT + 1):
        if port in exclude:
            continue
        if is_port_free(port, host):
            return port
    raise no_free_port_error(preferred)
