"""Stream port allocation."""
from __future__ import annotations

from typing import Iterable

from ..config.defaults import BASE_STREAM_PORT


def allocate_port(existing_ports: Iterable[int], base: int = BASE_STREAM_PORT) -> int:
    """Return the smallest port >= ``base`` not in ``existing_ports``.

    Pure function of the current camera list; a deleted camera's port is
    available again as soon as it leaves the list.
    """
    used = set(existing_ports)
    port = base
    while port in used:
        port += 1
    return port
