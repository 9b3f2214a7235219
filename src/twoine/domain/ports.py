"""Port range allocation for sites and port assignment for services.

Sites receive contiguous ranges allocated monotonically: a new range
starts right after the highest range ever handed out (soft-deleted sites
included), so ports are never recycled between tenants.
"""

from __future__ import annotations

from collections.abc import Collection

from pydantic import BaseModel, model_validator

from twoine.domain.errors import ConflictError, ValidationError

DEFAULT_PORT_BASE = 10000
DEFAULT_PORTS_PER_SITE = 10
MAX_PORT = 65535


class PortRange(BaseModel):
    """Inclusive ``[start, end]`` range reserved for one site."""

    model_config = {"frozen": True}

    start: int
    end: int

    @model_validator(mode="after")
    def _ordered(self) -> PortRange:
        if not 1 <= self.start <= self.end <= MAX_PORT:
            msg = f"Invalid port range [{self.start}, {self.end}]"
            raise ValueError(msg)
        return self

    def __contains__(self, port: object) -> bool:
        return isinstance(port, int) and self.start <= port <= self.end

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def ports(self) -> range:
        return range(self.start, self.end + 1)


def next_port_range(
    previous_end: int | None,
    *,
    base: int = DEFAULT_PORT_BASE,
    size: int = DEFAULT_PORTS_PER_SITE,
) -> PortRange:
    """Range for a new site: ``previous_end + 1`` onwards, or *base* for the first site."""
    start = base if previous_end is None else max(previous_end + 1, base)
    end = start + size - 1
    if end > MAX_PORT:
        msg = f"Port space exhausted: cannot allocate {size} ports after {previous_end}"
        raise ConflictError(msg, detail={"previous_end": previous_end})
    return PortRange(start=start, end=end)


def lowest_free_port(port_range: PortRange, used: Collection[int]) -> int:
    """Lowest port in *port_range* not present in *used*.

    Raises :class:`ConflictError` when every port in the range is taken.
    """
    for port in port_range.ports():
        if port not in used:
            return port
    msg = f"No free port left in range [{port_range.start}, {port_range.end}]"
    raise ConflictError(
        msg, detail={"range": [port_range.start, port_range.end], "used": sorted(used)}
    )


def resolve_service_port(
    port_range: PortRange,
    used: Collection[int],
    requested: int | None = None,
) -> int:
    """Explicit port if it is inside the range and free, else the lowest free port."""
    if requested is None:
        return lowest_free_port(port_range, used)
    if requested not in port_range:
        msg = f"Port {requested} is outside the site range [{port_range.start}, {port_range.end}]"
        raise ValidationError(msg, detail={"field": "port", "value": requested})
    if requested in used:
        msg = f"Port {requested} is already in use"
        raise ConflictError(msg, detail={"port": requested})
    return requested
