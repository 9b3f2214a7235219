"""Tests for site port ranges and service port assignment."""

from __future__ import annotations

import pytest

from twoine.domain.errors import ConflictError, ValidationError
from twoine.domain.ports import (
    MAX_PORT,
    PortRange,
    lowest_free_port,
    next_port_range,
    resolve_service_port,
)


class TestNextPortRange:
    def test_first_site_starts_at_base(self) -> None:
        assert next_port_range(None) == PortRange(start=10000, end=10009)

    def test_follows_highest_range(self) -> None:
        assert next_port_range(10009) == PortRange(start=10010, end=10019)

    def test_never_below_base(self) -> None:
        assert next_port_range(500, base=10000).start == 10000

    def test_custom_size(self) -> None:
        assert next_port_range(None, base=20000, size=5).end == 20004

    def test_exhaustion_is_conflict(self) -> None:
        with pytest.raises(ConflictError, match="exhausted"):
            next_port_range(MAX_PORT - 5)

    def test_last_range_fits_exactly(self) -> None:
        assert next_port_range(MAX_PORT - 10).end == MAX_PORT


class TestPortRange:
    def test_membership_and_size(self) -> None:
        r = PortRange(start=10000, end=10009)
        assert 10000 in r and 10009 in r
        assert 10010 not in r
        assert r.size == 10

    def test_inverted_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            PortRange(start=10, end=5)


class TestServicePorts:
    range_ = PortRange(start=10000, end=10009)

    def test_lowest_free(self) -> None:
        assert lowest_free_port(self.range_, {10000, 10001}) == 10002

    def test_fills_gaps(self) -> None:
        assert lowest_free_port(self.range_, {10000, 10002}) == 10001

    def test_full_range_is_conflict(self) -> None:
        with pytest.raises(ConflictError, match="No free port"):
            lowest_free_port(self.range_, set(self.range_.ports()))

    def test_explicit_port_in_range(self) -> None:
        assert resolve_service_port(self.range_, set(), 10005) == 10005

    def test_explicit_port_outside_range(self) -> None:
        with pytest.raises(ValidationError, match="outside"):
            resolve_service_port(self.range_, set(), 10010)

    def test_explicit_port_taken(self) -> None:
        with pytest.raises(ConflictError, match="already in use"):
            resolve_service_port(self.range_, {10005}, 10005)
