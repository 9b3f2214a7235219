"""Shared orchestrator helper functions."""

from __future__ import annotations

from datetime import UTC, datetime


def now_iso() -> str:
    """Current UTC time as standard ISO 8601."""
    return datetime.now(UTC).isoformat()


def batch_outcome(
    succeeded: list[dict[str, object]], failed: list[dict[str, object]]
) -> tuple[dict[str, object], list[str]]:
    """Data payload and warnings for a partial-failure-tolerant batch."""
    data: dict[str, object] = {
        "succeeded": succeeded,
        "failed": failed,
        "partial": bool(failed),
    }
    warnings = [f"{item['name']}: {item['error']}" for item in failed]
    return data, warnings
