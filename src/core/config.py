"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StorageConfig:
    """Storage backend selection and per-call timeout."""

    backend: str
    db_path: str
    timeout_seconds: float


@dataclass(frozen=True)
class DispatchConfig:
    """Notification delivery settings consumed by the dispatcher."""

    send_timeout_seconds: float
