"""Operator configuration, read once from the environment at startup."""

from __future__ import annotations

__all__ = ("OperatorConfig", "parse_bool")

import os
from collections.abc import Mapping
from dataclasses import dataclass


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OperatorConfig:
    """Immutable operator settings.

    Watch registration reads these once; nothing re-evaluates them per
    event.
    """

    psp_enabled: bool = False
    """Whether the pod-security-policy mode is on (``ENABLE_VMWARE_PSP``).
    Node and PersistentVolumeClaim watches are only registered in that mode.
    """

    watch_namespace: str | None = None
    """Namespace to watch (``WATCH_NAMESPACE``); `None` watches the whole
    cluster.
    """

    reconcile_workers: int = 4
    """Number of concurrent reconciliation workers (``RECONCILE_WORKERS``).
    """

    log_level: str = "info"
    """Log level name (``LOG_LEVEL``)."""

    log_format: str = "json"
    """Either ``json`` or ``console`` (``LOG_FORMAT``)."""

    resync_interval: float = 300.0
    """Seconds between re-checks of every datacenter the watch registries
    still track (``RESYNC_INTERVAL``); ``0`` disables them.
    """

    @classmethod
    def from_environ(
        cls, environ: Mapping[str, str] | None = None
    ) -> OperatorConfig:
        if environ is None:
            environ = os.environ

        workers = int(environ.get("RECONCILE_WORKERS", "4"))
        if workers < 1:
            raise ValueError(
                f"RECONCILE_WORKERS must be at least 1, got {workers}"
            )

        log_format = environ.get("LOG_FORMAT", "json").lower()
        if log_format not in ("json", "console"):
            raise ValueError(
                f"LOG_FORMAT must be json or console, got {log_format!r}"
            )

        resync_interval = float(environ.get("RESYNC_INTERVAL", "300"))
        if resync_interval < 0:
            raise ValueError(
                f"RESYNC_INTERVAL must not be negative, got {resync_interval}"
            )

        return cls(
            psp_enabled=parse_bool(environ.get("ENABLE_VMWARE_PSP")),
            watch_namespace=environ.get("WATCH_NAMESPACE") or None,
            reconcile_workers=workers,
            log_level=environ.get("LOG_LEVEL", "info"),
            log_format=log_format,
            resync_interval=resync_interval,
        )
