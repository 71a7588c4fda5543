"""Registry of secrets that CassandraDatacenters depend on without owning.

Secrets such as the superuser credentials or user secrets are referenced by
name from a CassandraDatacenter spec but are usually created by someone else,
so owner references cannot route their events. The reconciler records the
references it discovers here, and the secret watch routes every secret event
through `SecretWatches.find_watchers`.
"""

from __future__ import annotations

__all__ = ("ObjectKey", "SecretWatches", "SelectorRule")

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, NamedTuple

import structlog

from .events import ReconcileRequest


class ObjectKey(NamedTuple):
    """Namespace and name of a watched secret."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class SelectorRule:
    """Matches secrets in a namespace by equality on labels."""

    namespace: str
    match_labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_mapping(
        cls, namespace: str, match_labels: Mapping[str, str]
    ) -> SelectorRule:
        return cls(
            namespace=namespace,
            match_labels=tuple(sorted(match_labels.items())),
        )

    def matches(self, meta: Mapping[str, Any]) -> bool:
        if meta.get("namespace") != self.namespace:
            return False
        labels = meta.get("labels") or {}
        return all(labels.get(k) == v for k, v in self.match_labels)


class SecretWatches:
    """Concurrency-safe mapping from secrets to the datacenters watching
    them.

    Only the reconciler writes to the registry; the routing engine reads it
    on every secret event. Each key maps to an immutable `frozenset` which
    writers replace under a single lock, so readers never lock and never
    observe a partially updated set.
    """

    def __init__(self, logger: Any = None) -> None:
        self._logger = logger or structlog.getLogger(__name__)
        self._lock = threading.Lock()
        self._watchers: dict[ObjectKey, frozenset[ReconcileRequest]] = {}
        self._watched: dict[ReconcileRequest, frozenset[ObjectKey]] = {}
        # Replaced wholesale on every write; readers take one reference.
        self._selectors: Mapping[ReconcileRequest, SelectorRule] = {}

    def update_watch(
        self, watcher: ReconcileRequest, watched: Iterable[ObjectKey]
    ) -> None:
        """Set the complete list of secrets ``watcher`` depends on.

        Secrets the watcher referenced previously but not any more are
        released.
        """
        new_watched = frozenset(watched)
        with self._lock:
            old_watched = self._watched.get(watcher, frozenset())
            for key in old_watched - new_watched:
                self._discard(key, watcher)
            for key in new_watched - old_watched:
                self._watchers[key] = self._watchers.get(
                    key, frozenset()
                ) | {watcher}
            if new_watched:
                self._watched[watcher] = new_watched
            else:
                self._watched.pop(watcher, None)

        if old_watched != new_watched:
            self._logger.debug(
                "Updated secret watches",
                datacenter=str(watcher),
                added=sorted(str(k) for k in new_watched - old_watched),
                removed=sorted(str(k) for k in old_watched - new_watched),
            )

    def update_selector_watch(
        self,
        watcher: ReconcileRequest,
        match_labels: Mapping[str, str] | None,
    ) -> None:
        """Set or clear the label-selector rule for ``watcher``.

        The rule only matches secrets in the watcher's own namespace.
        """
        with self._lock:
            selectors = dict(self._selectors)
            if match_labels:
                selectors[watcher] = SelectorRule.from_mapping(
                    watcher.namespace, match_labels
                )
            else:
                selectors.pop(watcher, None)
            self._selectors = selectors

    def remove_watcher(self, watcher: ReconcileRequest) -> None:
        """Forget every secret ``watcher`` depends on."""
        with self._lock:
            for key in self._watched.pop(watcher, frozenset()):
                self._discard(key, watcher)
            if watcher in self._selectors:
                selectors = dict(self._selectors)
                del selectors[watcher]
                self._selectors = selectors
        self._logger.debug("Removed secret watcher", datacenter=str(watcher))

    def watchers(self) -> frozenset[ReconcileRequest]:
        """Return every datacenter with a name or selector watch."""
        with self._lock:
            return frozenset(self._watched) | frozenset(self._selectors)

    def watched_by(self, watcher: ReconcileRequest) -> frozenset[ObjectKey]:
        """Return the secrets ``watcher`` depends on by name."""
        return self._watched.get(watcher, frozenset())

    def find_watchers(
        self, meta: Mapping[str, Any], obj: Any = None
    ) -> list[ReconcileRequest]:
        """Return the datacenters that depend on a secret.

        Parameters
        ----------
        meta : `dict`
            The ``metadata`` of the secret.
        obj : optional
            The full secret body. Matching only needs the metadata.

        Returns
        -------
        list of `ReconcileRequest`
            The watching datacenters, sorted.
        """
        namespace = meta.get("namespace")
        name = meta.get("name")
        found: set[ReconcileRequest] = set()
        if namespace and name:
            found.update(
                self._watchers.get(ObjectKey(namespace, name), frozenset())
            )
        selectors = self._selectors
        found.update(
            watcher
            for watcher, rule in selectors.items()
            if rule.matches(meta)
        )
        return sorted(found)

    def _discard(self, key: ObjectKey, watcher: ReconcileRequest) -> None:
        # Caller holds the lock.
        remaining = self._watchers.get(key, frozenset()) - {watcher}
        if remaining:
            self._watchers[key] = remaining
        else:
            self._watchers.pop(key, None)
