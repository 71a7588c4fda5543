"""Index of which CassandraDatacenters have pods scheduled on which nodes."""

__all__ = ("NodeIndex",)

import threading
from collections.abc import Iterable
from typing import Any

import structlog

from .events import ReconcileRequest


class NodeIndex:
    """Concurrency-safe node name to datacenter index.

    The reconciler records the nodes hosting a datacenter's pods on every
    pass; the node watch reads the index to route taint changes. Writers
    replace immutable sets under a lock, readers never lock.
    """

    def __init__(self, logger: Any = None) -> None:
        self._logger = logger or structlog.getLogger(__name__)
        self._lock = threading.Lock()
        self._by_node: dict[str, frozenset[ReconcileRequest]] = {}
        self._by_datacenter: dict[ReconcileRequest, frozenset[str]] = {}

    def set_nodes(
        self, datacenter: ReconcileRequest, nodes: Iterable[str]
    ) -> None:
        """Record the complete set of nodes hosting ``datacenter``."""
        new_nodes = frozenset(n for n in nodes if n)
        with self._lock:
            old_nodes = self._by_datacenter.get(datacenter, frozenset())
            for node in old_nodes - new_nodes:
                self._discard(node, datacenter)
            for node in new_nodes - old_nodes:
                self._by_node[node] = self._by_node.get(
                    node, frozenset()
                ) | {datacenter}
            if new_nodes:
                self._by_datacenter[datacenter] = new_nodes
            else:
                self._by_datacenter.pop(datacenter, None)

        if old_nodes != new_nodes:
            self._logger.debug(
                "Updated datacenter nodes",
                datacenter=str(datacenter),
                nodes=sorted(new_nodes),
            )

    def forget(self, datacenter: ReconcileRequest) -> None:
        with self._lock:
            for node in self._by_datacenter.pop(datacenter, frozenset()):
                self._discard(node, datacenter)

    def datacenters(self) -> frozenset[ReconcileRequest]:
        with self._lock:
            return frozenset(self._by_datacenter)

    def datacenters_for_node(self, node_name: str) -> list[ReconcileRequest]:
        """Return the datacenters with at least one pod on ``node_name``."""
        return sorted(self._by_node.get(node_name, frozenset()))

    def _discard(self, node: str, datacenter: ReconcileRequest) -> None:
        remaining = self._by_node.get(node, frozenset()) - {datacenter}
        if remaining:
            self._by_node[node] = remaining
        else:
            self._by_node.pop(node, None)
