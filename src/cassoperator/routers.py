"""Mapping functions from watch events to CassandraDatacenter reconcile
requests.

A router receives an admitted `~cassoperator.events.Event` and returns the
datacenters the change is about: possibly none, never duplicates. For update
events both the old and the new version are routed, so a resource moving
from one datacenter to another notifies both.
"""

from __future__ import annotations

__all__ = (
    "Mapper",
    "NodeRouter",
    "SecretWatchRouter",
    "annotation_router",
    "datacenter_router",
    "label_router",
    "owner_router",
)

from collections.abc import Callable, Iterable
from typing import Any

import structlog

from .events import (
    Event,
    ReconcileRequest,
    annotations_of,
    as_node,
    labels_of,
    name_of,
    namespace_of,
)
from .nodeindex import NodeIndex
from .oplabels import (
    DATACENTER_ANNOTATION,
    DATACENTER_GROUP,
    DATACENTER_KIND,
    DATACENTER_LABEL,
)
from .predicates import has_managed_by_label
from .secretwatches import SecretWatches

Mapper = Callable[[Event], list[ReconcileRequest]]


def _unique(requests: Iterable[ReconcileRequest]) -> list[ReconcileRequest]:
    return list(dict.fromkeys(requests))


def datacenter_router(event: Event) -> list[ReconcileRequest]:
    """Route a CassandraDatacenter event to the datacenter itself."""
    requests = []
    for obj in event.objects():
        namespace, name = namespace_of(obj), name_of(obj)
        if namespace and name:
            requests.append(ReconcileRequest(namespace, name))
    return _unique(requests)


def owner_router(event: Event) -> list[ReconcileRequest]:
    """Route an owned resource to its controlling CassandraDatacenter.

    Only the owner reference flagged ``controller: true`` counts, and only
    when it points at a CassandraDatacenter.
    """
    requests = []
    for obj in event.objects():
        namespace = namespace_of(obj)
        if not namespace:
            continue
        refs = (obj.get("metadata") or {}).get("ownerReferences") or ()
        for ref in refs:
            if not ref.get("controller"):
                continue
            group = ref.get("apiVersion", "").partition("/")[0]
            if ref.get("kind") == DATACENTER_KIND and group == DATACENTER_GROUP:
                requests.append(ReconcileRequest(namespace, ref["name"]))
    return _unique(requests)


def annotation_router(event: Event) -> list[ReconcileRequest]:
    """Route a config secret through its datacenter annotation.

    The annotation value names the datacenter; the secret's own namespace is
    the datacenter's namespace.
    """
    requests = []
    for obj in event.objects():
        dc_name = annotations_of(obj).get(DATACENTER_ANNOTATION)
        namespace = namespace_of(obj)
        if dc_name and namespace:
            requests.append(ReconcileRequest(namespace, dc_name))
    return _unique(requests)


def label_router(event: Event) -> list[ReconcileRequest]:
    """Route a resource carrying both the managed-by label (current or
    legacy value) and the datacenter label.
    """
    requests = []
    for obj in event.objects():
        labels = labels_of(obj)
        if not has_managed_by_label(labels):
            continue
        dc_name = labels.get(DATACENTER_LABEL)
        namespace = namespace_of(obj)
        if dc_name and namespace:
            requests.append(ReconcileRequest(namespace, dc_name))
    return _unique(requests)


class NodeRouter:
    """Route node events to every datacenter with pods on that node."""

    def __init__(self, index: NodeIndex, logger: Any = None) -> None:
        self.index = index
        self.logger = logger or structlog.getLogger(__name__)

    def __call__(self, event: Event) -> list[ReconcileRequest]:
        requests = []
        for obj in event.objects():
            cast = as_node(obj)
            node_name = name_of(obj) if cast.ok else None
            if not node_name:
                self.logger.error(
                    "Node watch received an object that is not a Node",
                    object_type=type(obj).__name__,
                )
                continue
            requests.extend(self.index.datacenters_for_node(node_name))
        return _unique(requests)


class SecretWatchRouter:
    """Route secret events through the dynamic secret watch registry.

    The registry belongs to the reconciler, which keeps it current; this
    router only reads from it.
    """

    def __init__(self, watches: SecretWatches, logger: Any = None) -> None:
        self.watches = watches
        self.logger = logger or structlog.getLogger(__name__)

    def __call__(self, event: Event) -> list[ReconcileRequest]:
        requests = []
        for obj in event.objects():
            requests.extend(
                self.watches.find_watchers(obj.get("metadata") or {}, obj)
            )
        requests = _unique(requests)
        if requests:
            self.logger.debug(
                "Secret has watchers",
                watchers=[str(r) for r in requests],
            )
        return requests
