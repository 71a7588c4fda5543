"""Admission predicates run on the event-delivery path.

A predicate decides whether an event is worth mapping to reconcile requests
at all. Predicates are pure: they never call the Kubernetes API and never
block.
"""

from __future__ import annotations

__all__ = (
    "Predicate",
    "generation_changed",
    "has_datacenter_annotation",
    "has_managed_by_label",
    "managed_by_predicate",
    "node_taints_changed",
)

from collections.abc import Callable, Mapping
from typing import Any

import structlog

from .events import (
    Event,
    EventType,
    annotations_of,
    as_node,
    labels_of,
    taints_of,
)
from .oplabels import DATACENTER_ANNOTATION, MANAGED_BY_LABEL, MANAGED_BY_VALUES

Predicate = Callable[[Event], bool]


def has_managed_by_label(labels: Mapping[str, str]) -> bool:
    """Return `True` if ``labels`` mark a resource as created by this
    operator, under either the current or the legacy value.
    """
    return labels.get(MANAGED_BY_LABEL) in MANAGED_BY_VALUES


def managed_by_predicate(event: Event) -> bool:
    """Admit events on resources carrying the managed-by label.

    For updates, either version carrying the label is enough, so transitions
    into and out of ownership are still observed.
    """
    return any(has_managed_by_label(labels_of(obj)) for obj in event.objects())


def has_datacenter_annotation(event: Event) -> bool:
    """Admit events on resources annotated with a datacenter name."""
    return any(
        DATACENTER_ANNOTATION in annotations_of(obj)
        for obj in event.objects()
    )


def generation_changed(event: Event) -> bool:
    """Admit an update only when ``metadata.generation`` moved.

    Status writes do not bump the generation, so the reconciler can update
    status on every pass without re-triggering itself. Create, delete and
    generic events are always admitted.
    """
    if event.type is not EventType.UPDATE:
        return True
    if event.old is None or event.new is None:
        return True
    old_generation = (event.old.get("metadata") or {}).get("generation")
    new_generation = (event.new.get("metadata") or {}).get("generation")
    return old_generation != new_generation


def node_taints_changed(event: Event, logger: Any = None) -> bool:
    """Admit node updates whose set of taints changed.

    Parameters
    ----------
    event : `Event`
        The node event.
    logger : optional
        A structlog logger. If not provided, a module logger is used.

    Returns
    -------
    bool
        `True` when the event should be routed. Payloads that are not Nodes
        are admitted (and logged) rather than dropped: a spurious
        reconciliation only wastes work, a missed one is a bug.
    """
    if event.type is not EventType.UPDATE:
        return True

    old = as_node(event.old)
    new = as_node(event.new)
    if not old.ok or not new.ok:
        if logger is None:
            logger = structlog.getLogger(__name__)
        logger.error(
            "Failed to cast update event objects to type Node",
            object_old=type(event.old).__name__,
            object_new=type(event.new).__name__,
        )
        return True

    if old.value is None and new.value is None:
        return False
    if old.value is None or new.value is None:
        return True

    return taints_of(old.value) != taints_of(new.value)
