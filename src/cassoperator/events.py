"""Value types flowing through the event-routing engine."""

from __future__ import annotations

__all__ = (
    "Cast",
    "Event",
    "EventType",
    "ReconcileRequest",
    "Taint",
    "annotations_of",
    "as_kind",
    "as_node",
    "labels_of",
    "name_of",
    "namespace_of",
    "taints_of",
)

import enum
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

Body = Mapping[str, Any]


@dataclass(frozen=True, order=True)
class ReconcileRequest:
    """Identity of a CassandraDatacenter to reconcile.

    Requests for the same identity are interchangeable; coalescing them is
    the work queue's job.
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ReconcileRequest:
        """Build a request from its ``namespace/name`` form."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"Expected namespace/name, got {value!r}")
        return cls(namespace=namespace, name=name)


class EventType(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    GENERIC = "generic"


@dataclass(frozen=True)
class Event:
    """A typed change on a watched resource.

    Create and generic events only carry ``new``; delete events only carry
    ``old``. Update events carry both, although either may be `None` when the
    previous version was never observed.
    """

    type: EventType
    old: Body | None = None
    new: Body | None = None

    @classmethod
    def create(cls, new: Body) -> Event:
        return cls(EventType.CREATE, new=new)

    @classmethod
    def update(cls, old: Body | None, new: Body | None) -> Event:
        return cls(EventType.UPDATE, old=old, new=new)

    @classmethod
    def delete(cls, old: Body) -> Event:
        return cls(EventType.DELETE, old=old)

    @classmethod
    def generic(cls, new: Body) -> Event:
        return cls(EventType.GENERIC, new=new)

    def objects(self) -> Iterator[Body]:
        """Iterate over the payloads that are present, old first."""
        for obj in (self.old, self.new):
            if obj is not None:
                yield obj


@dataclass(frozen=True)
class Cast:
    """Result of checking a payload against an expected resource kind.

    An absent payload casts successfully to `None`; only a payload of the
    wrong shape fails.
    """

    ok: bool
    value: Body | None = None


def as_kind(obj: Any, kind: str) -> Cast:
    """Check that ``obj`` is a resource body of the given ``kind``.

    Bodies without a ``kind`` field are accepted, since list items returned by
    the API server omit it.
    """
    if obj is None:
        return Cast(ok=True)
    if not isinstance(obj, Mapping):
        return Cast(ok=False)
    if obj.get("kind", kind) != kind:
        return Cast(ok=False)
    if not isinstance(obj.get("metadata", {}), Mapping):
        return Cast(ok=False)
    return Cast(ok=True, value=obj)


def as_node(obj: Any) -> Cast:
    return as_kind(obj, "Node")


@dataclass(frozen=True)
class Taint:
    """A node taint reduced to what identifies it."""

    key: str
    value: str
    effect: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Taint:
        return cls(
            key=data.get("key", ""),
            value=data.get("value") or "",
            effect=data.get("effect", ""),
        )


def _metadata(obj: Body) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def name_of(obj: Body) -> str | None:
    return _metadata(obj).get("name")


def namespace_of(obj: Body) -> str | None:
    return _metadata(obj).get("namespace")


def labels_of(obj: Body) -> Mapping[str, str]:
    return _metadata(obj).get("labels") or {}


def annotations_of(obj: Body) -> Mapping[str, str]:
    return _metadata(obj).get("annotations") or {}


def taints_of(node: Body) -> frozenset[Taint]:
    """Return the node's taints as a set.

    Ordering is not significant and duplicate entries collapse.
    """
    spec = node.get("spec") or {}
    return frozenset(Taint.from_dict(t) for t in spec.get("taints") or ())
