"""Watch registration: one subscription per watched resource kind.

A `WatchSubscription` pairs a resource kind with an admission predicate and a
mapping to reconcile requests. The `WatchRegistrar` builds the full set from
the operator configuration and binds it to kopf, which delivers each kind's
watch events on its own stream.
"""

from __future__ import annotations

__all__ = (
    "DATACENTERS",
    "EventStream",
    "NODES",
    "PERSISTENT_VOLUME_CLAIMS",
    "POD_DISRUPTION_BUDGETS",
    "RegistrarState",
    "RegistrationError",
    "ResourceKind",
    "SECRETS",
    "SERVICES",
    "STATEFUL_SETS",
    "WatchRegistrar",
    "WatchSubscription",
)

import asyncio
import copy
import enum
import functools
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import kopf
import structlog

from .config import OperatorConfig
from .events import Event, ReconcileRequest
from .nodeindex import NodeIndex
from .oplabels import DATACENTER_GROUP, DATACENTER_PLURAL, DATACENTER_VERSION
from .predicates import (
    Predicate,
    generation_changed,
    has_datacenter_annotation,
    managed_by_predicate,
    node_taints_changed,
)
from .reconciliation import Reconciler
from .routers import (
    Mapper,
    NodeRouter,
    SecretWatchRouter,
    annotation_router,
    datacenter_router,
    label_router,
    owner_router,
)
from .secretwatches import SecretWatches
from .workqueue import WorkQueue, run_worker


class RegistrationError(RuntimeError):
    """Raised when a watch cannot be registered.

    The operator must not start with partial watch coverage.
    """


@dataclass(frozen=True)
class ResourceKind:
    group: str
    version: str
    plural: str

    def __str__(self) -> str:
        if self.group:
            return f"{self.plural}.{self.version}.{self.group}"
        return f"{self.plural}.{self.version}"

    def selector(self) -> tuple[str, ...]:
        """Positional resource specification for kopf decorators; the core
        API group is addressed by its version alone.
        """
        if self.group:
            return (self.group, self.version, self.plural)
        return (self.version, self.plural)


DATACENTERS = ResourceKind(
    DATACENTER_GROUP, DATACENTER_VERSION, DATACENTER_PLURAL
)
STATEFUL_SETS = ResourceKind("apps", "v1", "statefulsets")
POD_DISRUPTION_BUDGETS = ResourceKind("policy", "v1", "poddisruptionbudgets")
SERVICES = ResourceKind("", "v1", "services")
SECRETS = ResourceKind("", "v1", "secrets")
NODES = ResourceKind("", "v1", "nodes")
PERSISTENT_VOLUME_CLAIMS = ResourceKind("", "v1", "persistentvolumeclaims")


@dataclass(frozen=True)
class WatchSubscription:
    """A watched kind, its admission predicate and its request mapping.

    A subscription without a predicate admits every event.
    """

    id: str
    kind: ResourceKind
    mapper: Mapper
    predicate: Predicate | None = None


class RegistrarState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"


class EventStream:
    """Routes the raw watch events of one resource kind.

    kopf hands over each event with only the current body. The stream keeps
    a trimmed snapshot of the last body observed for every object so that it
    can tell creations from updates and give predicates both versions to
    compare. Snapshots hold the type information, the identifying and
    routing metadata, and node taints; events carry snapshots, not full
    bodies.

    Parameters
    ----------
    kind : `ResourceKind`
        The watched kind.
    subscriptions : iterable of `WatchSubscription`
        The subscriptions for ``kind``; each is evaluated independently.
    queue : `WorkQueue`
        Destination of the emitted requests.
    logger : optional
        A structlog logger.
    """

    def __init__(
        self,
        kind: ResourceKind,
        subscriptions: Iterable[WatchSubscription],
        queue: WorkQueue,
        logger: Any = None,
    ) -> None:
        self.kind = kind
        self.subscriptions = tuple(subscriptions)
        self.queue = queue
        if logger is None:
            logger = structlog.getLogger(__name__)
        self.logger = logger.bind(kind=str(kind))
        self._last_seen: dict[str, Mapping[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._last_seen)

    def observe(
        self, raw_type: str | None, body: Mapping[str, Any]
    ) -> Event:
        """Turn a raw watch event into a typed `Event`, updating the
        snapshot of the object.
        """
        key = _object_key(body)
        snapshot = _snapshot(body)
        if raw_type == "DELETED":
            self._last_seen.pop(key, None)
            return Event.delete(snapshot)

        if raw_type in (None, "ADDED", "MODIFIED"):
            if key in self._last_seen:
                old = self._last_seen[key]
                self._last_seen[key] = snapshot
                return Event.update(old, snapshot)
            self._last_seen[key] = snapshot
            if raw_type == "MODIFIED":
                return Event.update(None, snapshot)
            return Event.create(snapshot)

        return Event.generic(snapshot)

    def dispatch(self, event: Event) -> list[ReconcileRequest]:
        """Run every subscription on ``event`` and enqueue the requests."""
        emitted: list[ReconcileRequest] = []
        for subscription in self.subscriptions:
            for request in self._route(subscription, event):
                self.queue.add(request)
                emitted.append(request)
        return emitted

    def handle(
        self, raw_type: str | None, body: Mapping[str, Any]
    ) -> list[ReconcileRequest]:
        return self.dispatch(self.observe(raw_type, body))

    async def on_event(self, event: Mapping[str, Any], **_: Any) -> None:
        """kopf ``on.event`` handler."""
        body = event.get("object")
        if body is None:
            return
        self.handle(event.get("type"), body)

    def _route(
        self, subscription: WatchSubscription, event: Event
    ) -> list[ReconcileRequest]:
        if subscription.predicate is not None:
            try:
                admitted = subscription.predicate(event)
            except Exception:
                self.logger.exception(
                    "Admission predicate failed, admitting event",
                    subscription=subscription.id,
                )
                admitted = True
            if not admitted:
                return []

        try:
            requests = subscription.mapper(event)
        except Exception:
            self.logger.exception(
                "Failed to map event to reconcile requests",
                subscription=subscription.id,
                event_type=event.type.value,
            )
            return []

        for request in requests:
            self.logger.debug(
                "Adding reconciliation request",
                subscription=subscription.id,
                datacenter=request.name,
                namespace=request.namespace,
            )
        return requests


_SNAPSHOT_METADATA = (
    "name",
    "namespace",
    "uid",
    "generation",
    "resourceVersion",
    "labels",
    "annotations",
    "ownerReferences",
)


def _snapshot(body: Mapping[str, Any]) -> dict[str, Any]:
    """Copy the parts of a body that predicates and routers read."""
    snapshot: dict[str, Any] = {
        key: body[key] for key in ("apiVersion", "kind") if key in body
    }
    meta = body.get("metadata")
    if isinstance(meta, Mapping):
        snapshot["metadata"] = {
            key: copy.deepcopy(meta[key])
            for key in _SNAPSHOT_METADATA
            if key in meta
        }
    elif meta is not None:
        snapshot["metadata"] = meta
    spec = body.get("spec")
    if isinstance(spec, Mapping) and "taints" in spec:
        snapshot["spec"] = {"taints": copy.deepcopy(spec["taints"])}
    return snapshot


def _object_key(body: Mapping[str, Any]) -> str:
    meta = body.get("metadata")
    if not isinstance(meta, Mapping):
        meta = {}
    uid = meta.get("uid")
    if uid:
        return uid
    return f"{meta.get('namespace', '')}/{meta.get('name', '')}"


class WatchRegistrar:
    """Builds the operator's watch subscriptions and registers them with
    kopf.

    Parameters
    ----------
    config : `OperatorConfig`
        Read once; decides whether the Node and PersistentVolumeClaim
        watches exist.
    queue : `WorkQueue`
        Queue receiving every routed request.
    reconciler : `Reconciler`
        Consumer of the queue.
    secret_watches : `SecretWatches`
        The reconciler's dynamic secret watch registry.
    node_index : `NodeIndex`
        The reconciler's node index.
    logger : optional
        A structlog logger.
    """

    def __init__(
        self,
        *,
        config: OperatorConfig,
        queue: WorkQueue,
        reconciler: Reconciler,
        secret_watches: SecretWatches,
        node_index: NodeIndex,
        logger: Any = None,
    ) -> None:
        self.config = config
        self.queue = queue
        self.reconciler = reconciler
        self.secret_watches = secret_watches
        self.node_index = node_index
        self.logger = logger or structlog.getLogger(__name__)
        self.state = RegistrarState.UNREGISTERED
        self.streams: dict[ResourceKind, EventStream] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._resync_task: asyncio.Task[None] | None = None

    def subscriptions(self) -> list[WatchSubscription]:
        """Return the subscriptions implied by the configuration."""
        subscriptions = [
            # Status writes do not bump the generation, so the reconciler's
            # own status updates are filtered out here.
            WatchSubscription(
                id="datacenter",
                kind=DATACENTERS,
                predicate=generation_changed,
                mapper=datacenter_router,
            ),
            WatchSubscription(
                id="owned-statefulset",
                kind=STATEFUL_SETS,
                predicate=managed_by_predicate,
                mapper=owner_router,
            ),
            WatchSubscription(
                id="owned-poddisruptionbudget",
                kind=POD_DISRUPTION_BUDGETS,
                predicate=managed_by_predicate,
                mapper=owner_router,
            ),
            WatchSubscription(
                id="owned-service",
                kind=SERVICES,
                predicate=managed_by_predicate,
                mapper=owner_router,
            ),
            WatchSubscription(
                id="config-secret",
                kind=SECRETS,
                predicate=has_datacenter_annotation,
                mapper=annotation_router,
            ),
        ]

        if self.config.psp_enabled:
            subscriptions.extend(
                [
                    WatchSubscription(
                        id="node-taints",
                        kind=NODES,
                        predicate=functools.partial(
                            node_taints_changed, logger=self.logger
                        ),
                        mapper=NodeRouter(self.node_index, self.logger),
                    ),
                    WatchSubscription(
                        id="datacenter-pvc",
                        kind=PERSISTENT_VOLUME_CLAIMS,
                        mapper=label_router,
                    ),
                ]
            )

        # Secrets discovered during reconciliation. Every secret event goes
        # through the registry lookup.
        subscriptions.append(
            WatchSubscription(
                id="dynamic-secret",
                kind=SECRETS,
                mapper=SecretWatchRouter(self.secret_watches, self.logger),
            )
        )
        return subscriptions

    def register(
        self, registry: kopf.OperatorRegistry | None = None
    ) -> dict[ResourceKind, EventStream]:
        """Register every subscription with kopf.

        Parameters
        ----------
        registry : `kopf.OperatorRegistry`, optional
            The registry to add handlers to. Defaults to kopf's global
            registry, which ``kopf run`` uses.

        Returns
        -------
        dict
            The event stream of each watched kind.

        Raises
        ------
        RegistrationError
            Raised if any handler cannot be registered, or if the registrar
            has already registered its watches.
        """
        if self.state is RegistrarState.REGISTERED:
            raise RegistrationError("Watches are already registered")
        if registry is None:
            registry = kopf.get_default_registry()

        by_kind: dict[ResourceKind, list[WatchSubscription]] = {}
        for subscription in self.subscriptions():
            by_kind.setdefault(subscription.kind, []).append(subscription)

        streams = {}
        for kind, subscriptions in by_kind.items():
            stream = EventStream(kind, subscriptions, self.queue, self.logger)
            try:
                kopf.on.event(
                    *kind.selector(),
                    id=f"route-{kind.plural}",
                    registry=registry,
                )(stream.on_event)
            except Exception as exc:
                raise RegistrationError(
                    f"Could not register watch for {kind}"
                ) from exc
            streams[kind] = stream
            self.logger.info(
                "Registered watch",
                kind=str(kind),
                subscriptions=[s.id for s in subscriptions],
            )

        try:
            kopf.on.startup(id="start-reconcile-workers", registry=registry)(
                self.start_workers
            )
            kopf.on.cleanup(id="stop-reconcile-workers", registry=registry)(
                self.stop_workers
            )
        except Exception as exc:
            raise RegistrationError(
                "Could not register worker lifecycle handlers"
            ) from exc

        self.streams = streams
        self.state = RegistrarState.REGISTERED
        return streams

    def resync_tracked(self) -> list[ReconcileRequest]:
        """Enqueue every datacenter the secret and node registries track.

        A datacenter deleted while a watch stream was down never produces a
        delete event. Reconciling it again finds it gone and releases its
        registry entries.
        """
        tracked = sorted(
            self.secret_watches.watchers() | self.node_index.datacenters()
        )
        for request in tracked:
            self.queue.add(request)
        if tracked:
            self.logger.debug(
                "Resyncing tracked datacenters",
                datacenters=[str(r) for r in tracked],
            )
        return tracked

    async def start_workers(self, **_: Any) -> None:
        for _index in range(self.config.reconcile_workers):
            task = asyncio.create_task(
                run_worker(self.queue, self.reconciler, self.logger)
            )
            task.add_done_callback(self._on_worker_exit)
            self._workers.append(task)
        if self.config.resync_interval > 0:
            self._resync_task = asyncio.create_task(self._resync_loop())
        self.logger.info(
            "Started reconcile workers", workers=len(self._workers)
        )

    async def stop_workers(self, **_: Any) -> None:
        self.queue.shutdown()
        if self._resync_task is not None:
            self._resync_task.cancel()
            await asyncio.gather(self._resync_task, return_exceptions=True)
            self._resync_task = None
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        self.logger.info("Stopped reconcile workers")

    async def _resync_loop(self) -> None:
        while not self.queue.shutting_down:
            await asyncio.sleep(self.config.resync_interval)
            self.resync_tracked()

    def _on_worker_exit(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Reconcile worker crashed", exc_info=exc)
        elif not self.queue.shutting_down:
            self.logger.error("Reconcile worker exited before shutdown")
