"""The reconciler contract, and the dependency tracking it owes the watch
engine.

Rolling out StatefulSet changes is delegated to a ``rollout`` callable. What
lives here is the part of reconciliation the event-routing engine relies on:
keeping the dynamic secret watches and the node index in step with each
datacenter's current spec and pods.
"""

from __future__ import annotations

__all__ = (
    "DatacenterReconciler",
    "Reconciler",
    "Result",
    "referenced_secrets",
)

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import kopf
import structlog
from kubernetes.client.exceptions import ApiException

from .events import ReconcileRequest
from .k8s import get_datacenter, list_datacenter_pods
from .nodeindex import NodeIndex
from .secretwatches import ObjectKey, SecretWatches


@dataclass(frozen=True)
class Result:
    """Outcome of a successful reconciliation pass.

    ``requeue_after`` (seconds) takes precedence over ``requeue``.
    """

    requeue: bool = False
    requeue_after: float | None = None


class Reconciler(Protocol):
    def reconcile(self, request: ReconcileRequest) -> Result: ...


def referenced_secrets(
    namespace: str, spec: Mapping[str, Any]
) -> set[ObjectKey]:
    """Return the secrets a CassandraDatacenter spec refers to by name.

    Parameters
    ----------
    namespace : `str`
        The namespace of the datacenter; secrets are always resolved there.
    spec : `dict`
        The ``spec`` field of the CassandraDatacenter.

    Returns
    -------
    set of `ObjectKey`
        The superuser secret (explicit or defaulted from the cluster name),
        every ``users[].secretName`` and the ``configSecret``, if set.
    """
    names: set[str] = set()

    superuser = spec.get("superuserSecretName")
    if not superuser and spec.get("clusterName"):
        superuser = f"{spec['clusterName']}-superuser"
    if superuser:
        names.add(superuser)

    for user in spec.get("users") or ():
        if user.get("secretName"):
            names.add(user["secretName"])

    if spec.get("configSecret"):
        names.add(spec["configSecret"])

    return {ObjectKey(namespace, name) for name in names}


def _log_rollout(
    request: ReconcileRequest, datacenter: Mapping[str, Any], logger: Any
) -> Result:
    logger.info("Datacenter reconciled")
    return Result()


class DatacenterReconciler:
    """Reconciler for CassandraDatacenter resources.

    Parameters
    ----------
    k8s_client
        A Kubernetes client (see `cassoperator.k8s.create_k8sclient`).
    secret_watches : `SecretWatches`
        Registry of unowned secrets, updated on every pass.
    node_index : `NodeIndex`
        Index of the nodes hosting each datacenter, updated on every pass.
    rollout : callable, optional
        Called as ``rollout(request, datacenter, logger)`` once dependencies
        are tracked; returns a `Result`.
    logger : optional
        A structlog logger.
    """

    def __init__(
        self,
        *,
        k8s_client: Any,
        secret_watches: SecretWatches,
        node_index: NodeIndex,
        rollout: Callable[..., Result] | None = None,
        logger: Any = None,
    ) -> None:
        self.k8s_client = k8s_client
        self.secret_watches = secret_watches
        self.node_index = node_index
        self.rollout = rollout or _log_rollout
        self.logger = logger or structlog.getLogger(__name__)

    def reconcile(self, request: ReconcileRequest) -> Result:
        log = self.logger.bind(
            datacenter=request.name, namespace=request.namespace
        )
        try:
            datacenter = get_datacenter(
                namespace=request.namespace,
                name=request.name,
                k8s_client=self.k8s_client,
            )
        except ApiException as exc:
            if exc.status == 404:
                log.info("Datacenter not found, releasing its watches")
                self.forget(request)
                return Result()
            raise kopf.TemporaryError(
                f"Could not read CassandraDatacenter {request}: {exc.reason}",
                delay=10,
            ) from exc

        self.secret_watches.update_watch(
            request,
            referenced_secrets(
                request.namespace, datacenter.get("spec") or {}
            ),
        )

        try:
            pods = list_datacenter_pods(
                namespace=request.namespace,
                name=request.name,
                k8s_client=self.k8s_client,
            )
        except ApiException as exc:
            raise kopf.TemporaryError(
                f"Could not list pods of {request}: {exc.reason}", delay=10
            ) from exc
        self.node_index.set_nodes(
            request,
            ((pod.get("spec") or {}).get("nodeName") for pod in pods),
        )

        return self.rollout(request, datacenter, log)

    def forget(self, request: ReconcileRequest) -> None:
        """Drop every dependency recorded for a deleted datacenter."""
        self.secret_watches.remove_watcher(request)
        self.node_index.forget(request)
