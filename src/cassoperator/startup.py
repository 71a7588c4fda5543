"""Code intended to run on start-up, before running any handlers."""

from __future__ import annotations

__all__ = ("main", "start_operator")

from typing import Any

import kopf
import structlog

from .config import OperatorConfig
from .k8s import create_k8sclient
from .logconfig import configure_logging
from .nodeindex import NodeIndex
from .reconciliation import DatacenterReconciler
from .registrar import WatchRegistrar
from .secretwatches import SecretWatches
from .workqueue import WorkQueue


def start_operator(
    *,
    config: OperatorConfig | None = None,
    registry: kopf.OperatorRegistry | None = None,
    k8s_client: Any = None,
) -> WatchRegistrar:
    """Wire the reconciler, work queue and watches together and register
    them with kopf.

    Any failure here propagates: the operator must not run with only part
    of its watches in place.
    """
    if config is None:
        config = OperatorConfig.from_environ()
    configure_logging(config.log_level, config.log_format)
    logger = structlog.getLogger("cassoperator")

    if k8s_client is None:
        k8s_client = create_k8sclient()

    secret_watches = SecretWatches(logger=logger)
    node_index = NodeIndex(logger=logger)
    reconciler = DatacenterReconciler(
        k8s_client=k8s_client,
        secret_watches=secret_watches,
        node_index=node_index,
        logger=logger,
    )
    registrar = WatchRegistrar(
        config=config,
        queue=WorkQueue(logger=logger),
        reconciler=reconciler,
        secret_watches=secret_watches,
        node_index=node_index,
        logger=logger,
    )
    registrar.register(registry)
    logger.info(
        "Operator configured",
        psp_enabled=config.psp_enabled,
        watch_namespace=config.watch_namespace,
        workers=config.reconcile_workers,
        resync_interval=config.resync_interval,
    )
    return registrar


def main() -> None:
    """Run the operator standalone, without the ``kopf run`` CLI."""
    config = OperatorConfig.from_environ()
    registry = kopf.OperatorRegistry()
    start_operator(config=config, registry=registry)
    if config.watch_namespace:
        kopf.run(
            registry=registry,
            standalone=True,
            namespaces=[config.watch_namespace],
        )
    else:
        kopf.run(registry=registry, standalone=True, clusterwide=True)
