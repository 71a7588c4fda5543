"""Tests for the cassoperator.routers module."""

from __future__ import annotations

from typing import Any

import yaml

from cassoperator.events import Event, ReconcileRequest
from cassoperator.nodeindex import NodeIndex
from cassoperator.routers import (
    NodeRouter,
    SecretWatchRouter,
    annotation_router,
    datacenter_router,
    label_router,
    owner_router,
)
from cassoperator.secretwatches import ObjectKey, SecretWatches


def make_secret(
    name: str = "my-secret",
    namespace: str = "ns",
    annotations: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "annotations": annotations or {},
            "labels": labels or {},
        },
        "data": {"cassandra-yaml": "e30="},
    }


def test_datacenter_router() -> None:
    dc = {"metadata": {"name": "dc1", "namespace": "ns"}}
    assert datacenter_router(Event.create(dc)) == [
        ReconcileRequest("ns", "dc1")
    ]
    assert datacenter_router(Event.update(dc, dc)) == [
        ReconcileRequest("ns", "dc1")
    ]


def test_owner_router() -> None:
    manifest = """
apiVersion: apps/v1
kind: StatefulSet
metadata:
  name: cluster1-dc1-r1-sts
  namespace: ns
  labels:
    app.kubernetes.io/managed-by: cass-operator
  ownerReferences:
  - apiVersion: cassandra.datastax.com/v1beta1
    kind: CassandraDatacenter
    name: dc1
    uid: 3a1b
    controller: true
    blockOwnerDeletion: true
"""
    sts = yaml.safe_load(manifest)
    assert owner_router(Event.create(sts)) == [ReconcileRequest("ns", "dc1")]


def test_owner_router_ignores_other_owners() -> None:
    manifest = """
apiVersion: v1
kind: Service
metadata:
  name: cluster1-dc1-service
  namespace: ns
  ownerReferences:
  - apiVersion: cassandra.datastax.com/v1beta1
    kind: CassandraDatacenter
    name: not-the-controller
    uid: 3a1b
  - apiVersion: apps/v1
    kind: Deployment
    name: something-else
    uid: 99ff
    controller: true
"""
    svc = yaml.safe_load(manifest)
    assert owner_router(Event.create(svc)) == []


def test_annotation_router_scenario() -> None:
    """A config secret annotated for dc1 routes to ns/dc1."""
    secret = make_secret(
        annotations={"cassandra.datastax.com/datacenter": "dc1"}
    )
    for event in (
        Event.create(secret),
        Event.update(secret, secret),
        Event.delete(secret),
    ):
        assert annotation_router(event) == [ReconcileRequest("ns", "dc1")]


def test_annotation_router_absent() -> None:
    secret = make_secret(annotations={"unrelated": "dc1"})
    assert annotation_router(Event.create(secret)) == []


def test_annotation_router_retarget() -> None:
    """Moving the annotation to another datacenter notifies both."""
    old = make_secret(annotations={"cassandra.datastax.com/datacenter": "dc1"})
    new = make_secret(annotations={"cassandra.datastax.com/datacenter": "dc2"})
    assert annotation_router(Event.update(old, new)) == [
        ReconcileRequest("ns", "dc1"),
        ReconcileRequest("ns", "dc2"),
    ]

    # Removing the annotation still notifies the former datacenter.
    assert annotation_router(Event.update(old, make_secret())) == [
        ReconcileRequest("ns", "dc1")
    ]


def test_label_router_legacy_value() -> None:
    manifest = """
apiVersion: v1
kind: PersistentVolumeClaim
metadata:
  name: server-data-cluster1-dc1-r1-sts-0
  namespace: ns
  labels:
    app.kubernetes.io/managed-by: cass-operator-defunct
    cassandra.datastax.com/datacenter: dc1
"""
    pvc = yaml.safe_load(manifest)
    assert label_router(Event.create(pvc)) == [ReconcileRequest("ns", "dc1")]


def test_label_router_requires_both_labels() -> None:
    managed_only = {
        "metadata": {
            "namespace": "ns",
            "labels": {"app.kubernetes.io/managed-by": "cass-operator"},
        }
    }
    dc_only = {
        "metadata": {
            "namespace": "ns",
            "labels": {"cassandra.datastax.com/datacenter": "dc1"},
        }
    }
    foreign = {
        "metadata": {
            "namespace": "ns",
            "labels": {
                "app.kubernetes.io/managed-by": "someone-else",
                "cassandra.datastax.com/datacenter": "dc1",
            },
        }
    }
    assert label_router(Event.create(managed_only)) == []
    assert label_router(Event.create(dc_only)) == []
    assert label_router(Event.create(foreign)) == []


def test_node_router_scenario() -> None:
    """A node hosting two datacenters routes to both."""
    index = NodeIndex()
    index.set_nodes(ReconcileRequest("ns", "dc1"), ["node-1", "node-2"])
    index.set_nodes(ReconcileRequest("ns", "dc2"), ["node-1"])
    index.set_nodes(ReconcileRequest("ns", "dc3"), ["node-3"])

    node = {"kind": "Node", "metadata": {"name": "node-1"}, "spec": {}}
    tainted = {
        "kind": "Node",
        "metadata": {"name": "node-1"},
        "spec": {
            "taints": [{"key": "k", "value": "v", "effect": "NoSchedule"}]
        },
    }
    router = NodeRouter(index)
    assert router(Event.update(node, tainted)) == [
        ReconcileRequest("ns", "dc1"),
        ReconcileRequest("ns", "dc2"),
    ]


def test_node_router_unknown_node() -> None:
    router = NodeRouter(NodeIndex())
    node = {"kind": "Node", "metadata": {"name": "node-9"}}
    assert router(Event.create(node)) == []


def test_secret_watch_router_scenario() -> None:
    """Registry lookups route regardless of annotations."""
    watches = SecretWatches()
    watches.update_watch(
        ReconcileRequest("ns", "dc3"), [ObjectKey("ns", "tls-keystore")]
    )
    router = SecretWatchRouter(watches)

    secret = make_secret(
        name="tls-keystore",
        annotations={"cassandra.datastax.com/datacenter": "dc1"},
    )
    assert router(Event.update(secret, secret)) == [
        ReconcileRequest("ns", "dc3")
    ]
    assert router(Event.create(make_secret(name="unrelated"))) == []
