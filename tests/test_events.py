"""Tests for the cassoperator.events module."""

from __future__ import annotations

import pytest

from cassoperator.events import (
    Event,
    ReconcileRequest,
    Taint,
    as_node,
    taints_of,
)


def test_reconcile_request_parse() -> None:
    request = ReconcileRequest.parse("ns/dc1")
    assert request == ReconcileRequest("ns", "dc1")
    assert str(request) == "ns/dc1"

    with pytest.raises(ValueError):
        ReconcileRequest.parse("dc1")
    with pytest.raises(ValueError):
        ReconcileRequest.parse("ns/")


def test_requests_are_interchangeable() -> None:
    requests = {ReconcileRequest("ns", "dc1"), ReconcileRequest("ns", "dc1")}
    assert len(requests) == 1


def test_event_objects() -> None:
    old = {"metadata": {"name": "a"}}
    new = {"metadata": {"name": "b"}}
    assert list(Event.update(old, new).objects()) == [old, new]
    assert list(Event.update(None, new).objects()) == [new]
    assert list(Event.delete(old).objects()) == [old]


def test_as_node() -> None:
    node = {"kind": "Node", "metadata": {"name": "n"}}
    assert as_node(node).ok
    assert as_node(node).value is node
    assert as_node(None).ok
    assert as_node(None).value is None
    assert as_node({"metadata": {"name": "n"}}).ok
    assert not as_node({"kind": "Pod", "metadata": {}}).ok
    assert not as_node(["not", "a", "mapping"]).ok
    assert not as_node({"kind": "Node", "metadata": "broken"}).ok


def test_taints_of() -> None:
    node = {
        "spec": {
            "taints": [
                {"key": "k", "value": "v", "effect": "NoSchedule"},
                {"key": "k", "value": "v", "effect": "NoSchedule"},
                {
                    "key": "node.kubernetes.io/unreachable",
                    "effect": "NoExecute",
                    "timeAdded": "2020-06-10T12:00:00Z",
                },
            ]
        }
    }
    assert taints_of(node) == {
        Taint("k", "v", "NoSchedule"),
        Taint("node.kubernetes.io/unreachable", "", "NoExecute"),
    }
    assert taints_of({"spec": {}}) == frozenset()
    assert taints_of({}) == frozenset()
