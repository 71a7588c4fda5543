"""Tests for the cassoperator.secretwatches and cassoperator.nodeindex
modules.
"""

from __future__ import annotations

import threading

from cassoperator.events import ReconcileRequest
from cassoperator.nodeindex import NodeIndex
from cassoperator.secretwatches import ObjectKey, SecretWatches

DC1 = ReconcileRequest("ns", "dc1")
DC2 = ReconcileRequest("ns", "dc2")


def meta(name: str, namespace: str = "ns", **labels: str) -> dict:
    return {"name": name, "namespace": namespace, "labels": labels}


def test_find_watchers_by_name() -> None:
    watches = SecretWatches()
    watches.update_watch(DC1, [ObjectKey("ns", "superuser")])
    watches.update_watch(
        DC2, [ObjectKey("ns", "superuser"), ObjectKey("ns", "users")]
    )

    assert watches.find_watchers(meta("superuser")) == [DC1, DC2]
    assert watches.find_watchers(meta("users")) == [DC2]
    assert watches.find_watchers(meta("superuser", namespace="other")) == []
    assert watches.find_watchers({}) == []


def test_update_watch_releases_stale_entries() -> None:
    watches = SecretWatches()
    watches.update_watch(
        DC1, [ObjectKey("ns", "old-secret"), ObjectKey("ns", "kept")]
    )
    watches.update_watch(
        DC1, [ObjectKey("ns", "kept"), ObjectKey("ns", "new-secret")]
    )

    assert watches.find_watchers(meta("old-secret")) == []
    assert watches.find_watchers(meta("kept")) == [DC1]
    assert watches.find_watchers(meta("new-secret")) == [DC1]
    assert watches.watched_by(DC1) == {
        ObjectKey("ns", "kept"),
        ObjectKey("ns", "new-secret"),
    }

    watches.update_watch(DC1, [])
    assert watches.find_watchers(meta("kept")) == []
    assert watches.watched_by(DC1) == frozenset()


def test_remove_watcher() -> None:
    watches = SecretWatches()
    watches.update_watch(DC1, [ObjectKey("ns", "shared")])
    watches.update_watch(DC2, [ObjectKey("ns", "shared")])
    watches.update_selector_watch(DC1, {"team": "data"})

    watches.remove_watcher(DC1)

    assert watches.find_watchers(meta("shared")) == [DC2]
    assert watches.find_watchers(meta("anything", team="data")) == []


def test_selector_watch() -> None:
    watches = SecretWatches()
    watches.update_selector_watch(DC1, {"team": "data", "tier": "db"})

    assert watches.find_watchers(meta("x", team="data", tier="db")) == [DC1]
    assert watches.find_watchers(meta("x", team="data")) == []
    assert (
        watches.find_watchers(
            meta("x", namespace="other", team="data", tier="db")
        )
        == []
    )

    watches.update_selector_watch(DC1, None)
    assert watches.find_watchers(meta("x", team="data", tier="db")) == []


def test_concurrent_reads_never_see_torn_sets() -> None:
    """Readers always see a set that some writer published in full."""
    watches = SecretWatches()
    key = ObjectKey("ns", "shared")
    watchers = [ReconcileRequest("ns", f"dc{i}") for i in range(20)]
    stop = threading.Event()
    errors: list[str] = []

    def writer(watcher: ReconcileRequest) -> None:
        while not stop.is_set():
            watches.update_watch(watcher, [key])
            watches.update_watch(watcher, [])

    def reader() -> None:
        while not stop.is_set():
            found = watches.find_watchers(meta("shared"))
            if len(found) != len(set(found)):
                errors.append("duplicate watcher")
            if not set(found) <= set(watchers):
                errors.append("unknown watcher")

    threads = [threading.Thread(target=writer, args=(w,)) for w in watchers]
    threads += [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    stop.wait(0.2)
    stop.set()
    for thread in threads:
        thread.join()

    assert errors == []
    for watcher in watchers:
        watches.remove_watcher(watcher)
    assert watches.find_watchers(meta("shared")) == []


def test_node_index() -> None:
    index = NodeIndex()
    index.set_nodes(DC1, ["node-1", "node-2", None])
    index.set_nodes(DC2, ["node-2"])

    assert index.datacenters_for_node("node-1") == [DC1]
    assert index.datacenters_for_node("node-2") == [DC1, DC2]

    index.set_nodes(DC1, ["node-3"])
    assert index.datacenters_for_node("node-1") == []
    assert index.datacenters_for_node("node-2") == [DC2]
    assert index.datacenters_for_node("node-3") == [DC1]

    index.forget(DC2)
    assert index.datacenters_for_node("node-2") == []
