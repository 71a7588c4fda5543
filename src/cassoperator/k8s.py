"""Helpers for interacting with Kubernetes APIs."""

__all__ = ("create_k8sclient", "get_datacenter", "list_datacenter_pods")

import json
from typing import Any

import kubernetes

from .oplabels import (
    DATACENTER_GROUP,
    DATACENTER_LABEL,
    DATACENTER_PLURAL,
    DATACENTER_VERSION,
)


def create_k8sclient() -> kubernetes.client:
    """Get a Kubernetes client configured with available cluster
    authentication.

    If in-cluster authentication is available, that is used. Otherwise
    this function falls-back to using a kubectl config file, which is
    appropriate for development.
    """
    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()
    return kubernetes.client


def get_datacenter(
    *,
    namespace: str,
    name: str,
    k8s_client: Any,
) -> dict[str, Any]:
    """Get a CassandraDatacenter resource.

    Parameters
    ----------
    namespace : `str`
        The Kubernetes namespace of the CassandraDatacenter.
    name : `str`
        The name of the CassandraDatacenter.
    k8s_client
        A Kubernetes client (see `create_k8sclient`).

    Returns
    -------
    datacenter : `dict`
        The raw CassandraDatacenter manifest.

    Raises
    ------
    kubernetes.client.exceptions.ApiException
        Raised with status 404 if the datacenter does not exist.
    """
    api = k8s_client.CustomObjectsApi()
    result = api.get_namespaced_custom_object(
        group=DATACENTER_GROUP,
        version=DATACENTER_VERSION,
        namespace=namespace,
        plural=DATACENTER_PLURAL,
        name=name,
        _preload_content=False,
    )
    return json.loads(result.data)


def list_datacenter_pods(
    *,
    namespace: str,
    name: str,
    k8s_client: Any,
) -> list[dict[str, Any]]:
    """List the pods labelled as belonging to a CassandraDatacenter.

    Parameters
    ----------
    namespace : `str`
        The Kubernetes namespace of the CassandraDatacenter.
    name : `str`
        The name of the CassandraDatacenter.
    k8s_client
        A Kubernetes client (see `create_k8sclient`).

    Returns
    -------
    pods : `list` of `dict`
        The raw Pod manifests.
    """
    api = k8s_client.CoreV1Api()
    result = api.list_namespaced_pod(
        namespace=namespace,
        label_selector=f"{DATACENTER_LABEL}={name}",
        _preload_content=False,
    )
    return json.loads(result.data).get("items", [])
