"""Creation and bulk cleanup of test namespaces."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from kubernetes_asyncio.client import V1Namespace, V1ObjectMeta

from ..constants import TEST_RESOURCE_LABEL
from ..storage.kubernetes.namespace import NamespaceStorage
from ..timeout import Timeout
from .cleaner import Cleaner

if TYPE_CHECKING:
    from ..clusters.base import Cluster

__all__ = [
    "cleanup_generated_resources",
    "create_namespace",
    "generate_namespace",
]


def _check_creator(creator: str) -> None:
    if not creator:
        raise ValueError('Empty string "" is not a valid creator ID')


def _storage(cluster: Cluster) -> NamespaceStorage:
    return NamespaceStorage(
        cluster.api_client,
        cluster.logger,
        conflict_retries=cluster.config.conflict_retries,
        conflict_retry_delay=cluster.config.conflict_retry_delay,
    )


async def create_namespace(
    cluster: Cluster, name: str, timeout: Timeout
) -> None:
    """Create a namespace, succeeding if it already exists.

    Parameters
    ----------
    cluster
        Cluster to create the namespace in.
    name
        Name of the namespace.
    timeout
        Timeout on operation.

    Raises
    ------
    KubernetesError
        Raised for exceptions from the Kubernetes API server.
    OperationTimeoutError
        Raised if the timeout expired.
    """
    body = V1Namespace(metadata=V1ObjectMeta(name=name))
    await _storage(cluster).create(body, timeout, exists_ok=True)


async def generate_namespace(
    cluster: Cluster, creator: str, timeout: Timeout
) -> V1Namespace:
    """Create a transient namespace with a random name.

    The namespace is labelled with the creator so that everything a creator
    made can be found and removed with `cleanup_generated_resources`.

    Parameters
    ----------
    cluster
        Cluster to create the namespace in.
    creator
        Identifier of the creator, such as the name of a test suite.
    timeout
        Timeout on operation.

    Returns
    -------
    kubernetes_asyncio.client.V1Namespace
        Namespace that was created.

    Raises
    ------
    KubernetesError
        Raised for exceptions from the Kubernetes API server.
    OperationTimeoutError
        Raised if the timeout expired.
    ValueError
        Raised if the creator is empty.
    """
    _check_creator(creator)
    body = V1Namespace(
        metadata=V1ObjectMeta(
            name=str(uuid.uuid4()), labels={TEST_RESOURCE_LABEL: creator}
        )
    )
    await _storage(cluster).create(body, timeout)
    return body


async def cleanup_generated_resources(
    cluster: Cluster, creator: str, timeout: Timeout
) -> None:
    """Delete every namespace generated by a creator.

    Parameters
    ----------
    cluster
        Cluster holding the namespaces.
    creator
        Identifier of the creator passed to `generate_namespace`.
    timeout
        Timeout on operation, including waiting for the namespaces to be
        deleted.

    Raises
    ------
    CleanupError
        Raised if some namespaces could not be deleted.
    KubernetesError
        Raised if the namespaces could not be listed.
    OperationTimeoutError
        Raised if the timeout expired.
    ValueError
        Raised if the creator is empty.
    """
    _check_creator(creator)
    selector = f"{TEST_RESOURCE_LABEL}={creator}"
    namespaces = await _storage(cluster).list(timeout, label_selector=selector)
    cleaner = Cleaner(cluster)
    for namespace in namespaces:
        cleaner.add_namespace(namespace)
    await cleaner.cleanup(timeout)
