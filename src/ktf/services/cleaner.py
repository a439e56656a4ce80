"""Bounded-concurrency teardown of resources created during a test run."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from aiojobs import Scheduler
from kubernetes_asyncio.client import V1Namespace
from structlog.stdlib import BoundLogger

from ..exceptions import CleanupError, KubernetesError, OperationTimeoutError
from ..models.domain.kubernetes import KubernetesModel, ObjectReference
from ..storage.kubernetes.namespace import NamespaceStorage
from ..storage.kubernetes.objects import ObjectStorage
from ..timeout import Timeout

if TYPE_CHECKING:
    from ..clusters.base import Cluster

__all__ = ["Cleaner"]


class Cleaner:
    """Record resources created during a test and delete them afterwards.

    Resources are deleted in three stages. Discrete objects are deleted
    first, most recently added first. Manifests are then deleted in the order
    they were added, using :command:`kubectl`. Finally, namespaces are deleted
    concurrently, with at most ``concurrency`` deletions in flight, and each
    deletion waits until the namespace is gone.

    Resources may be added concurrently from several tasks or threads. Each
    resource is forgotten only after it has been deleted, so calling
    `cleanup` again after a successful run does nothing, and calling it again
    after a failure retries only what is left.

    Parameters
    ----------
    cluster
        Cluster holding the resources.
    concurrency
        Maximum number of namespaces deleted at the same time. Defaults to
        the ``cleanup_concurrency`` setting of the cluster configuration.
    logger
        Logger to use. Defaults to the logger of the cluster.
    """

    def __init__(
        self,
        cluster: Cluster,
        *,
        concurrency: int | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._cluster = cluster
        self._concurrency = concurrency or cluster.config.cleanup_concurrency
        self._logger = logger or cluster.logger
        self._objects = ObjectStorage(cluster.api_client, self._logger)
        self._namespaces_api = NamespaceStorage(
            cluster.api_client, self._logger
        )
        self._lock = threading.Lock()
        self._objects_pending: list[ObjectReference] = []
        self._manifests: list[str] = []
        self._namespaces: list[str] = []

    def add(
        self, obj: ObjectReference | KubernetesModel | dict[str, Any]
    ) -> None:
        """Record an object for deletion.

        Parameters
        ----------
        obj
            Reference to the object, a typed Kubernetes model, or a custom
            object as a `dict`.

        Raises
        ------
        ValueError
            Raised if the kind or name of the object cannot be determined.
        """
        if not isinstance(obj, ObjectReference):
            obj = ObjectReference.from_object(obj)
        with self._lock:
            self._objects_pending.append(obj)

    def add_manifest(self, manifest: str) -> None:
        """Record a manifest whose objects should be deleted."""
        with self._lock:
            self._manifests.append(manifest)

    def add_namespace(self, namespace: str | V1Namespace) -> None:
        """Record a namespace for deletion.

        Parameters
        ----------
        namespace
            Name of the namespace or the namespace object.
        """
        if isinstance(namespace, V1Namespace):
            namespace = namespace.metadata.name
        with self._lock:
            if namespace not in self._namespaces:
                self._namespaces.append(namespace)

    async def cleanup(self, timeout: Timeout) -> None:
        """Delete all recorded resources.

        Parameters
        ----------
        timeout
            Timeout for the whole cleanup.

        Raises
        ------
        CleanupError
            Raised if any namespace could not be deleted. Every namespace is
            attempted before this is raised.
        KubectlError
            Raised if deleting a manifest failed.
        KubernetesError
            Raised if deleting a discrete object failed.
        OperationTimeoutError
            Raised if the timeout expired while deleting objects or
            manifests.
        """
        await self._cleanup_objects(timeout)
        await self._cleanup_manifests(timeout)
        await self._cleanup_namespaces(timeout)

    async def _cleanup_objects(self, timeout: Timeout) -> None:
        with self._lock:
            objects = list(reversed(self._objects_pending))
        for ref in objects:
            await self._objects.delete(ref, timeout)
            with self._lock:
                self._objects_pending.remove(ref)

    async def _cleanup_manifests(self, timeout: Timeout) -> None:
        with self._lock:
            manifests = list(self._manifests)
        kubectl = self._cluster.kubectl
        for manifest in manifests:
            await kubectl.delete(manifest, timeout)
            with self._lock:
                self._manifests.remove(manifest)

    async def _cleanup_namespaces(self, timeout: Timeout) -> None:
        with self._lock:
            namespaces = list(self._namespaces)
        if not namespaces:
            return
        self._logger.debug(
            "Deleting namespaces",
            count=len(namespaces),
            concurrency=self._concurrency,
        )

        scheduler = Scheduler(limit=self._concurrency)
        try:
            jobs = {}
            for name in namespaces:
                coro = self._delete_namespace(name, timeout)
                jobs[name] = await scheduler.spawn(coro)
            failures = {}
            for name, job in jobs.items():
                error = await job.wait()
                if error:
                    failures[name] = str(error)
        finally:
            await scheduler.close()

        if failures:
            msg = f"Failed to delete {len(failures)} namespaces"
            raise CleanupError(msg, failures)

    async def _delete_namespace(
        self, name: str, timeout: Timeout
    ) -> Exception | None:
        """Delete one namespace and wait for it to disappear.

        Errors are returned rather than raised so that every namespace is
        attempted and the failures can be reported together.
        """
        namespace_timeout = timeout.child(f"Deletion of namespace {name}")
        try:
            await self._namespaces_api.delete(
                name, namespace_timeout, wait=True
            )
        except (KubernetesError, OperationTimeoutError) as e:
            self._logger.warning(
                "Failed to delete namespace", name=name, error=str(e)
            )
            return e
        except Exception as e:
            self._logger.exception("Failed to delete namespace", name=name)
            return e
        with self._lock:
            self._namespaces.remove(name)
        return None
