"""Storage layer for ``Namespace`` objects."""

from __future__ import annotations

from datetime import timedelta

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Namespace
from structlog.stdlib import BoundLogger
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from ...constants import CONFLICT_RETRIES, CONFLICT_RETRY_DELAY
from ...exceptions import KubernetesError, OperationTimeoutError
from ...models.domain.kubernetes import WatchEventType
from ...timeout import Timeout
from .watcher import KubernetesWatcher

__all__ = ["NamespaceStorage"]


def _is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, KubernetesError) and exc.status == 409


class NamespaceStorage:
    """Storage layer for ``Namespace`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    conflict_retries
        Number of attempts for updates that fail with a conflict.
    conflict_retry_delay
        Delay between those attempts.
    """

    def __init__(
        self,
        api_client: ApiClient,
        logger: BoundLogger,
        *,
        conflict_retries: int = CONFLICT_RETRIES,
        conflict_retry_delay: timedelta = CONFLICT_RETRY_DELAY,
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger
        self._conflict_retries = conflict_retries
        self._conflict_retry_delay = conflict_retry_delay

    async def create(
        self, body: V1Namespace, timeout: Timeout, *, exists_ok: bool = False
    ) -> None:
        """Create a new namespace.

        Parameters
        ----------
        body
            Namespace object to create.
        timeout
            Timeout on operation.
        exists_ok
            If `True`, a namespace of that name that already exists is
            treated as success.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        name = body.metadata.name
        self._logger.debug("Creating Namespace", name=name)
        try:
            async with timeout.enforce():
                await self._api.create_namespace(
                    body, _request_timeout=timeout.left()
                )
        except ApiException as e:
            if exists_ok and e.status == 409:
                self._logger.debug("Namespace already exists", name=name)
                return
            raise KubernetesError.from_exception(
                "Error creating namespace", e, kind="Namespace", name=name
            ) from e

    async def delete(
        self, name: str, timeout: Timeout, *, wait: bool = False
    ) -> None:
        """Delete a namespace.

        If the namespace does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the namespace.
        timeout
            Timeout on operation.
        wait
            Whether to wait for the namespace to be deleted.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Deleting Namespace", name=name)
        try:
            async with timeout.enforce():
                await self._api.delete_namespace(
                    name, _request_timeout=timeout.left()
                )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting namespace", e, kind="Namespace", name=name
            ) from e
        if wait:
            await self.wait_for_deletion(name, timeout)

    async def list(
        self, timeout: Timeout, *, label_selector: str | None = None
    ) -> list[V1Namespace]:
        """List namespaces.

        Parameters
        ----------
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list of kubernetes_asyncio.client.V1Namespace
            List of namespaces.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        extra_args: dict[str, str | float | None] = {
            "_request_timeout": timeout.left()
        }
        if label_selector:
            extra_args["label_selector"] = label_selector
        try:
            async with timeout.enforce():
                objs = await self._api.list_namespace(**extra_args)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing namespaces", e, kind="Namespace"
            ) from e
        return objs.items

    async def read(self, name: str, timeout: Timeout) -> V1Namespace | None:
        """Read a namespace.

        Parameters
        ----------
        name
            Name of the namespace.
        timeout
            Timeout on operation.

        Returns
        -------
        kubernetes_asyncio.client.V1Namespace or None
            Namespace, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        try:
            async with timeout.enforce():
                return await self._api.read_namespace(
                    name, _request_timeout=timeout.left()
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading namespace", e, kind="Namespace", name=name
            ) from e

    async def update_labels(
        self, name: str, labels: dict[str, str | None], timeout: Timeout
    ) -> None:
        """Change the labels of a namespace.

        The namespace is read, its labels modified, and the result written
        back with its resource version, so a concurrent modification results
        in a conflict. Conflicts are retried with a bounded budget.

        Parameters
        ----------
        name
            Name of the namespace.
        labels
            Labels to set. A value of `None` removes that label.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including a
            conflict that persisted through every retry, or if the namespace
            does not exist.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_conflict),
            stop=stop_after_attempt(self._conflict_retries),
            wait=wait_fixed(self._conflict_retry_delay),
            reraise=True,
        )
        async with timeout.enforce():
            async for attempt in retrying:
                with attempt:
                    await self._update_labels(name, labels, timeout)

    async def wait_for_deletion(self, name: str, timeout: Timeout) -> None:
        """Wait for a namespace deletion to complete.

        Deletion is only considered complete once a deletion event for the
        namespace has been seen on a watch, or the namespace can no longer be
        read.

        Parameters
        ----------
        name
            Name of the namespace.
        timeout
            How long to wait for deletion.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired before the namespace was deleted.
        """
        operation = f"Deletion of namespace {name}"
        namespace = await self.read(name, timeout.child(operation))
        if not namespace:
            return

        # Keep back part of the timeout for a final check after the watch
        # times out.
        remaining = timeout.remaining()
        reserve = timedelta(seconds=0)
        if remaining is None:
            watch_timeout = timeout.child(operation)
        else:
            reserve = min(timedelta(seconds=2), remaining / 4)
            watch_timeout = timeout.partial(remaining - reserve, operation)
        if watch_timeout.expired():
            raise watch_timeout.error()
        watcher = KubernetesWatcher(
            method=self._api.list_namespace,
            object_type=V1Namespace,
            kind="Namespace",
            name=name,
            resource_version=namespace.metadata.resource_version,
            timeout=watch_timeout.remaining(),
            logger=self._logger,
        )
        try:
            async with watch_timeout.enforce():
                async for event in watcher.watch():
                    if event.action == WatchEventType.DELETED:
                        self._logger.debug("Namespace deleted", name=name)
                        return
        except OperationTimeoutError:
            # If the watch had to be restarted because the resource version
            # was too old, the delete event may have been missed. Check once
            # more before giving up.
            read_timeout = timeout.partial(reserve, operation)
            if not read_timeout.expired():
                if not await self.read(name, read_timeout):
                    return
            raise
        finally:
            await watcher.close()

        # This should be impossible; someone called stop on the watcher.
        raise RuntimeError("Wait for namespace deletion unexpectedly stopped")

    async def _update_labels(
        self, name: str, labels: dict[str, str | None], timeout: Timeout
    ) -> None:
        namespace = await self.read(name, timeout)
        if not namespace:
            msg = "Cannot update labels of missing namespace"
            raise KubernetesError(msg, kind="Namespace", name=name, status=404)
        current = dict(namespace.metadata.labels or {})
        for key, value in labels.items():
            if value is None:
                current.pop(key, None)
            else:
                current[key] = value
        namespace.metadata.labels = current
        msg = "Updating Namespace labels"
        self._logger.debug(msg, name=name, labels=labels)
        try:
            await self._api.replace_namespace(
                name, namespace, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 409:
                self._logger.info("Conflict updating Namespace", name=name)
            raise KubernetesError.from_exception(
                "Error updating namespace", e, kind="Namespace", name=name
            ) from e
