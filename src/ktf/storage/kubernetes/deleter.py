"""Generic Kubernetes object storage including list and delete.

Provides a generic Kubernetes object management class and instantiations of
that class for the namespaced object types whose status is consulted by
readiness checks. All of them support create, read, list, and delete.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1DaemonSet,
    V1Deployment,
    V1Job,
    V1Pod,
    V1Service,
)
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import KubernetesModel, PropagationPolicy
from ...timeout import Timeout

__all__ = [
    "DaemonSetStorage",
    "DeploymentStorage",
    "JobStorage",
    "KubernetesObjectDeleter",
    "PodStorage",
    "ServiceStorage",
]


class KubernetesObjectDeleter[T: KubernetesModel]:
    """Generic Kubernetes object storage supporting list and delete.

    This class provides a wrapper around any namespaced Kubernetes object
    type that implements create, read, list, and delete, with logging and
    exception conversion.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific classes built on
    top of it instead.

    Parameters
    ----------
    create_method
        Method to create this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list all of this type of object.
    read_method
        Method to read this type of object.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        create_method: Callable[..., Awaitable[Any]],
        delete_method: Callable[..., Awaitable[Any]],
        list_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._create = create_method
        self._delete = delete_method
        self._list = list_method
        self._read = read_method
        self._type = object_type
        self._kind = kind
        self._logger = logger

    async def create(self, namespace: str, body: T, timeout: Timeout) -> None:
        """Create a new Kubernetes object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            New object.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        name = body.metadata.name
        self._logger.debug(
            f"Creating {self._kind}", name=name, namespace=namespace
        )
        try:
            async with timeout.enforce():
                await self._create(
                    namespace, body, _request_timeout=timeout.left()
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error creating object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def delete(
        self,
        name: str,
        namespace: str,
        timeout: Timeout,
        *,
        propagation_policy: PropagationPolicy | None = None,
    ) -> None:
        """Delete a Kubernetes object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.
        propagation_policy
            Propagation policy for the object deletion.

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
        if propagation_policy:
            extra_args["propagation_policy"] = propagation_policy.value
        self._logger.debug(
            f"Deleting {self._kind}", name=name, namespace=namespace
        )
        try:
            async with timeout.enforce():
                await self._delete(name, namespace, **extra_args)
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[T]:
        """List all objects of the appropriate kind in the namespace.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list
            List of objects found.

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
                objs = await self._list(namespace, **extra_args)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs.items

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> T | None:
        """Read a Kubernetes object.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Returns
        -------
        Any or None
            Kubernetes object that was read, or `None` if it was not found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        try:
            async with timeout.enforce():
                return await self._read(
                    name, namespace, _request_timeout=timeout.left()
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e


class DaemonSetStorage(KubernetesObjectDeleter[V1DaemonSet]):
    """Storage layer for ``DaemonSet`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_daemon_set,
            delete_method=api.delete_namespaced_daemon_set,
            list_method=api.list_namespaced_daemon_set,
            read_method=api.read_namespaced_daemon_set,
            object_type=V1DaemonSet,
            kind="DaemonSet",
            logger=logger,
        )


class DeploymentStorage(KubernetesObjectDeleter[V1Deployment]):
    """Storage layer for ``Deployment`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_deployment,
            delete_method=api.delete_namespaced_deployment,
            list_method=api.list_namespaced_deployment,
            read_method=api.read_namespaced_deployment,
            object_type=V1Deployment,
            kind="Deployment",
            logger=logger,
        )


class JobStorage(KubernetesObjectDeleter[V1Job]):
    """Storage layer for ``Job`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.BatchV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_job,
            delete_method=api.delete_namespaced_job,
            list_method=api.list_namespaced_job,
            read_method=api.read_namespaced_job,
            object_type=V1Job,
            kind="Job",
            logger=logger,
        )


class PodStorage(KubernetesObjectDeleter[V1Pod]):
    """Storage layer for ``Pod`` objects.

    Adds retrieval of container logs, used for diagnostics.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=self._api.create_namespaced_pod,
            delete_method=self._api.delete_namespaced_pod,
            list_method=self._api.list_namespaced_pod,
            read_method=self._api.read_namespaced_pod,
            object_type=V1Pod,
            kind="Pod",
            logger=logger,
        )

    async def read_log(
        self, name: str, namespace: str, container: str, timeout: Timeout
    ) -> str:
        """Read the log of a container in a pod.

        Parameters
        ----------
        name
            Name of the pod.
        namespace
            Namespace of the pod.
        container
            Name of the container.
        timeout
            Timeout on operation.

        Returns
        -------
        str
            Contents of the container log.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        try:
            async with timeout.enforce():
                return await self._api.read_namespaced_pod_log(
                    name,
                    namespace,
                    container=container,
                    _request_timeout=timeout.left(),
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                f"Error reading log of container {container}",
                e,
                kind="Pod",
                namespace=namespace,
                name=name,
            ) from e


class ServiceStorage(KubernetesObjectDeleter[V1Service]):
    """Storage layer for ``Service`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_service,
            delete_method=api.delete_namespaced_service,
            list_method=api.list_namespaced_service,
            read_method=api.read_namespaced_service,
            object_type=V1Service,
            kind="Service",
            logger=logger,
        )
