"""Storage layer for Kubernetes custom objects."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["CustomStorage"]


class CustomStorage:
    """Storage layer for Kubernetes custom objects.

    Handles both namespaced and cluster-scoped custom objects. Methods take
    an optional namespace; if it is `None`, the object is cluster-scoped.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group for the custom objects to handle.
    version
        API version for the custom objects to handle.
    plural
        API plural under which those custom objects are managed.
    kind
        Name of the custom object kind, used for error reporting.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        group: str,
        version: str,
        plural: str,
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._group = group
        self._version = version
        self._plural = plural
        self._kind = kind
        self._logger = logger

    @property
    def kind(self) -> str:
        """Kind of the custom objects handled."""
        return self._kind

    async def create(
        self,
        body: dict[str, Any],
        timeout: Timeout,
        *,
        namespace: str | None = None,
        exists_ok: bool = False,
    ) -> None:
        """Create a new custom object.

        Parameters
        ----------
        body
            Custom object to create.
        timeout
            Timeout on operation.
        namespace
            Namespace of the object, or `None` if it is cluster-scoped.
        exists_ok
            If `True`, an existing object of that name is treated as success.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        name = body["metadata"]["name"]
        msg = f"Creating {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            async with timeout.enforce():
                if namespace:
                    await self._api.create_namespaced_custom_object(
                        self._group,
                        self._version,
                        namespace,
                        self._plural,
                        body,
                        _request_timeout=timeout.left(),
                    )
                else:
                    await self._api.create_cluster_custom_object(
                        self._group,
                        self._version,
                        self._plural,
                        body,
                        _request_timeout=timeout.left(),
                    )
        except ApiException as e:
            if exists_ok and e.status == 409:
                return
            raise KubernetesError.from_exception(
                "Error creating object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def delete(
        self, name: str, timeout: Timeout, *, namespace: str | None = None
    ) -> None:
        """Delete a custom object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        timeout
            Timeout on operation.
        namespace
            Namespace of the object, or `None` if it is cluster-scoped.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        msg = f"Deleting {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            async with timeout.enforce():
                if namespace:
                    await self._api.delete_namespaced_custom_object(
                        self._group,
                        self._version,
                        namespace,
                        self._plural,
                        name,
                        _request_timeout=timeout.left(),
                    )
                else:
                    await self._api.delete_cluster_custom_object(
                        self._group,
                        self._version,
                        self._plural,
                        name,
                        _request_timeout=timeout.left(),
                    )
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

    async def read(
        self, name: str, timeout: Timeout, *, namespace: str | None = None
    ) -> dict[str, Any] | None:
        """Read a custom object.

        Parameters
        ----------
        name
            Name of the object.
        timeout
            Timeout on operation.
        namespace
            Namespace of the object, or `None` if it is cluster-scoped.

        Returns
        -------
        dict of Any or None
            Custom object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        try:
            async with timeout.enforce():
                if namespace:
                    return await self._api.get_namespaced_custom_object(
                        self._group,
                        self._version,
                        namespace,
                        self._plural,
                        name,
                        _request_timeout=timeout.left(),
                    )
                return await self._api.get_cluster_custom_object(
                    self._group,
                    self._version,
                    self._plural,
                    name,
                    _request_timeout=timeout.left(),
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
