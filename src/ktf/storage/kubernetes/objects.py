"""Deletion of arbitrary Kubernetes objects by reference."""

from __future__ import annotations

import re

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import ObjectReference, PropagationPolicy
from ...timeout import Timeout

__all__ = ["ObjectStorage"]


def _snake_case(kind: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", kind).lower()


class ObjectStorage:
    """Delete Kubernetes objects of any kind.

    Objects in the core API group are deleted with the typed core API, since
    they are not served under the ``/apis`` prefix. Objects in any other
    group, including built-in groups such as ``apps``, are deleted through
    the custom objects API, which only needs the group, version, and plural.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._core_api = client.CoreV1Api(api_client)
        self._custom_api = client.CustomObjectsApi(api_client)
        self._logger = logger

    async def delete(
        self,
        ref: ObjectReference,
        timeout: Timeout,
        *,
        propagation_policy: PropagationPolicy | None = (
            PropagationPolicy.BACKGROUND
        ),
    ) -> None:
        """Delete an object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        ref
            Reference to the object.
        timeout
            Timeout on operation.
        propagation_policy
            Propagation policy for the object deletion.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, or if the
            object is in the core group but of an unknown kind.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug(
            f"Deleting {ref.kind}", name=ref.name, namespace=ref.namespace
        )
        kwargs: dict[str, str | float | None] = {}
        if propagation_policy:
            kwargs["propagation_policy"] = propagation_policy.value
        try:
            async with timeout.enforce():
                kwargs["_request_timeout"] = timeout.left()
                if ref.group:
                    await self._delete_custom(ref, kwargs)
                else:
                    await self._delete_core(ref, kwargs)
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind=ref.kind,
                namespace=ref.namespace,
                name=ref.name,
            ) from e

    async def _delete_core(
        self, ref: ObjectReference, kwargs: dict[str, str | float | None]
    ) -> None:
        kind = _snake_case(ref.kind)
        if ref.namespace:
            method_name = f"delete_namespaced_{kind}"
            args = (ref.name, ref.namespace)
        else:
            method_name = f"delete_{kind}"
            args = (ref.name,)
        method = getattr(self._core_api, method_name, None)
        if method is None:
            raise KubernetesError(
                "Unknown kind in core API group",
                kind=ref.kind,
                namespace=ref.namespace,
                name=ref.name,
            )
        await method(*args, **kwargs)

    async def _delete_custom(
        self, ref: ObjectReference, kwargs: dict[str, str | float | None]
    ) -> None:
        if ref.namespace:
            await self._custom_api.delete_namespaced_custom_object(
                ref.group,
                ref.version,
                ref.namespace,
                ref.resource,
                ref.name,
                **kwargs,
            )
        else:
            await self._custom_api.delete_cluster_custom_object(
                ref.group, ref.version, ref.resource, ref.name, **kwargs
            )
