"""Watch Kubernetes objects for events."""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Self

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass
class WatchEvent[T]:
    """Parsed event from a Kubernetes watch.

    This model is intended only for use within the Kubernetes storage layer.
    """

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        """
        action = WatchEventType(event["type"])
        if object_type is dict:
            return cls(action=action, object=event["raw_object"])
        obj = event["object"]
        if not isinstance(obj, object_type):
            real_type = type(obj).__name__
            expected_type = object_type.__name__
            msg = f"Watch object was of type {real_type}, not {expected_type}"
            raise TypeError(msg)
        return cls(action=action, object=obj)


class KubernetesWatcher[T]:
    """Watch Kubernetes for events.

    This wrapper around the watch API of the Kubernetes client implements
    retries and resource version handling. The type of the returned objects
    is passed in explicitly rather than discovered from the docstring of the
    list method, which does not work for mocks.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. For custom objects, this should be
        `dict`.
    kind
        Kubernetes kind of object being watched, for error reporting.
    name
        Name of object to watch.
    namespace
        Namespace to watch.
    group
        Group of custom object.
    version
        Version of custom object.
    plural
        Plural of custom object.
    resource_version
        Resource version at which to start the watch.
    timeout
        Timeout for the watch. If `None`, the watch is restarted whenever the
        server ends it, and runs until stopped or cancelled.
    logger
        Logger to use.

    Raises
    ------
    ValueError
        Raised if ``timeout`` is specified but is less than zero.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
        group: str | None = None,
        version: str | None = None,
        plural: str | None = None,
        resource_version: str | None = None,
        timeout: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._namespace = namespace
        self._name = name
        self._logger = logger
        self._timeout = timeout
        self._stopped = False

        timeout_seconds = None
        if timeout is not None:
            timeout_seconds = math.ceil(timeout.total_seconds())
            if timeout_seconds <= 0:
                raise ValueError("Watch timeout specified but <= 0")
        field_selector = f"metadata.name={name}" if name else None
        args = {
            "field_selector": field_selector,
            "group": group,
            "version": version,
            "plural": plural,
            "namespace": namespace,
            "resource_version": resource_version,
            "timeout_seconds": timeout_seconds,
            "_request_timeout": timeout_seconds,
        }
        self._args = {k: v for k, v in args.items() if v is not None}
        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Stop a watch in progress."""
        self._watch.stop()
        self._stopped = True

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        If we started watching with a specific resource version, that resource
        version may be too old to still be known to Kubernetes, in which case
        the API call returns a 410 error and we retry without a resource
        version. Events that happen between the error and the retry may be
        missed, so callers waiting for a specific state should check for it
        directly after a timeout.

        Yields
        ------
        WatchEvent
            Parsed event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        TimeoutError
            Raised if the timeout was reached.
        """
        args = self._args.copy()
        start = current_datetime(microseconds=True)
        while True:
            try:
                async with self._watch.stream(self._method, **args) as stream:
                    async for event in stream:
                        parsed = WatchEvent.from_event(event, self._type)
                        if version := self._resource_version(event):
                            args["resource_version"] = version
                        yield parsed

                # Client timeouts raise TimeoutError, but server timeouts and
                # calls to stop just end the iterator. The server may also
                # end the watch before our timeout because of its own global
                # limits, in which case retry with the remaining time.
                if self._stopped:
                    break
                if self._timeout is None:
                    self._logger.debug("Watch ended by server, restarting")
                    continue
                elapsed = current_datetime(microseconds=True) - start
                if elapsed + timedelta(seconds=1) < self._timeout:
                    remaining = self._timeout - elapsed
                    remaining_seconds = math.ceil(remaining.total_seconds())
                    args["timeout_seconds"] = remaining_seconds
                    args["_request_timeout"] = remaining_seconds
                    continue
                elapsed_seconds = elapsed.total_seconds()
                msg = f"Watch timed out after {elapsed_seconds}s"
                raise TimeoutError(msg)
            except ApiException as e:
                if e.status == 410 and "resource_version" in args:
                    version = args["resource_version"]
                    msg = f"Resource version {version} expired, retrying watch"
                    self._logger.info(msg)
                    del args["resource_version"]
                    continue

                # Kubernetes may also return 410 with no resource version if
                # there are long gaps between events. Retry after a pause,
                # relying on the timeout to stop us.
                if e.status == 410:
                    msg = "Watch expired (no resource version), retrying"
                    self._logger.info(msg)
                    await asyncio.sleep(1)
                    continue

                raise KubernetesError.from_exception(
                    "Error watching objects",
                    e,
                    kind=self._kind,
                    namespace=self._namespace,
                    name=self._name,
                ) from e

    def _resource_version(self, event: dict[str, Any]) -> str | None:
        metadata = event.get("raw_object", {}).get("metadata", {})
        return metadata.get("resourceVersion")
