"""Readiness checks and the polling loop that waits for them."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from kubernetes_asyncio.client import (
    ApiClient,
    V1DaemonSet,
    V1Deployment,
    V1Job,
    V1Service,
)
from structlog.stdlib import BoundLogger

from ..constants import POLL_INTERVAL
from ..exceptions import JobFailedError, OperationTimeoutError
from ..models.domain.kubernetes import ObjectReference, Readiness
from ..storage.kubernetes.custom import CustomStorage
from ..storage.kubernetes.deleter import (
    DaemonSetStorage,
    DeploymentStorage,
    JobStorage,
    ServiceStorage,
)
from ..storage.kubernetes.namespace import NamespaceStorage
from ..timeout import Timeout

type ReadinessCheck = Callable[[Timeout], Awaitable[Readiness]]
"""A single readiness check, run once per poll interval."""

__all__ = [
    "ReadinessCheck",
    "ReadinessChecker",
    "daemon_set_is_ready",
    "deployment_is_ready",
    "wait_for_readiness",
]


def daemon_set_is_ready(daemon_set: V1DaemonSet) -> bool:
    """Whether a ``DaemonSet`` has at least one available pod.

    The desired number of pods of a ``DaemonSet`` depends on the nodes of
    the cluster, so only presence is required.
    """
    status = daemon_set.status
    if not status or not status.number_available:
        return False
    return status.number_available >= 1


def deployment_is_ready(deployment: V1Deployment) -> bool:
    """Whether all replicas of a ``Deployment`` are available.

    The number of available replicas must equal the desired number exactly.
    Kubernetes defaults the desired number to 1 if it is not set.
    """
    desired = 1
    if deployment.spec and deployment.spec.replicas is not None:
        desired = deployment.spec.replicas
    available = 0
    if deployment.status and deployment.status.available_replicas:
        available = deployment.status.available_replicas
    return available == desired


def _load_balancer_is_ready(service: V1Service) -> bool:
    if not service.spec or service.spec.type != "LoadBalancer":
        return True
    status = service.status
    if not status or not status.load_balancer:
        return False
    return bool(status.load_balancer.ingress)


async def wait_for_readiness(
    check: ReadinessCheck,
    timeout: Timeout,
    *,
    interval: timedelta = POLL_INTERVAL,
    logger: BoundLogger,
) -> None:
    """Poll a readiness check until it reports that it converged.

    The check is run immediately and then once per interval. Each run takes a
    fresh snapshot of the cluster. Any exception raised by the check is a
    permanent failure and stops polling.

    Parameters
    ----------
    check
        Readiness check to run.
    timeout
        Timeout for the whole wait. If it has already expired, no check is
        run.
    interval
        Time between checks.
    logger
        Logger to use.

    Raises
    ------
    OperationTimeoutError
        Raised if the timeout expired before the check converged. The
        exception lists the objects that were still blocking readiness at the
        last check.
    """
    last: Readiness | None = None
    try:
        async with timeout.enforce():
            while True:
                last = await check(timeout)
                if last.ready:
                    return
                logger.debug("Not yet ready", waiting=last.pending())
                await asyncio.sleep(interval.total_seconds())
    except OperationTimeoutError as e:
        pending = last.pending() if last else []
        raise timeout.error(pending) from e


class ReadinessChecker:
    """Readiness checks for common kinds of Kubernetes workloads.

    Each check takes one snapshot of the relevant objects and classifies
    them. Combine with `wait_for_readiness` to wait for convergence.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._daemon_sets = DaemonSetStorage(api_client, logger)
        self._deployments = DeploymentStorage(api_client, logger)
        self._jobs = JobStorage(api_client, logger)
        self._namespaces = NamespaceStorage(api_client, logger)
        self._services = ServiceStorage(api_client, logger)

    async def condition(
        self,
        storage: CustomStorage,
        name: str,
        condition: str,
        timeout: Timeout,
        *,
        namespace: str | None = None,
        api_version: str,
    ) -> Readiness:
        """Check whether a custom object reports a status condition.

        Parameters
        ----------
        storage
            Storage for the kind of custom object.
        name
            Name of the object.
        condition
            Type of the condition, such as ``Ready``.
        timeout
            Timeout on operation.
        namespace
            Namespace of the object, or `None` if it is cluster-scoped.
        api_version
            API version of the object, used to report it as blocking.

        Returns
        -------
        Readiness
            Ready if the condition has status ``True``.
        """
        ref = ObjectReference(
            api_version=api_version,
            kind=storage.kind,
            name=name,
            namespace=namespace,
        )
        obj = await storage.read(name, timeout, namespace=namespace)
        if not obj:
            return Readiness.blocked([ref])
        for status in obj.get("status", {}).get("conditions", []):
            if status.get("type") == condition:
                if status.get("status") == "True":
                    return Readiness.converged()
                break
        return Readiness.blocked([ref])

    async def job(
        self, name: str, namespace: str, timeout: Timeout
    ) -> Readiness:
        """Check whether a ``Job`` has succeeded.

        Parameters
        ----------
        name
            Name of the job.
        namespace
            Namespace of the job.
        timeout
            Timeout on operation.

        Returns
        -------
        Readiness
            Ready if at least one pod of the job succeeded.

        Raises
        ------
        JobFailedError
            Raised if the job has failed more often than its backoff limit
            allows, so it will never succeed.
        """
        ref = ObjectReference(
            api_version="batch/v1", kind="Job", name=name, namespace=namespace
        )
        job = await self._jobs.read(name, namespace, timeout)
        if not job or not job.status:
            return Readiness.blocked([ref])
        if job.status.succeeded and job.status.succeeded >= 1:
            return Readiness.converged()
        if job.status.failed and self._job_exhausted(job):
            raise JobFailedError(name, namespace, job.status.failed)
        return Readiness.blocked([ref])

    async def kube_system(self, timeout: Timeout) -> Readiness:
        """Check whether the system workloads of a cluster are ready.

        Every ``Deployment`` in ``kube-system`` must have exactly its desired
        number of replicas available, and no ``DaemonSet`` may have
        unavailable pods.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        Readiness
            Ready if all system workloads are fully available.
        """
        namespace = "kube-system"
        waiting = []
        for deployment in await self._deployments.list(namespace, timeout):
            if not deployment_is_ready(deployment):
                waiting.append(ObjectReference.from_object(deployment))
        for daemon_set in await self._daemon_sets.list(namespace, timeout):
            status = daemon_set.status
            if status and status.number_unavailable:
                waiting.append(ObjectReference.from_object(daemon_set))
        if waiting:
            return Readiness.blocked(waiting)
        return Readiness.converged()

    async def namespace(self, name: str, timeout: Timeout) -> Readiness:
        """Check whether the workloads in a namespace are available.

        The namespace must exist and contain at least one ``DaemonSet`` or
        ``Deployment``. Every ``DaemonSet`` must have at least one available
        pod, every ``Deployment`` must have exactly its desired number of
        available replicas, and every ``LoadBalancer`` service must have been
        assigned an ingress address.

        Parameters
        ----------
        name
            Name of the namespace.
        timeout
            Timeout on operation.

        Returns
        -------
        Readiness
            Readiness of the namespace. If the namespace does not exist or
            has no workloads, the namespace itself is reported as blocking.
        """
        namespace_ref = ObjectReference(
            api_version="v1", kind="Namespace", name=name
        )
        if not await self._namespaces.read(name, timeout):
            return Readiness.blocked([namespace_ref])

        daemon_sets = await self._daemon_sets.list(name, timeout)
        deployments = await self._deployments.list(name, timeout)
        services = await self._services.list(name, timeout)
        waiting = [
            ObjectReference.from_object(d)
            for d in daemon_sets
            if not daemon_set_is_ready(d)
        ]
        waiting.extend(
            ObjectReference.from_object(d)
            for d in deployments
            if not deployment_is_ready(d)
        )
        waiting.extend(
            ObjectReference.from_object(s)
            for s in services
            if not _load_balancer_is_ready(s)
        )

        # A namespace with no workloads yet is not ready, since otherwise
        # polling could succeed before any manifest has been applied.
        if not daemon_sets and not deployments:
            return Readiness.blocked([namespace_ref, *waiting])
        if waiting:
            return Readiness.blocked(waiting)
        return Readiness.converged()

    def _job_exhausted(self, job: V1Job) -> bool:
        backoff_limit = 6
        if job.spec and job.spec.backoff_limit is not None:
            backoff_limit = job.spec.backoff_limit
        return job.status.failed > backoff_limit
