"""Base class for clusters, independent of how they were provisioned."""

from __future__ import annotations

import threading
from abc import ABCMeta, abstractmethod
from pathlib import Path
from typing import ClassVar, Protocol

import semver
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger, get_logger

from ..addons.base import Addon
from ..config import Config
from ..constants import ROOT_LOGGER
from ..exceptions import (
    AddonAlreadyRegisteredError,
    AddonNotFoundError,
    KubernetesError,
)
from ..models.domain.cluster import ClusterType, ConnectionConfig, IPFamily
from ..services.dependencies import wait_for_dependencies
from ..services.diagnostics import dump_diagnostics
from ..storage.kubectl import Kubectl
from ..timeout import Timeout

__all__ = ["Cluster", "ClusterBuilder"]


class Cluster(metaclass=ABCMeta):
    """A running Kubernetes cluster and the addons deployed to it.

    Subclasses implement teardown for a specific backend. Everything else,
    including the addon registry, is shared by all backends.

    The addon registry is guarded by a single exclusive lock. Readers such
    as `get_addon` and `list_addons` take the same lock as writers, so reads
    are serialized with each other as well as with modifications. The lock
    is held only while the registry itself is read or modified, never while
    an addon is being deployed or deleted, so unrelated addons can be
    deployed concurrently.

    Parameters
    ----------
    name
        Name of the cluster.
    api_client
        Kubernetes API client for the cluster.
    connection
        Raw connection details, used for command-line tools.
    ip_family
        IP families supported by the cluster.
    config
        Configuration for ktf.
    logger
        Logger to use.
    """

    cluster_type: ClassVar[ClusterType]
    """Backend that provisioned this kind of cluster."""

    def __init__(
        self,
        *,
        name: str,
        api_client: ApiClient,
        connection: ConnectionConfig,
        ip_family: IPFamily = IPFamily.IPV4,
        config: Config | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._name = name
        self._api_client = api_client
        self._connection = connection
        self._ip_family = ip_family
        self._config = config or Config()
        logger = logger or get_logger(ROOT_LOGGER)
        self._logger = logger.bind(cluster=name)
        self._addons: dict[str, Addon] = {}
        self._lock = threading.Lock()

    @property
    def api_client(self) -> ApiClient:
        """Kubernetes API client for the cluster."""
        return self._api_client

    @property
    def config(self) -> Config:
        """Configuration for ktf."""
        return self._config

    @property
    def connection(self) -> ConnectionConfig:
        """Raw connection details of the cluster."""
        return self._connection

    @property
    def ip_family(self) -> IPFamily:
        """IP families supported by the cluster."""
        return self._ip_family

    @property
    def kubectl(self) -> Kubectl:
        """Runner for :command:`kubectl` against this cluster."""
        return Kubectl(self._connection, self._name, self._logger)

    @property
    def logger(self) -> BoundLogger:
        """Logger bound to the cluster name."""
        return self._logger

    @property
    def name(self) -> str:
        """Name of the cluster."""
        return self._name

    @abstractmethod
    async def cleanup(self, timeout: Timeout) -> None:
        """Tear down the cluster.

        Parameters
        ----------
        timeout
            Timeout on operation.
        """

    async def close(self) -> None:
        """Release the Kubernetes API client."""
        await self._api_client.close()

    async def delete_addon(self, addon: Addon, timeout: Timeout) -> None:
        """Delete an addon from the cluster.

        Nothing is done if the addon is not registered. The addon is removed
        from the registry only after it was successfully deleted.

        Parameters
        ----------
        addon
            Addon to delete.
        timeout
            Timeout on operation.
        """
        with self._lock:
            if addon.name not in self._addons:
                return
        self._logger.info("Deleting addon", addon=addon.name)
        await addon.delete(self, timeout)
        with self._lock:
            if self._addons.get(addon.name) is addon:
                del self._addons[addon.name]

    async def deploy_addon(self, addon: Addon, timeout: Timeout) -> None:
        """Deploy an addon to the cluster.

        The addon is registered before deployment starts, so a concurrent
        deployment of an addon with the same name fails. If deployment fails
        for any reason, including cancellation, the registration is removed
        again before the exception propagates.

        Parameters
        ----------
        addon
            Addon to deploy.
        timeout
            Timeout on operation, including the wait for dependencies.

        Raises
        ------
        AddonAlreadyRegisteredError
            Raised if an addon with the same name is already registered.
        DependencyCycleError
            Raised if the dependencies of the addon form a cycle.
        DependencyNotFoundError
            Raised if a dependency of the addon is not registered.
        DependencyNotReadyError
            Raised if a dependency did not become ready in time.
        """
        logger = self._logger.bind(addon=addon.name)
        with self._lock:
            if addon.name in self._addons:
                raise AddonAlreadyRegisteredError(addon.name, self._name)
            self._addons[addon.name] = addon
        deployed = False
        try:
            await wait_for_dependencies(
                self,
                addon,
                timeout,
                interval=self._config.poll_interval,
                logger=logger,
            )
            logger.info("Deploying addon")
            await addon.deploy(self, timeout)
            deployed = True
        finally:
            if not deployed:
                with self._lock:
                    if self._addons.get(addon.name) is addon:
                        del self._addons[addon.name]

    async def dump_diagnostics(
        self, timeout: Timeout, meta: str = ""
    ) -> Path:
        """Write diagnostic information about the cluster to disk.

        Parameters
        ----------
        timeout
            Timeout on operation.
        meta
            Free-form text describing why the diagnostics were collected.

        Returns
        -------
        pathlib.Path
            Directory holding the diagnostic files.
        """
        return await dump_diagnostics(self, timeout, meta=meta)

    def get_addon(self, name: str) -> Addon:
        """Retrieve a registered addon by name.

        Parameters
        ----------
        name
            Name of the addon.

        Returns
        -------
        Addon
            Registered addon.

        Raises
        ------
        AddonNotFoundError
            Raised if no addon of that name is registered.
        """
        with self._lock:
            addon = self._addons.get(name)
        if addon is None:
            raise AddonNotFoundError(name, self._name)
        return addon

    def list_addons(self) -> list[Addon]:
        """List the registered addons.

        Returns
        -------
        list of Addon
            Snapshot of the registered addons.
        """
        with self._lock:
            return list(self._addons.values())

    async def version(self, timeout: Timeout) -> semver.Version:
        """Retrieve the Kubernetes version of the cluster.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        semver.Version
            Version of the API server.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        api = client.VersionApi(self._api_client)
        try:
            async with timeout.enforce():
                info = await api.get_code(_request_timeout=timeout.left())
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error retrieving cluster version", e
            ) from e
        return semver.Version.parse(info.git_version.removeprefix("v"))


class ClusterBuilder(Protocol):
    """Builder that provisions a new cluster."""

    async def build(self, timeout: Timeout) -> Cluster:
        """Provision the cluster.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        Cluster
            Newly-provisioned cluster.
        """
        ...
