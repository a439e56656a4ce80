"""Clusters running locally in containers, managed with :command:`kind`."""

from __future__ import annotations

import uuid
from typing import Any, ClassVar, Self, override

import semver
import sh
import yaml
from kubernetes_asyncio import config as kube_config
from structlog.stdlib import BoundLogger, get_logger

from ..config import Config
from ..constants import CLUSTER_CLEANUP_TIMEOUT, KIND_NODE_IMAGE, ROOT_LOGGER
from ..exceptions import CommandError
from ..models.domain.cluster import ClusterType, ConnectionConfig, IPFamily
from ..storage.kubectl import wait_for_command
from ..timeout import Timeout
from .base import Cluster

__all__ = ["KindCluster", "KindClusterBuilder"]

_IPV6_CONFIG = {
    "kind": "Cluster",
    "apiVersion": "kind.x-k8s.io/v1alpha4",
    "networking": {"ipFamily": "ipv6"},
}


async def _kind(
    args: list[str], timeout: Timeout, *, stdin: str | None = None
) -> str:
    """Run :command:`kind` and return its standard output."""
    command = ["kind", *args]
    kwargs: dict[str, Any] = {"_async": True}
    if stdin is not None:
        kwargs["_in"] = stdin
    try:
        kind = sh.Command("kind")
        return await wait_for_command(kind(*args, **kwargs), timeout)
    except sh.CommandNotFound as e:
        raise CommandError("kind not found", command) from e
    except sh.ErrorReturnCode as e:
        stderr = e.stderr.decode(errors="replace")
        raise CommandError("kind failed", command, stderr) from e


class KindCluster(Cluster):
    """A cluster created by :command:`kind`.

    Cleanup deletes the cluster unless the ``keep_cluster`` setting is
    enabled, which can also be done with the :envvar:`KIND_KEEP_CLUSTER`
    environment variable.
    """

    cluster_type: ClassVar[ClusterType] = ClusterType.KIND

    @classmethod
    async def from_existing(
        cls,
        name: str,
        timeout: Timeout,
        *,
        ip_family: IPFamily = IPFamily.IPV4,
        config: Config | None = None,
        logger: BoundLogger | None = None,
    ) -> Self:
        """Connect to a :command:`kind` cluster that already exists.

        Parameters
        ----------
        name
            Name of the cluster.
        timeout
            Timeout on operation.
        ip_family
            IP families supported by the cluster.
        config
            Configuration for ktf.
        logger
            Logger to use.

        Returns
        -------
        KindCluster
            Handle to the cluster.

        Raises
        ------
        CommandError
            Raised if the kubeconfig of the cluster could not be retrieved.
        """
        output = await _kind(["get", "kubeconfig", "--name", name], timeout)
        kubeconfig = yaml.safe_load(output)
        context = f"kind-{name}"
        api_client = await kube_config.new_client_from_config_dict(
            kubeconfig, context=context
        )
        return cls(
            name=name,
            api_client=api_client,
            connection=ConnectionConfig.from_kubeconfig(kubeconfig, context),
            ip_family=ip_family,
            config=config,
            logger=logger,
        )

    @override
    async def cleanup(self, timeout: Timeout) -> None:
        if self.config.keep_cluster:
            self.logger.info("Keeping kind cluster")
            await self.close()
            return
        self.logger.info("Deleting kind cluster")
        await _kind(["delete", "cluster", "--name", self.name], timeout)
        await self.close()


class KindClusterBuilder:
    """Provision a new :command:`kind` cluster.

    Parameters
    ----------
    config
        Configuration for ktf.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._config = config or Config()
        self._logger = logger or get_logger(ROOT_LOGGER)
        self._name = str(uuid.uuid4())
        self._version: semver.Version | None = None
        self._ipv6_only = False

    @property
    def name(self) -> str:
        """Name of the cluster that will be created."""
        return self._name

    def with_ipv6_only(self) -> Self:
        """Create a cluster whose networking is IPv6 only."""
        self._ipv6_only = True
        return self

    def with_kubernetes_version(self, version: semver.Version) -> Self:
        """Set the Kubernetes version of the cluster nodes."""
        self._version = version
        return self

    def with_name(self, name: str) -> Self:
        """Set the name of the cluster, which defaults to a random UUID."""
        self._name = name
        return self

    async def build(self, timeout: Timeout) -> KindCluster:
        """Create the cluster and connect to it.

        If the cluster was created but could not be connected to, it is
        deleted again before the error is raised.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        KindCluster
            Newly-created cluster.

        Raises
        ------
        CommandError
            Raised if :command:`kind` failed.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        logger = self._logger.bind(cluster=self._name)
        args = ["create", "cluster", "--name", self._name]
        if self._version:
            args.extend(["--image", f"{KIND_NODE_IMAGE}:v{self._version}"])
        stdin = None
        ip_family = IPFamily.IPV4
        if self._ipv6_only:
            ip_family = IPFamily.IPV6
            args.extend(["--config", "-"])
            stdin = yaml.safe_dump(_IPV6_CONFIG)
        logger.info("Creating kind cluster", version=str(self._version))
        await _kind(args, timeout, stdin=stdin)

        try:
            cluster = await KindCluster.from_existing(
                self._name,
                timeout,
                ip_family=ip_family,
                config=self._config,
                logger=self._logger,
            )
        except Exception:
            logger.exception("Cannot connect to new kind cluster, deleting")
            operation = f"Deletion of kind cluster {self._name}"
            delete_timeout = Timeout(operation, CLUSTER_CLEANUP_TIMEOUT)
            delete = ["delete", "cluster", "--name", self._name]
            await _kind(delete, delete_timeout)
            raise
        return cluster
