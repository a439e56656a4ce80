"""Clusters provisioned outside of ktf and reached through a kubeconfig."""

from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar, Self, override

import yaml
from kubernetes_asyncio import config as kube_config
from structlog.stdlib import BoundLogger, get_logger

from ..config import Config
from ..constants import ROOT_LOGGER
from ..exceptions import ConfigurationError
from ..models.domain.cluster import ClusterType, ConnectionConfig, IPFamily
from ..timeout import Timeout
from .base import Cluster

__all__ = ["ExistingCluster", "ExistingClusterBuilder"]


class ExistingCluster(Cluster):
    """A cluster whose lifecycle is managed by someone else.

    Cleanup removes the addons deployed through ktf, most recently deployed
    first, but leaves the cluster itself running.
    """

    cluster_type: ClassVar[ClusterType] = ClusterType.EXISTING

    @override
    async def cleanup(self, timeout: Timeout) -> None:
        for addon in reversed(self.list_addons()):
            await self.delete_addon(addon, timeout)
        await self.close()


class ExistingClusterBuilder:
    """Connect to an existing cluster using a kubeconfig file.

    Parameters
    ----------
    kubeconfig
        Path to the kubeconfig file. Defaults to the first path in
        :envvar:`KUBECONFIG` or :file:`~/.kube/config`.
    config
        Configuration for ktf.
    logger
        Logger to use.
    """

    def __init__(
        self,
        kubeconfig: Path | None = None,
        *,
        config: Config | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._kubeconfig = kubeconfig
        self._config = config or Config()
        self._logger = logger or get_logger(ROOT_LOGGER)
        self._context: str | None = None
        self._ip_family = IPFamily.IPV4

    def with_context(self, context: str) -> Self:
        """Use a context other than the current one of the kubeconfig."""
        self._context = context
        return self

    def with_ip_family(self, ip_family: IPFamily) -> Self:
        """Set the IP families supported by the cluster."""
        self._ip_family = ip_family
        return self

    async def build(self, timeout: Timeout) -> ExistingCluster:
        """Connect to the cluster.

        The name of the cluster is the name of the kubeconfig context. The
        server version is queried to check that the cluster is reachable.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        ExistingCluster
            Handle to the cluster.

        Raises
        ------
        ConfigurationError
            Raised if the kubeconfig cannot be read or does not contain the
            requested context.
        KubernetesError
            Raised if the cluster cannot be reached.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        path = self._kubeconfig_path()
        try:
            kubeconfig = yaml.safe_load(path.read_text())
            context = self._context or kubeconfig["current-context"]
            connection = ConnectionConfig.from_kubeconfig(kubeconfig, context)
        except (OSError, KeyError, TypeError, ValueError) as e:
            msg = f"Cannot load kubeconfig {path}: {e}"
            raise ConfigurationError(msg) from e

        api_client = await kube_config.new_client_from_config_dict(
            kubeconfig, context=context
        )
        cluster = ExistingCluster(
            name=context,
            api_client=api_client,
            connection=connection,
            ip_family=self._ip_family,
            config=self._config,
            logger=self._logger,
        )
        try:
            version = await cluster.version(timeout)
        except Exception:
            await cluster.close()
            raise
        cluster.logger.info("Connected to cluster", version=str(version))
        return cluster

    def _kubeconfig_path(self) -> Path:
        if self._kubeconfig:
            return self._kubeconfig
        if paths := os.environ.get("KUBECONFIG"):
            return Path(paths.split(os.pathsep)[0])
        return Path.home() / ".kube" / "config"
