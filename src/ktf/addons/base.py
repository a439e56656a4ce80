"""Base class for addons deployable onto a cluster."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from typing import TYPE_CHECKING, Protocol

from ..models.domain.kubernetes import Readiness
from ..timeout import Timeout

if TYPE_CHECKING:
    from ..clusters.base import Cluster

__all__ = ["Addon", "AddonBuilder"]


class Addon(metaclass=ABCMeta):
    """A named unit of functionality deployable onto a cluster.

    Addons are created by a builder, which fixes their configuration.
    Nothing about an addon changes after it has been built, so the same
    addon object may be safely queried from several tasks. Addons are
    deployed and deleted through `~ktf.clusters.base.Cluster.deploy_addon`
    and `~ktf.clusters.base.Cluster.delete_addon`, which maintain the
    cluster's addon registry and ensure dependencies are ready first.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the addon, unique within a cluster."""

    async def dependencies(self, cluster: Cluster) -> list[str]:
        """Names of the addons that must be ready before this one deploys.

        Parameters
        ----------
        cluster
            Cluster the addon will be deployed to, since dependencies may
            vary by cluster type.

        Returns
        -------
        list of str
            Names of the dependency addons.
        """
        return []

    @abstractmethod
    async def deploy(self, cluster: Cluster, timeout: Timeout) -> None:
        """Deploy the addon.

        This only starts the deployment. Use `ready` to determine when the
        addon has converged.

        Parameters
        ----------
        cluster
            Cluster to deploy to.
        timeout
            Timeout on operation.
        """

    @abstractmethod
    async def delete(self, cluster: Cluster, timeout: Timeout) -> None:
        """Remove the addon from the cluster.

        Parameters
        ----------
        cluster
            Cluster to remove the addon from.
        timeout
            Timeout on operation.
        """

    @abstractmethod
    async def ready(self, cluster: Cluster, timeout: Timeout) -> Readiness:
        """Check once whether the addon is ready.

        Parameters
        ----------
        cluster
            Cluster the addon was deployed to.
        timeout
            Timeout on operation.

        Returns
        -------
        Readiness
            Whether the addon is ready and, if not, what it is waiting for.
        """

    async def dump_diagnostics(
        self, cluster: Cluster, timeout: Timeout
    ) -> dict[str, bytes]:
        """Collect diagnostic information about the addon.

        Parameters
        ----------
        cluster
            Cluster the addon was deployed to.
        timeout
            Timeout on operation.

        Returns
        -------
        dict of bytes
            Mapping of file name to file contents.
        """
        return {}


class AddonBuilder(Protocol):
    """Builder that fixes the configuration of an addon."""

    def build(self) -> Addon:
        """Build the addon."""
        ...
