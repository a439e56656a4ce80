"""Addon that deploys a raw manifest into a namespace."""

from __future__ import annotations

from typing import TYPE_CHECKING, Self, override

from ..exceptions import ConfigurationError
from ..models.domain.kubernetes import Readiness
from ..services.readiness import ReadinessChecker
from ..timeout import Timeout
from .base import Addon

if TYPE_CHECKING:
    from ..clusters.base import Cluster

__all__ = ["ManifestAddon", "ManifestAddonBuilder"]


class ManifestAddon(Addon):
    """Deploy a manifest and wait for the workloads in its namespace.

    Built by `ManifestAddonBuilder`. The addon is ready once every workload
    in its namespace is available.
    """

    def __init__(
        self,
        *,
        name: str,
        namespace: str,
        manifest: str,
        dependencies: tuple[str, ...] = (),
    ) -> None:
        self._name = name
        self._namespace = namespace
        self._manifest = manifest
        self._dependencies = dependencies

    @property
    @override
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        """Namespace holding the workloads of the addon."""
        return self._namespace

    @override
    async def dependencies(self, cluster: Cluster) -> list[str]:
        return list(self._dependencies)

    @override
    async def deploy(self, cluster: Cluster, timeout: Timeout) -> None:
        await cluster.kubectl.apply(self._manifest, timeout)

    @override
    async def delete(self, cluster: Cluster, timeout: Timeout) -> None:
        await cluster.kubectl.delete(self._manifest, timeout)

    @override
    async def ready(self, cluster: Cluster, timeout: Timeout) -> Readiness:
        checker = ReadinessChecker(cluster.api_client, cluster.logger)
        return await checker.namespace(self._namespace, timeout)


class ManifestAddonBuilder:
    """Configure a `ManifestAddon`.

    Parameters
    ----------
    name
        Name of the addon.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._namespace = name
        self._manifest = ""
        self._dependencies: list[str] = []

    def with_dependencies(self, *names: str) -> Self:
        """Add addons that must be ready before this one is deployed."""
        self._dependencies.extend(names)
        return self

    def with_manifest(self, manifest: str) -> Self:
        """Set the YAML manifest to apply."""
        self._manifest = manifest
        return self

    def with_namespace(self, namespace: str) -> Self:
        """Set the namespace to watch for readiness.

        Defaults to the name of the addon.
        """
        self._namespace = namespace
        return self

    def build(self) -> ManifestAddon:
        """Build the addon.

        Returns
        -------
        ManifestAddon
            Addon with the configuration of this builder.

        Raises
        ------
        ConfigurationError
            Raised if no manifest was provided.
        """
        if not self._manifest.strip():
            msg = f"No manifest provided for addon {self._name}"
            raise ConfigurationError(msg)
        return ManifestAddon(
            name=self._name,
            namespace=self._namespace,
            manifest=self._manifest,
            dependencies=tuple(self._dependencies),
        )
