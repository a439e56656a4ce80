"""Environments: a cluster together with the addons deployed to it."""

from __future__ import annotations

import asyncio
import uuid
from typing import Self

import semver
from structlog.stdlib import BoundLogger, get_logger

from ..addons.base import Addon
from ..clusters.base import Cluster, ClusterBuilder
from ..clusters.kind import KindClusterBuilder
from ..config import Config
from ..constants import (
    CLUSTER_CLEANUP_TIMEOUT,
    DIAGNOSTICS_TIMEOUT,
    ROOT_LOGGER,
)
from ..exceptions import (
    AddonDeploymentError,
    ConfigurationError,
    KubernetesError,
    OperationTimeoutError,
)
from ..models.domain.kubernetes import Readiness
from ..timeout import Timeout
from .dependencies import build_dependency_graph, deployment_waves
from .readiness import ReadinessChecker, wait_for_readiness

__all__ = ["Environment", "EnvironmentBuilder"]

_READY_DIAGNOSTIC_META = "WaitForReady"


class Environment:
    """A cluster and its addons, ready for use by tests.

    Parameters
    ----------
    name
        Name of the environment.
    cluster
        Cluster of the environment.
    logger
        Logger to use.
    """

    def __init__(
        self, name: str, cluster: Cluster, logger: BoundLogger
    ) -> None:
        self._name = name
        self._cluster = cluster
        self._logger = logger.bind(environment=name, cluster=cluster.name)

    @property
    def cluster(self) -> Cluster:
        """Cluster of the environment."""
        return self._cluster

    @property
    def name(self) -> str:
        """Name of the environment."""
        return self._name

    async def cleanup(self, timeout: Timeout) -> None:
        """Tear down the environment.

        Parameters
        ----------
        timeout
            Timeout on operation.
        """
        await self._cluster.cleanup(timeout)

    async def ready(self, timeout: Timeout) -> Readiness:
        """Check once whether the environment is ready.

        The system workloads of the cluster must be available and every
        registered addon must be ready.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        Readiness
            Readiness of the environment, listing everything still blocking.
        """
        checker = ReadinessChecker(self._cluster.api_client, self._logger)
        readiness = await checker.kube_system(timeout)
        ready = readiness.ready
        waiting = list(readiness.waiting)
        for addon in self._cluster.list_addons():
            result = await addon.ready(self._cluster, timeout)
            if not result.ready:
                ready = False
                waiting.extend(result.waiting)
        return Readiness(ready=ready, waiting=waiting)

    async def wait_for_ready(self, timeout: Timeout) -> None:
        """Wait for the environment to become ready.

        If the environment is still not ready after the configured
        ``environment_hung_timeout``, diagnostics are dumped while waiting
        continues. If the timeout expires, diagnostics are dumped before the
        error is raised.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Raises
        ------
        OperationTimeoutError
            Raised if the environment did not become ready in time.
        """
        config = self._cluster.config
        delay = config.environment_hung_timeout.total_seconds()
        hung = asyncio.create_task(self._dump_when_hung(delay))
        try:
            await wait_for_readiness(
                self.ready,
                timeout,
                interval=config.poll_interval,
                logger=self._logger,
            )
        except OperationTimeoutError:
            await self._dump_diagnostics()
            raise
        finally:
            hung.cancel()

    async def _dump_diagnostics(self) -> None:
        """Dump diagnostics, logging rather than raising any failure."""
        timeout = Timeout("Dumping diagnostics", DIAGNOSTICS_TIMEOUT)
        try:
            path = await self._cluster.dump_diagnostics(
                timeout, meta=_READY_DIAGNOSTIC_META
            )
        except (KubernetesError, OperationTimeoutError, OSError) as e:
            self._logger.warning("Cannot dump diagnostics", error=str(e))
            return
        self._logger.warning("Environment not ready", diagnostics=str(path))

    async def _dump_when_hung(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._dump_diagnostics()


class EnvironmentBuilder:
    """Build an `Environment`.

    By default a new :command:`kind` cluster is created. Alternatively, an
    existing cluster or a builder for some other kind of cluster can be
    provided.

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
        self._addons: dict[str, Addon] = {}
        self._existing_cluster: Cluster | None = None
        self._cluster_builder: ClusterBuilder | None = None
        self._kubernetes_version: semver.Version | None = None
        self._ipv6_only = False

    def with_addons(self, *addons: Addon) -> Self:
        """Add addons to deploy to the cluster.

        An addon with the same name as one added earlier replaces it.
        """
        for addon in addons:
            self._addons[addon.name] = addon
        return self

    def with_cluster_builder(self, builder: ClusterBuilder) -> Self:
        """Use a builder to create the cluster."""
        self._cluster_builder = builder
        return self

    def with_existing_cluster(self, cluster: Cluster) -> Self:
        """Deploy to an existing cluster instead of creating one."""
        self._existing_cluster = cluster
        return self

    def with_ipv6_only(self) -> Self:
        """Create a cluster whose networking is IPv6 only."""
        self._ipv6_only = True
        return self

    def with_kubernetes_version(self, version: semver.Version) -> Self:
        """Set the Kubernetes version of the created cluster."""
        self._kubernetes_version = version
        return self

    def with_name(self, name: str) -> Self:
        """Set the name of the environment, by default a random UUID."""
        self._name = name
        return self

    async def build(self, timeout: Timeout) -> Environment:
        """Create the environment.

        Addons are deployed concurrently, except that an addon is only
        deployed once all of its dependencies have been deployed. If
        deployment fails and the cluster was created by this builder, the
        cluster is torn down again.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        Environment
            Environment whose addons have all been deployed.

        Raises
        ------
        AddonDeploymentError
            Raised if any addon failed to deploy.
        ConfigurationError
            Raised if the builder options are inconsistent or an addon
            depends on an addon that was not provided.
        DependencyCycleError
            Raised if the addon dependencies form a cycle.
        """
        self._validate()
        cluster = await self._build_cluster(timeout)
        logger = self._logger.bind(
            environment=self._name, cluster=cluster.name
        )
        try:
            await self._deploy_addons(cluster, timeout, logger)
        except Exception as e:
            if self._existing_cluster is None:
                await self._cleanup_failed(cluster, e, logger)
            raise
        return Environment(self._name, cluster, self._logger)

    async def _build_cluster(self, timeout: Timeout) -> Cluster:
        if self._existing_cluster:
            return self._existing_cluster
        if self._cluster_builder:
            return await self._cluster_builder.build(timeout)
        builder = KindClusterBuilder(config=self._config, logger=self._logger)
        builder.with_name(self._name)
        if self._kubernetes_version:
            builder.with_kubernetes_version(self._kubernetes_version)
        if self._ipv6_only:
            builder.with_ipv6_only()
        return await builder.build(timeout)

    async def _cleanup_failed(
        self, cluster: Cluster, error: Exception, logger: BoundLogger
    ) -> None:
        """Tear down a cluster whose environment could not be set up.

        A failure of the teardown is attached to the original error as a
        note, since the original error is the one to report.
        """
        logger.warning("Environment setup failed, cleaning up cluster")
        operation = f"Cleanup of cluster {cluster.name}"
        try:
            await cluster.cleanup(Timeout(operation, CLUSTER_CLEANUP_TIMEOUT))
        except Exception as e:
            logger.exception("Cluster cleanup failed")
            error.add_note(f"Cleanup of cluster also failed: {e}")

    async def _deploy_addons(
        self, cluster: Cluster, timeout: Timeout, logger: BoundLogger
    ) -> None:
        addons = list(self._addons.values())
        graph = await build_dependency_graph(cluster, addons)
        registered = {a.name for a in cluster.list_addons()}
        missing: dict[str, list[str]] = {}
        for name, dependencies in graph.items():
            for dependency in dependencies:
                if dependency not in graph and dependency not in registered:
                    missing.setdefault(dependency, []).append(name)
        if missing:
            report = ", ".join(
                f"{d} (needed by {', '.join(n)})" for d, n in missing.items()
            )
            msg = f"Addon dependencies were not met, missing: {report}"
            raise ConfigurationError(msg)

        for wave in deployment_waves(graph, cluster.name):
            logger.info("Deploying addons", addons=wave)
            deploys = [
                self._deploy(cluster, self._addons[n], timeout) for n in wave
            ]
            results = await asyncio.gather(*deploys)
            failures = {
                n: str(e)
                for n, e in zip(wave, results, strict=True)
                if e
            }
            if failures:
                raise AddonDeploymentError(cluster.name, failures)

    async def _deploy(
        self, cluster: Cluster, addon: Addon, timeout: Timeout
    ) -> Exception | None:
        """Deploy one addon, returning rather than raising any error.

        All addons of a wave are allowed to finish so that every failure is
        reported.
        """
        try:
            await cluster.deploy_addon(addon, timeout)
        except Exception as e:
            cluster.logger.warning(
                "Addon deployment failed", addon=addon.name, error=str(e)
            )
            return e
        return None

    def _validate(self) -> None:
        if self._existing_cluster and self._cluster_builder:
            msg = "Cannot use both an existing cluster and a cluster builder"
            raise ConfigurationError(msg)
        if self._existing_cluster and self._kubernetes_version:
            msg = "Cannot set Kubernetes version of an existing cluster"
            raise ConfigurationError(msg)
        if self._cluster_builder and self._kubernetes_version:
            msg = "Cannot set Kubernetes version with a cluster builder"
            raise ConfigurationError(msg)
        if self._existing_cluster and self._ipv6_only:
            msg = "Cannot configure IPv6 only on an existing cluster"
            raise ConfigurationError(msg)
        if self._cluster_builder and self._ipv6_only:
            msg = "Cannot configure IPv6 only with a cluster builder"
            raise ConfigurationError(msg)
