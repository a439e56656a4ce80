"""Dependency ordering of addon deployment."""

from __future__ import annotations

import functools
from datetime import timedelta
from graphlib import CycleError, TopologicalSorter
from typing import TYPE_CHECKING

from structlog.stdlib import BoundLogger

from ..constants import POLL_INTERVAL
from ..exceptions import (
    AddonNotFoundError,
    DependencyCycleError,
    DependencyNotFoundError,
    DependencyNotReadyError,
    OperationTimeoutError,
)
from ..timeout import Timeout
from .readiness import wait_for_readiness

if TYPE_CHECKING:
    from ..addons.base import Addon
    from ..clusters.base import Cluster

__all__ = [
    "build_dependency_graph",
    "check_for_cycles",
    "deployment_waves",
    "wait_for_dependencies",
]


async def build_dependency_graph(
    cluster: Cluster, addons: list[Addon]
) -> dict[str, list[str]]:
    """Map each addon name to the names of its dependencies.

    Parameters
    ----------
    cluster
        Cluster the addons are or will be deployed to.
    addons
        Addons to include in the graph.

    Returns
    -------
    dict of list of str
        Dependency graph.
    """
    return {a.name: await a.dependencies(cluster) for a in addons}


def check_for_cycles(graph: dict[str, list[str]], cluster: str) -> None:
    """Fail if a dependency graph contains a cycle.

    Parameters
    ----------
    graph
        Mapping of addon name to the names of its dependencies.
    cluster
        Name of the cluster, for error reporting.

    Raises
    ------
    DependencyCycleError
        Raised if the graph is not acyclic.
    """
    try:
        TopologicalSorter(graph).prepare()
    except CycleError as e:
        raise DependencyCycleError(list(reversed(e.args[1])), cluster) from e


def deployment_waves(
    graph: dict[str, list[str]], cluster: str
) -> list[list[str]]:
    """Group addons into waves that can be deployed concurrently.

    Every addon is in a later wave than all of its dependencies that are
    part of the graph. Dependencies outside the graph are assumed to be
    deployed already.

    Parameters
    ----------
    graph
        Mapping of addon name to the names of its dependencies.
    cluster
        Name of the cluster, for error reporting.

    Returns
    -------
    list of list of str
        Names of the addons in each wave, in deployment order.

    Raises
    ------
    DependencyCycleError
        Raised if the graph is not acyclic.
    """
    check_for_cycles(graph, cluster)
    sorter = TopologicalSorter(
        {k: [d for d in v if d in graph] for k, v in graph.items()}
    )
    sorter.prepare()
    waves = []
    while sorter.is_active():
        wave = sorted(sorter.get_ready())
        waves.append(wave)
        sorter.done(*wave)
    return waves


async def wait_for_dependencies(
    cluster: Cluster,
    addon: Addon,
    timeout: Timeout,
    *,
    interval: timedelta = POLL_INTERVAL,
    logger: BoundLogger,
) -> None:
    """Wait for the dependencies of an addon to be ready.

    Every dependency must already be registered with the cluster. Missing
    dependencies are not deployed automatically. Only the direct
    dependencies are checked, since each of them waited for its own
    dependencies when it was deployed.

    Parameters
    ----------
    cluster
        Cluster the addon is being deployed to.
    addon
        Addon being deployed.
    timeout
        Timeout for the wait.
    interval
        Time between readiness checks.
    logger
        Logger to use.

    Raises
    ------
    DependencyCycleError
        Raised if adding this addon creates a dependency cycle.
    DependencyNotFoundError
        Raised if a dependency is not registered with the cluster.
    DependencyNotReadyError
        Raised if a dependency did not become ready before the timeout.
    """
    names = await addon.dependencies(cluster)
    if not names:
        return
    registered = [a for a in cluster.list_addons() if a.name != addon.name]
    graph = await build_dependency_graph(cluster, registered)
    graph[addon.name] = names
    check_for_cycles(graph, cluster.name)

    dependencies = []
    for name in names:
        try:
            dependencies.append(cluster.get_addon(name))
        except AddonNotFoundError as e:
            raise DependencyNotFoundError(
                name, addon.name, cluster.name
            ) from e

    for dependency in dependencies:
        logger.debug("Waiting for dependency", dependency=dependency.name)
        operation = f"Waiting for dependency {dependency.name}"
        check = functools.partial(dependency.ready, cluster)
        try:
            await wait_for_readiness(
                check,
                timeout.child(operation),
                interval=interval,
                logger=logger.bind(dependency=dependency.name),
            )
        except OperationTimeoutError as e:
            raise DependencyNotReadyError(
                dependency.name, addon.name, cluster.name, e.pending
            ) from e
