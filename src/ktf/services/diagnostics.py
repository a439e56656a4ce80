"""Collect a snapshot of a cluster for offline debugging."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from kubernetes_asyncio.client import V1Pod

from ..constants import DIAGNOSTICS_PREFIX
from ..exceptions import KubernetesError
from ..storage.kubernetes.deleter import PodStorage
from ..storage.kubernetes.namespace import NamespaceStorage
from ..timeout import Timeout

if TYPE_CHECKING:
    from ..clusters.base import Cluster

__all__ = ["dump_diagnostics"]


async def dump_diagnostics(
    cluster: Cluster, timeout: Timeout, *, meta: str = ""
) -> Path:
    """Write diagnostic information about a cluster to a new directory.

    The directory contains the logs of every container of every pod under
    :file:`pod_logs`, the diagnostics of each registered addon under
    :file:`addons/{name}`, and the provided metadata in :file:`meta.txt`.
    Failures to retrieve the logs of a pod or the diagnostics of an addon
    are recorded in :file:`pod_logs_failures.txt` and
    :file:`addon_failures.txt` rather than aborting the dump.

    Parameters
    ----------
    cluster
        Cluster to collect diagnostics from.
    timeout
        Timeout on operation.
    meta
        Free-form text identifying this set of diagnostics.

    Returns
    -------
    pathlib.Path
        Newly-created directory holding the diagnostics.

    Raises
    ------
    KubernetesError
        Raised if the pods of the cluster could not be listed.
    OperationTimeoutError
        Raised if the timeout expired.
    """
    output = Path(tempfile.mkdtemp(prefix=DIAGNOSTICS_PREFIX))
    logger = cluster.logger.bind(output=str(output))
    logger.info("Dumping cluster diagnostics")

    pods = await _list_pods(cluster, timeout)
    logs_dir = output / "pod_logs"
    logs_dir.mkdir()
    storage = PodStorage(cluster.api_client, logger)
    failed_pods = {}
    for pod in pods:
        key = f"{pod.metadata.namespace}/{pod.metadata.name}"
        try:
            logs = await _read_pod_logs(storage, pod, timeout)
        except KubernetesError as e:
            failed_pods[key] = str(e)
            continue
        path = logs_dir / f"{pod.metadata.namespace}_{pod.metadata.name}"
        path.write_text(logs)
    if failed_pods:
        _write_failures(output / "pod_logs_failures.txt", failed_pods)

    failed_addons = {}
    for addon in cluster.list_addons():
        try:
            diagnostics = await addon.dump_diagnostics(cluster, timeout)
        except Exception as e:
            failed_addons[addon.name] = str(e)
            continue
        if not diagnostics:
            continue
        addon_dir = output / "addons" / addon.name
        addon_dir.mkdir(parents=True)
        for filename, content in diagnostics.items():
            (addon_dir / filename).write_bytes(content)
    if failed_addons:
        _write_failures(output / "addon_failures.txt", failed_addons)

    (output / "meta.txt").write_text(meta)
    return output


async def _list_pods(cluster: Cluster, timeout: Timeout) -> list[V1Pod]:
    namespaces = NamespaceStorage(cluster.api_client, cluster.logger)
    storage = PodStorage(cluster.api_client, cluster.logger)
    pods = []
    for namespace in await namespaces.list(timeout):
        pods.extend(await storage.list(namespace.metadata.name, timeout))
    return pods


async def _read_pod_logs(
    storage: PodStorage, pod: V1Pod, timeout: Timeout
) -> str:
    containers = pod.spec.containers if pod.spec else []
    sections = []
    for container in containers:
        log = await storage.read_log(
            pod.metadata.name, pod.metadata.namespace, container.name, timeout
        )
        sections.append(f"==> {container.name} <==\n{log}")
    return "\n".join(sections)


def _write_failures(path: Path, failures: dict[str, str]) -> None:
    path.write_text("".join(f"{k}: {v}\n" for k, v in failures.items()))
