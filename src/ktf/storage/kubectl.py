"""Apply and delete raw manifests with :command:`kubectl`."""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any

import sh
import yaml
from structlog.stdlib import BoundLogger

from ..exceptions import KubectlError, OperationTimeoutError
from ..models.domain.cluster import ConnectionConfig
from ..timeout import Timeout

__all__ = ["Kubectl", "temporary_kubeconfig", "wait_for_command"]


@contextmanager
def temporary_kubeconfig(
    connection: ConnectionConfig, name: str
) -> Iterator[Path]:
    """Write a kubeconfig for a connection to a temporary file.

    The file is readable only by the current user and is removed on exit.

    Parameters
    ----------
    connection
        Connection details of the cluster.
    name
        Name of the cluster, used for the context in the kubeconfig.

    Yields
    ------
    pathlib.Path
        Path to the kubeconfig file.
    """
    kubeconfig = connection.to_kubeconfig(name)
    with tempfile.NamedTemporaryFile(
        "w", prefix="ktf-kubeconfig-", suffix=".yaml", delete=False
    ) as f:
        yaml.safe_dump(kubeconfig, f)
        path = Path(f.name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


async def wait_for_command(
    process: sh.RunningCommand, timeout: Timeout
) -> str:
    """Wait for a command started by sh with ``_async=True``.

    If the timeout expires or the waiting task is cancelled, the child
    process is killed before the exception propagates.

    Parameters
    ----------
    process
        Running command.
    timeout
        Timeout on operation.

    Returns
    -------
    str
        Standard output of the command.

    Raises
    ------
    OperationTimeoutError
        Raised if the timeout expired.
    sh.ErrorReturnCode
        Raised if the command failed.
    """
    try:
        async with timeout.enforce():
            return await process
    except (OperationTimeoutError, asyncio.CancelledError):
        # The process may have exited between the timeout and the kill.
        with suppress(ProcessLookupError):
            process.kill()
        raise


class Kubectl:
    """Run :command:`kubectl` against one cluster.

    Manifests are passed to :command:`kubectl` on standard input so that the
    text that created a set of resources can also be used to delete them.

    Parameters
    ----------
    connection
        Connection details of the cluster.
    cluster_name
        Name of the cluster, used in the generated kubeconfig and in logs.
    logger
        Logger to use.
    command
        Name or path of the :command:`kubectl` binary.
    """

    def __init__(
        self,
        connection: ConnectionConfig,
        cluster_name: str,
        logger: BoundLogger,
        *,
        command: str = "kubectl",
    ) -> None:
        self._connection = connection
        self._cluster_name = cluster_name
        self._logger = logger.bind(cluster=cluster_name)
        self._command = command

    async def apply(self, manifest: str, timeout: Timeout) -> None:
        """Apply a manifest.

        Parameters
        ----------
        manifest
            YAML text of one or more Kubernetes objects.
        timeout
            Timeout on operation.

        Raises
        ------
        KubectlError
            Raised if :command:`kubectl` failed.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Applying manifest")
        await self._run(["apply", "-f", "-"], timeout, manifest=manifest)

    async def delete(self, manifest: str, timeout: Timeout) -> None:
        """Delete the objects in a manifest.

        Objects that do not exist are ignored.

        Parameters
        ----------
        manifest
            YAML text of one or more Kubernetes objects.
        timeout
            Timeout on operation.

        Raises
        ------
        KubectlError
            Raised if :command:`kubectl` failed.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Deleting manifest")
        args = ["delete", "--ignore-not-found", "-f", "-"]
        await self._run(args, timeout, manifest=manifest)

    async def apply_url(self, url: str, timeout: Timeout) -> None:
        """Apply a manifest published at a URL.

        Parameters
        ----------
        url
            URL of the manifest.
        timeout
            Timeout on operation.

        Raises
        ------
        KubectlError
            Raised if :command:`kubectl` failed.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Applying manifest", url=url)
        await self._run(["apply", "-f", url], timeout)

    async def delete_url(self, url: str, timeout: Timeout) -> None:
        """Delete the objects in a manifest published at a URL.

        Parameters
        ----------
        url
            URL of the manifest.
        timeout
            Timeout on operation.

        Raises
        ------
        KubectlError
            Raised if :command:`kubectl` failed.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Deleting manifest", url=url)
        await self._run(["delete", "--ignore-not-found", "-f", url], timeout)

    async def _run(
        self, args: list[str], timeout: Timeout, *, manifest: str | None = None
    ) -> str:
        command = [self._command, *args]
        kwargs: dict[str, Any] = {"_async": True}
        if manifest is not None:
            kwargs["_in"] = manifest
        with temporary_kubeconfig(self._connection, self._cluster_name) as p:
            try:
                kubectl = sh.Command(self._command)
                process = kubectl("--kubeconfig", str(p), *args, **kwargs)
                return await wait_for_command(process, timeout)
            except sh.CommandNotFound as e:
                msg = "kubectl not found"
                raise KubectlError(msg, command) from e
            except sh.ErrorReturnCode as e:
                stderr = e.stderr.decode(errors="replace")
                raise KubectlError("kubectl failed", command, stderr) from e
