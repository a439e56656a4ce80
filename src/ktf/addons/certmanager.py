"""Addon that deploys cert-manager with a self-signed cluster issuer."""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Self, override

import semver
import yaml
from kubernetes_asyncio.client import (
    V1Container,
    V1Job,
    V1JobSpec,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
)
from structlog.stdlib import BoundLogger

from ..constants import CERT_MANAGER_MANIFEST_URL, CERT_MANAGER_VERSION
from ..exceptions import ConfigurationError, KubernetesError
from ..models.domain.kubernetes import PropagationPolicy, Readiness
from ..services.readiness import ReadinessChecker, wait_for_readiness
from ..storage.kubernetes.custom import CustomStorage
from ..storage.kubernetes.deleter import JobStorage
from ..timeout import Timeout
from .base import Addon

if TYPE_CHECKING:
    from ..clusters.base import Cluster

__all__ = ["CertManagerAddon", "CertManagerAddonBuilder"]

ADDON_NAME = "cert-manager"
"""Name of the cert-manager addon."""

NAMESPACE = "cert-manager"
"""Namespace into which the release manifest installs cert-manager."""

WEBHOOK_WAIT_JOB = "cert-manager-webhook-wait"
"""Name of the job that succeeds once the admission webhook answers."""

ISSUER_NAME = "selfsigned"
"""Name of the default ``ClusterIssuer``."""

ISSUER_MANIFEST = f"""\
apiVersion: cert-manager.io/v1
kind: ClusterIssuer
metadata:
  name: {ISSUER_NAME}
spec:
  selfSigned: {{}}
"""


class CertManagerAddon(Addon):
    """Deploy cert-manager from its release manifest.

    Deployment applies the release manifest, starts a job that polls the
    admission webhook until it answers, waits for the namespace and that job
    to be ready, and then creates a self-signed ``ClusterIssuer`` and waits
    for it to report ``Ready``.

    Parameters
    ----------
    version
        Version of cert-manager to deploy.
    """

    def __init__(self, version: semver.Version) -> None:
        self._version = version

    @property
    @override
    def name(self) -> str:
        return ADDON_NAME

    @property
    def manifest_url(self) -> str:
        """URL of the release manifest for the configured version."""
        return CERT_MANAGER_MANIFEST_URL.format(version=self._version)

    @property
    def version(self) -> semver.Version:
        """Version of cert-manager deployed by this addon."""
        return self._version

    @override
    async def deploy(self, cluster: Cluster, timeout: Timeout) -> None:
        logger = cluster.logger.bind(addon=self.name)
        await cluster.kubectl.apply_url(self.manifest_url, timeout)
        await self._create_webhook_wait_job(cluster, timeout, logger)
        await wait_for_readiness(
            functools.partial(self.ready, cluster),
            timeout.child("Waiting for cert-manager webhook"),
            interval=cluster.config.poll_interval,
            logger=logger,
        )

        await cluster.kubectl.apply(ISSUER_MANIFEST, timeout)
        checker = ReadinessChecker(cluster.api_client, logger)
        storage = self._issuer_storage(cluster, logger)
        await wait_for_readiness(
            functools.partial(
                checker.condition,
                storage,
                ISSUER_NAME,
                "Ready",
                api_version="cert-manager.io/v1",
            ),
            timeout.child(f"Waiting for ClusterIssuer {ISSUER_NAME}"),
            interval=cluster.config.poll_interval,
            logger=logger,
        )

    @override
    async def delete(self, cluster: Cluster, timeout: Timeout) -> None:
        storage = JobStorage(cluster.api_client, cluster.logger)
        await storage.delete(
            WEBHOOK_WAIT_JOB,
            NAMESPACE,
            timeout,
            propagation_policy=PropagationPolicy.BACKGROUND,
        )
        await cluster.kubectl.delete(ISSUER_MANIFEST, timeout)
        await cluster.kubectl.delete_url(self.manifest_url, timeout)

    @override
    async def dump_diagnostics(
        self, cluster: Cluster, timeout: Timeout
    ) -> dict[str, bytes]:
        storage = self._issuer_storage(cluster, cluster.logger)
        issuer = await storage.read(ISSUER_NAME, timeout)
        if not issuer:
            return {}
        return {"clusterissuer.yaml": yaml.safe_dump(issuer).encode()}

    @override
    async def ready(self, cluster: Cluster, timeout: Timeout) -> Readiness:
        checker = ReadinessChecker(cluster.api_client, cluster.logger)
        readiness = await checker.namespace(NAMESPACE, timeout)
        if not readiness.ready:
            return readiness
        return await checker.job(WEBHOOK_WAIT_JOB, NAMESPACE, timeout)

    async def _create_webhook_wait_job(
        self, cluster: Cluster, timeout: Timeout, logger: BoundLogger
    ) -> None:
        url = f"https://cert-manager-webhook.{NAMESPACE}.svc/mutate"
        job = V1Job(
            metadata=V1ObjectMeta(name=WEBHOOK_WAIT_JOB),
            spec=V1JobSpec(
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(
                        labels={"app.kubernetes.io/name": WEBHOOK_WAIT_JOB}
                    ),
                    spec=V1PodSpec(
                        containers=[
                            V1Container(
                                name="curl",
                                image="curlimages/curl",
                                command=["curl", "-k", url],
                            )
                        ],
                        restart_policy="OnFailure",
                    )
                )
            ),
        )
        storage = JobStorage(cluster.api_client, logger)
        try:
            await storage.create(NAMESPACE, job, timeout)
        except KubernetesError as e:
            if e.status != 409:
                raise
            logger.debug("Webhook wait job already exists")

    def _issuer_storage(
        self, cluster: Cluster, logger: BoundLogger
    ) -> CustomStorage:
        return CustomStorage(
            api_client=cluster.api_client,
            group="cert-manager.io",
            version="v1",
            plural="clusterissuers",
            kind="ClusterIssuer",
            logger=logger,
        )


class CertManagerAddonBuilder:
    """Configure a `CertManagerAddon`."""

    def __init__(self) -> None:
        self._version = semver.Version.parse(CERT_MANAGER_VERSION)

    def with_version(self, version: semver.Version | str) -> Self:
        """Set the version of cert-manager to deploy.

        Parameters
        ----------
        version
            Version, with or without a leading ``v``.

        Raises
        ------
        ConfigurationError
            Raised if the version is not a valid semantic version.
        """
        if isinstance(version, str):
            try:
                version = semver.Version.parse(version.removeprefix("v"))
            except ValueError as e:
                msg = f"Invalid cert-manager version {version}"
                raise ConfigurationError(msg) from e
        self._version = version
        return self

    def build(self) -> CertManagerAddon:
        """Build the addon."""
        return CertManagerAddon(self._version)
