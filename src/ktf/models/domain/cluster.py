"""Models describing clusters and how to connect to them."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr

__all__ = [
    "ClusterType",
    "ConnectionConfig",
    "IPFamily",
]


class ClusterType(StrEnum):
    """Backend that provisioned a cluster."""

    KIND = "kind"
    """Local cluster running in containers."""

    GKE = "gke"
    """Cloud-managed cluster on Google Kubernetes Engine."""

    EKS = "eks"
    """Cloud-managed cluster on Amazon Elastic Kubernetes Service."""

    OPENSHIFT = "openshift"
    """OpenShift cluster running in a local virtual machine."""

    EXISTING = "existing"
    """Cluster provisioned outside of ktf and reached via a kubeconfig."""


class IPFamily(StrEnum):
    """IP families a cluster supports for pods and services."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"
    DUAL = "dual"


class ConnectionConfig(BaseModel):
    """Raw connection details for a cluster's API server.

    This is the information needed to build a Kubernetes API client or to
    write a kubeconfig file for command-line tools such as
    :command:`kubectl`.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: Annotated[
        str, Field(title="API server URL", examples=["https://127.0.0.1:6443"])
    ]

    token: Annotated[
        SecretStr | None,
        Field(title="Bearer token used to authenticate"),
    ] = None

    ca_data: Annotated[
        str | None,
        Field(
            title="Certificate authority",
            description="Base64-encoded PEM certificate of the cluster CA",
        ),
    ] = None

    client_certificate_data: Annotated[
        str | None,
        Field(title="Base64-encoded PEM client certificate"),
    ] = None

    client_key_data: Annotated[
        SecretStr | None,
        Field(title="Base64-encoded PEM client private key"),
    ] = None

    verify_ssl: Annotated[
        bool, Field(title="Whether to verify the server certificate")
    ] = True

    @classmethod
    def from_kubeconfig(
        cls, kubeconfig: dict[str, Any], context: str | None = None
    ) -> Self:
        """Extract connection details from a parsed kubeconfig.

        Parameters
        ----------
        kubeconfig
            Parsed contents of a kubeconfig file.
        context
            Context to use. Defaults to the current context of the file.

        Returns
        -------
        ConnectionConfig
            Connection details of the selected context.

        Raises
        ------
        ValueError
            Raised if the context, or the cluster or user it refers to, is
            not present in the kubeconfig.
        """
        context = context or kubeconfig.get("current-context")
        ctx = _find_named(kubeconfig.get("contexts", []), context, "context")
        cluster_name = ctx["context"]["cluster"]
        clusters = kubeconfig.get("clusters", [])
        cluster = _find_named(clusters, cluster_name, "cluster")["cluster"]
        user: dict[str, Any] = {}
        if user_name := ctx["context"].get("user"):
            users = kubeconfig.get("users", [])
            user = _find_named(users, user_name, "user")["user"] or {}
        return cls(
            host=cluster["server"],
            token=user.get("token"),
            ca_data=cluster.get("certificate-authority-data"),
            client_certificate_data=user.get("client-certificate-data"),
            client_key_data=user.get("client-key-data"),
            verify_ssl=not cluster.get("insecure-skip-tls-verify", False),
        )

    def to_kubeconfig(self, name: str) -> dict[str, Any]:
        """Build a kubeconfig with a single context for this connection.

        Parameters
        ----------
        name
            Name to use for the cluster, user, and context entries.

        Returns
        -------
        dict
            Kubeconfig suitable for serialization to YAML.
        """
        cluster: dict[str, Any] = {"server": self.host}
        if self.ca_data:
            cluster["certificate-authority-data"] = self.ca_data
        if not self.verify_ssl:
            cluster["insecure-skip-tls-verify"] = True
        user: dict[str, Any] = {}
        if self.token:
            user["token"] = self.token.get_secret_value()
        if self.client_certificate_data:
            user["client-certificate-data"] = self.client_certificate_data
        if self.client_key_data:
            key = self.client_key_data.get_secret_value()
            user["client-key-data"] = key
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": name, "cluster": cluster}],
            "users": [{"name": name, "user": user}],
            "contexts": [
                {"name": name, "context": {"cluster": name, "user": name}}
            ],
            "current-context": name,
        }


def _find_named(
    entries: list[dict[str, Any]], name: str | None, kind: str
) -> dict[str, Any]:
    for entry in entries:
        if entry.get("name") == name:
            return entry
    raise ValueError(f"No {kind} named {name} in kubeconfig")
