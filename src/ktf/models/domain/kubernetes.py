"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Self, override

from kubernetes_asyncio.client import V1ObjectMeta

__all__ = [
    "KubernetesModel",
    "ObjectReference",
    "PropagationPolicy",
    "Readiness",
    "WatchEventType",
]

# API versions of the built-in kinds that may be passed as typed models
# without apiVersion and kind set.
_BUILTIN_API_VERSIONS = {
    "ConfigMap": "v1",
    "DaemonSet": "apps/v1",
    "Deployment": "apps/v1",
    "Ingress": "networking.k8s.io/v1",
    "Job": "batch/v1",
    "Namespace": "v1",
    "NetworkPolicy": "networking.k8s.io/v1",
    "PersistentVolumeClaim": "v1",
    "Pod": "v1",
    "ReplicaSet": "apps/v1",
    "Secret": "v1",
    "Service": "v1",
    "ServiceAccount": "v1",
    "StatefulSet": "apps/v1",
}


class KubernetesModel(Protocol):
    """Protocol for Kubernetes object models.

    kubernetes-asyncio_ doesn't currently expose type information, so this
    tells mypy that all the object models we deal with will have a metadata
    attribute.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


class PropagationPolicy(Enum):
    """Possible values for the ``propagationPolicy`` parameter to delete."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class ObjectReference:
    """Reference to a single Kubernetes object of any kind.

    Used to record objects for later deletion and to report which objects are
    blocking readiness.
    """

    api_version: str
    """API version of the object, such as ``apps/v1``."""

    kind: str
    """Kind of the object."""

    name: str
    """Name of the object."""

    namespace: str | None = None
    """Namespace of the object, or `None` if it is cluster-scoped."""

    plural: str | None = None
    """Resource plural, if it is not derivable from the kind."""

    @classmethod
    def from_object(cls, obj: KubernetesModel | dict[str, Any]) -> Self:
        """Create a reference to an existing object.

        Parameters
        ----------
        obj
            Either a typed Kubernetes model or a custom object as a `dict`.

        Returns
        -------
        ObjectReference
            Reference to that object.

        Raises
        ------
        ValueError
            Raised if the kind or API version of the object cannot be
            determined.
        """
        if isinstance(obj, dict):
            metadata = obj.get("metadata", {})
            api_version = obj.get("apiVersion")
            kind = obj.get("kind")
            name = metadata.get("name")
            namespace = metadata.get("namespace")
        else:
            kind = getattr(obj, "kind", None)
            if not kind:
                kind = type(obj).__name__.removeprefix("V1")
            api_version = getattr(obj, "api_version", None)
            if not api_version:
                api_version = _BUILTIN_API_VERSIONS.get(kind)
            name = obj.metadata.name
            namespace = obj.metadata.namespace
        if not api_version or not kind or not name:
            msg = f"Cannot determine kind and name of object {obj!r}"
            raise ValueError(msg)
        return cls(
            api_version=api_version, kind=kind, name=name, namespace=namespace
        )

    @property
    def group(self) -> str:
        """API group of the object, empty for the core group."""
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    @property
    def version(self) -> str:
        """Version portion of the API version."""
        return self.api_version.rsplit("/", 1)[-1]

    @property
    def resource(self) -> str:
        """Resource plural used in API paths."""
        if self.plural:
            return self.plural
        kind = self.kind.lower()
        if kind.endswith("y"):
            return kind[:-1] + "ies"
        if kind.endswith("s"):
            return kind + "es"
        return kind + "s"

    @override
    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


@dataclass
class Readiness:
    """Result of one readiness check.

    Computed afresh from the state of the cluster on every check.
    """

    ready: bool
    """Whether the checked unit of work has converged."""

    waiting: list[ObjectReference] = field(default_factory=list)
    """Objects still blocking readiness."""

    @classmethod
    def converged(cls) -> Self:
        """Create a result for a unit of work that is ready."""
        return cls(ready=True)

    @classmethod
    def blocked(cls, waiting: list[ObjectReference]) -> Self:
        """Create a result for a unit of work that is not yet ready.

        Parameters
        ----------
        waiting
            Objects still blocking readiness.
        """
        return cls(ready=False, waiting=waiting)

    def pending(self) -> list[str]:
        """Describe the blocking objects for error reporting."""
        return [str(r) for r in self.waiting]
