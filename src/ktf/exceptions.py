"""Exceptions for ktf."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "AddonAlreadyRegisteredError",
    "AddonDeploymentError",
    "AddonError",
    "AddonNotFoundError",
    "CleanupError",
    "CommandError",
    "ConfigurationError",
    "DependencyCycleError",
    "DependencyNotFoundError",
    "DependencyNotReadyError",
    "JobFailedError",
    "KubectlError",
    "KubernetesError",
    "OperationTimeoutError",
]


class ConfigurationError(SlackException):
    """Invalid combination of options passed to a builder.

    Raised before any call to the Kubernetes control plane is made.
    """


class OperationTimeoutError(SlackException):
    """Wraps `TimeoutError` with the operation that was pending.

    Parameters
    ----------
    operation
        Operation that timed out.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    pending
        Objects the operation was still waiting on, if known.
    """

    def __init__(
        self,
        operation: str,
        *,
        started_at: datetime,
        failed_at: datetime,
        pending: list[str] | None = None,
    ) -> None:
        self.operation = operation
        self.started_at = started_at
        self.pending = pending or []
        elapsed = failed_at - started_at
        msg = f"{operation} timed out after {elapsed.total_seconds()}s"
        if self.pending:
            msg += f" waiting for {', '.join(self.pending)}"
        super().__init__(msg, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        """Format the exception as a Slack message.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting with
            `~safir.slack.webhook.SlackWebhookClient`.
        """
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        message = SlackMessage(message=str(self), fields=fields)
        if self.pending:
            text = "\n".join(self.pending)
            message.blocks.append(SlackTextBlock(heading="Pending", text=text))
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata.
        """
        info = super().to_sentry()
        started_at = format_datetime_for_logging(self.started_at)
        info.contexts.setdefault("info", {})["started_at"] = started_at
        info.tags["operation"] = self.operation
        return info


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if obj := self._object():
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata.
        """
        info = super().to_sentry()
        if self.status:
            info.tags["status"] = str(self.status)
        if self.name:
            info.tags["name"] = self.name
        if self.kind:
            info.tags["kind"] = self.kind
        if self.namespace:
            info.tags["namespace"] = self.namespace
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _object(self) -> str | None:
        """Describe the object being acted on, if known."""
        kind = f"{self.kind} " if self.kind else ""
        if self.name:
            if self.namespace:
                return f"{kind}{self.namespace}/{self.name}"
            return f"{kind}{self.name}"
        if self.kind and self.namespace:
            return f"{self.kind} in namespace {self.namespace}"
        return self.kind

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        details = [d for d in (self._object(), self._status()) if d]
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"

    def _status(self) -> str | None:
        return f"status {self.status}" if self.status else None


class JobFailedError(SlackException):
    """A Kubernetes ``Job`` exhausted its retries without succeeding.

    Parameters
    ----------
    name
        Name of the job.
    namespace
        Namespace of the job.
    failed
        Number of failed pods reported in the job status.
    """

    def __init__(self, name: str, namespace: str, failed: int) -> None:
        msg = f"Job {namespace}/{name} failed after {failed} attempts"
        super().__init__(msg)
        self.name = name
        self.namespace = namespace
        self.failed = failed

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.tags["name"] = self.name
        info.tags["namespace"] = self.namespace
        return info


class CommandError(SlackException):
    """An external command such as ``kind`` failed.

    Parameters
    ----------
    message
        Summary of error.
    command
        Command line that was run.
    stderr
        Standard error of the command, if any.
    """

    def __init__(
        self, message: str, command: list[str], stderr: str | None = None
    ) -> None:
        super().__init__(message)
        self.command = command
        self.stderr = stderr

    @override
    def __str__(self) -> str:
        result = f"{self.args[0]} ({' '.join(self.command)})"
        if self.stderr:
            result += f": {self.stderr.strip()}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self.args[0]
        command = " ".join(self.command)
        message.blocks.append(SlackCodeBlock(heading="Command", code=command))
        if self.stderr:
            block = SlackCodeBlock(heading="Error", code=self.stderr)
            message.blocks.append(block)
        return message


class KubectlError(CommandError):
    """Applying or deleting a manifest with :command:`kubectl` failed."""


class CleanupError(SlackException):
    """Some namespaces could not be deleted during cleanup.

    Parameters
    ----------
    message
        Summary of error.
    failures
        Mapping of namespace name to the error deleting it.
    """

    def __init__(self, message: str, failures: dict[str, str]) -> None:
        self.failures = failures
        self.report = ", ".join(f"{k}: {v}" for k, v in failures.items())
        super().__init__(f"{message}: {self.report}")

    @override
    def to_slack(self) -> SlackMessage:
        """Format this exception as a Slack message."""
        message = super().to_slack()
        text = "\n".join(sorted(self.failures))
        block = SlackTextBlock(heading="Failed namespaces", text=text)
        message.attachments.append(block)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return Sentry metadata for this exception."""
        info = super().to_sentry()
        info.contexts["failures"] = self.failures
        return info


class AddonError(SlackException):
    """Base class for errors involving an addon on a cluster.

    Parameters
    ----------
    message
        Summary of error.
    addon
        Name of the addon.
    cluster
        Name of the cluster.
    """

    def __init__(self, message: str, *, addon: str, cluster: str) -> None:
        super().__init__(message)
        self.addon = addon
        self.cluster = cluster

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.fields.append(SlackTextField(heading="Addon", text=self.addon))
        field = SlackTextField(heading="Cluster", text=self.cluster)
        message.fields.append(field)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata.
        """
        info = super().to_sentry()
        info.tags["addon"] = self.addon
        info.tags["cluster"] = self.cluster
        return info


class AddonAlreadyRegisteredError(AddonError):
    """An addon of the same name is already registered with the cluster."""

    def __init__(self, addon: str, cluster: str) -> None:
        msg = f"Addon {addon} already registered with cluster {cluster}"
        super().__init__(msg, addon=addon, cluster=cluster)


class AddonNotFoundError(AddonError):
    """No addon of that name is registered with the cluster."""

    def __init__(self, addon: str, cluster: str) -> None:
        msg = f"Addon {addon} not registered with cluster {cluster}"
        super().__init__(msg, addon=addon, cluster=cluster)


class DependencyNotFoundError(AddonError):
    """A dependency of an addon has not been deployed to the cluster.

    Parameters
    ----------
    dependency
        Name of the missing dependency.
    addon
        Name of the addon that declared the dependency.
    cluster
        Name of the cluster.
    """

    def __init__(self, dependency: str, addon: str, cluster: str) -> None:
        msg = (
            f"Dependency {dependency} of addon {addon} is not deployed to"
            f" cluster {cluster}"
        )
        super().__init__(msg, addon=addon, cluster=cluster)
        self.dependency = dependency

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.tags["dependency"] = self.dependency
        return info


class DependencyNotReadyError(AddonError):
    """A dependency of an addon did not become ready in time.

    Parameters
    ----------
    dependency
        Name of the dependency.
    addon
        Name of the addon that declared the dependency.
    cluster
        Name of the cluster.
    pending
        Objects still blocking readiness of the dependency.
    """

    def __init__(
        self,
        dependency: str,
        addon: str,
        cluster: str,
        pending: list[str] | None = None,
    ) -> None:
        msg = (
            f"Dependency {dependency} of addon {addon} did not become ready"
            f" on cluster {cluster}"
        )
        self.pending = pending or []
        if self.pending:
            msg += f" (waiting for {', '.join(self.pending)})"
        super().__init__(msg, addon=addon, cluster=cluster)
        self.dependency = dependency

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        if self.pending:
            text = "\n".join(self.pending)
            message.blocks.append(SlackTextBlock(heading="Pending", text=text))
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.tags["dependency"] = self.dependency
        return info


class DependencyCycleError(SlackException):
    """The addon dependency graph of a cluster contains a cycle.

    Parameters
    ----------
    cycle
        Names of the addons forming the cycle, with the first addon repeated
        at the end.
    cluster
        Name of the cluster.
    """

    def __init__(self, cycle: list[str], cluster: str) -> None:
        path = " -> ".join(cycle)
        super().__init__(f"Addon dependency cycle on {cluster}: {path}")
        self.cycle = cycle
        self.cluster = cluster


class AddonDeploymentError(SlackException):
    """One or more addons of an environment failed to deploy.

    Parameters
    ----------
    cluster
        Name of the cluster.
    failures
        Mapping of addon name to the error deploying it.
    """

    def __init__(self, cluster: str, failures: dict[str, str]) -> None:
        self.cluster = cluster
        self.failures = failures
        report = "; ".join(f"{k}: {v}" for k, v in failures.items())
        super().__init__(f"Failed to deploy addons to {cluster}: {report}")

    @override
    def to_slack(self) -> SlackMessage:
        """Format this exception as a Slack message."""
        message = super().to_slack()
        for addon, error in self.failures.items():
            message.blocks.append(SlackCodeBlock(heading=addon, code=error))
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return Sentry metadata for this exception."""
        info = super().to_sentry()
        info.tags["cluster"] = self.cluster
        info.contexts["failures"] = self.failures
        return info
