"""Constants for ktf."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "ALERT_HOOK_ENV_VAR",
    "CERT_MANAGER_MANIFEST_URL",
    "CERT_MANAGER_VERSION",
    "CLEANUP_CONCURRENCY",
    "CLI_TIMEOUT",
    "CLUSTER_CLEANUP_TIMEOUT",
    "CONFIG_FILE",
    "CONFIG_FILE_ENV_VAR",
    "CONFLICT_RETRIES",
    "CONFLICT_RETRY_DELAY",
    "DIAGNOSTICS_PREFIX",
    "DIAGNOSTICS_TIMEOUT",
    "ENVIRONMENT_HUNG_TIMEOUT",
    "ENV_PREFIX",
    "KIND_KEEP_CLUSTER_ENV_VAR",
    "KIND_NODE_IMAGE",
    "POLL_INTERVAL",
    "ROOT_LOGGER",
    "TEST_RESOURCE_LABEL",
]

ALERT_HOOK_ENV_VAR = "KTF_ALERT_HOOK"
"""Environment variable holding a Slack webhook for error alerts."""

CERT_MANAGER_MANIFEST_URL = (
    "https://github.com/jetstack/cert-manager/releases/download"
    "/v{version}/cert-manager.yaml"
)
"""Template for the URL of the release manifest of cert-manager."""

CERT_MANAGER_VERSION = "1.15.3"
"""Version of cert-manager deployed if none is requested."""

CLEANUP_CONCURRENCY = 8
"""Default maximum number of namespaces deleted in parallel."""

CLI_TIMEOUT = timedelta(minutes=15)
"""Default timeout for command-line operations."""

CLUSTER_CLEANUP_TIMEOUT = timedelta(minutes=5)
"""How long to wait for teardown of a cluster whose setup failed."""

CONFIG_FILE = Path("ktf.yaml")
"""Default path to the configuration file, relative to the working dir."""

ENV_PREFIX = "KTF_"
"""Prefix for configuration environment variables."""

CONFIG_FILE_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
"""Environment variable overriding the configuration file path."""

CONFLICT_RETRIES = 5
"""Default number of attempts for updates that fail with a conflict."""

CONFLICT_RETRY_DELAY = timedelta(seconds=1)
"""Default delay between attempts for updates that fail with a conflict."""

DIAGNOSTICS_PREFIX = "ktf-diag-"
"""Prefix of the temporary directories holding diagnostic dumps."""

DIAGNOSTICS_TIMEOUT = timedelta(minutes=5)
"""How long to spend dumping diagnostics after a failure."""

ENVIRONMENT_HUNG_TIMEOUT = timedelta(minutes=20)
"""How long an environment may stay unready before diagnostics are dumped."""

KIND_KEEP_CLUSTER_ENV_VAR = "KIND_KEEP_CLUSTER"
"""If set in the environment, kind clusters are not torn down."""

KIND_NODE_IMAGE = "kindest/node"
"""Repository of the node image used for kind clusters."""

POLL_INTERVAL = timedelta(milliseconds=200)
"""Default interval between readiness checks."""

ROOT_LOGGER = "ktf"
"""Name of the root logger."""

TEST_RESOURCE_LABEL = "created-by-ktf"
"""Label placed on generated resources, holding the creator's ID."""
