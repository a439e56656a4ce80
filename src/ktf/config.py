"""Configuration for ktf."""

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    CLEANUP_CONCURRENCY,
    CONFLICT_RETRIES,
    CONFLICT_RETRY_DELAY,
    ENV_PREFIX,
    ENVIRONMENT_HUNG_TIMEOUT,
    KIND_KEEP_CLUSTER_ENV_VAR,
    POLL_INTERVAL,
    ROOT_LOGGER,
)

__all__ = ["Config"]


class EnvFirstSettings(BaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, extra="forbid", validate_by_name=True
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and environment variables set for a
        single test run should take precedence.
        """
        return (env_settings, init_settings)


class Config(EnvFirstSettings):
    """Configuration for ktf."""

    debug: Annotated[
        bool,
        Field(
            title="Show debug output and log style",
            description=(
                "If True, then log level will be set to debug and output"
                " will be non-structured and human-readable."
            ),
        ),
    ] = False

    poll_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Interval between readiness checks",
            validation_alias=AliasChoices(
                ENV_PREFIX + "POLL_INTERVAL", "pollInterval"
            ),
        ),
    ] = POLL_INTERVAL

    cleanup_concurrency: Annotated[
        int,
        Field(
            title="Namespaces deleted in parallel during cleanup",
            ge=1,
            validation_alias=AliasChoices(
                ENV_PREFIX + "CLEANUP_CONCURRENCY", "cleanupConcurrency"
            ),
        ),
    ] = CLEANUP_CONCURRENCY

    conflict_retries: Annotated[
        int,
        Field(
            title="Attempts for updates that fail with a conflict",
            ge=1,
            validation_alias=AliasChoices(
                ENV_PREFIX + "CONFLICT_RETRIES", "conflictRetries"
            ),
        ),
    ] = CONFLICT_RETRIES

    conflict_retry_delay: Annotated[
        HumanTimedelta,
        Field(
            title="Delay between attempts after a conflict",
            validation_alias=AliasChoices(
                ENV_PREFIX + "CONFLICT_RETRY_DELAY", "conflictRetryDelay"
            ),
        ),
    ] = CONFLICT_RETRY_DELAY

    environment_hung_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Time before an unready environment dumps diagnostics",
            validation_alias=AliasChoices(
                ENV_PREFIX + "ENVIRONMENT_HUNG_TIMEOUT",
                "environmentHungTimeout",
            ),
        ),
    ] = ENVIRONMENT_HUNG_TIMEOUT

    keep_cluster: Annotated[
        bool,
        Field(
            title="Do not tear down kind clusters on cleanup",
            validation_alias=AliasChoices(
                ENV_PREFIX + "KEEP_CLUSTER",
                KIND_KEEP_CLUSTER_ENV_VAR,
                "keepCluster",
            ),
        ),
    ] = False

    log_profile: Annotated[
        Profile,
        Field(
            title="Logging profile",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_PROFILE", "logProfile"
            ),
        ),
    ] = Profile.development

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_LEVEL", "logLevel"
            ),
        ),
    ] = LogLevel.INFO

    add_timestamp: Annotated[
        bool,
        Field(
            title="Add timestamp to log lines",
            validation_alias=AliasChoices(
                ENV_PREFIX + "ADD_TIMESTAMP", "addTimestamp"
            ),
        ),
    ] = False

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding configuration.
        """
        with path.open("r") as f:
            config = cls(**(yaml.safe_load(f) or {}))
        config.configure_logging()
        return config

    def configure_logging(self) -> None:
        """Configure logging based on the configuration."""
        if self.debug:
            log_level = LogLevel.DEBUG
            log_profile = Profile.development
        else:
            log_level = self.log_level
            log_profile = self.log_profile

        configure_logging(
            profile=log_profile,
            log_level=log_level,
            add_timestamp=self.add_timestamp,
            name=ROOT_LOGGER,
        )
