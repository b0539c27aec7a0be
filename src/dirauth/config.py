"""Configuration for dirauth.

dirauth is configured by a YAML file whose path defaults to
:file:`/etc/dirauth/dirauth.yaml` and can be overridden with the
``DIRAUTH_CONFIG_PATH`` environment variable. Secrets, such as the password
of the LDAP service account and the Slack webhook URL, are normally injected
via environment variables instead. Only the settings with explicit
``validation_alias`` settings support configuration via environment variable.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal, Self, override

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    UrlConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import Url
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_RECONNECT_ERRORS,
    DEFAULT_SEARCH_QUERY,
    SEARCH_PLACEHOLDER,
)

LdapDsn = Annotated[
    Url, UrlConstraints(allowed_schemes=["ldap", "ldaps"], host_required=True)
]
"""DSN for connecting to an LDAP server."""

__all__ = [
    "CamelCaseSettings",
    "Config",
    "EnvFirstSettings",
    "LDAPConfig",
    "LDAPTLSConfig",
    "LdapDsn",
]


class CamelCaseSettings(BaseSettings):
    """Base class for Pydantic settings supporting camel-case.

    This base class also forbids all extra attributes. It should be used as
    the base class (possibly indirectly) for all dirauth configuration
    models that support environment variable overrides.
    """

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )


class EnvFirstSettings(CamelCaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    @override
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
        from the YAML configuration file and secrets are injected via the
        environment.
        """
        return (env_settings, init_settings)


class LDAPTLSConfig(BaseModel):
    """TLS settings for the connection to the LDAP server.

    An ``ldaps`` URL always uses TLS. These settings control certificate
    verification for it and whether an ``ldap`` URL is upgraded with
    STARTTLS.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    start_tls: bool = Field(
        False,
        title="Use STARTTLS",
        description="Whether to upgrade an ``ldap`` connection with STARTTLS",
    )

    cert_policy: Literal["never", "allow", "try", "demand"] | None = Field(
        None,
        title="Certificate policy",
        description=(
            "How strictly to check the certificate of the LDAP server. If not"
            " set, the default of the LDAP client library is used."
        ),
    )

    ca_cert: Path | None = Field(
        None,
        title="CA certificate",
        description="File containing the CA certificates to trust",
    )

    ca_cert_dir: Path | None = Field(
        None,
        title="CA certificate directory",
        description="Directory containing the CA certificates to trust",
    )

    client_cert: Path | None = Field(
        None,
        title="Client certificate",
        description="Client certificate to present to the LDAP server",
    )

    client_key: Path | None = Field(
        None,
        title="Client key",
        description="Private key for the client certificate",
    )

    @model_validator(mode="after")
    def _validate_client_key(self) -> Self:
        """Ensure the client certificate and key are set together."""
        if bool(self.client_cert) != bool(self.client_key):
            msg = "clientCert and clientKey must be set together"
            raise ValueError(msg)
        return self


class LDAPConfig(EnvFirstSettings):
    """Configuration for the LDAP server users authenticate against.

    A new connection is created from this configuration for every
    authentication attempt.
    """

    url: LdapDsn = Field(
        ...,
        title="LDAP server URL",
        description="URL of the LDAP server, using ``ldap`` or ``ldaps``",
    )

    base_dn: str = Field(
        ...,
        title="Base DN for user searches",
        description="Base DN of the subtree searched for the user entry",
    )

    bind_dn: str = Field(
        ...,
        title="Service account DN",
        description=(
            "DN of the service account used to search for the user entry"
            " before checking the user's password"
        ),
    )

    bind_password: SecretStr = Field(
        ...,
        title="Service account password",
        description="Password of the service account",
        validation_alias=AliasChoices(
            "DIRAUTH_LDAP_BIND_PASSWORD", "bindPassword"
        ),
    )

    search_query: str = Field(
        DEFAULT_SEARCH_QUERY,
        title="User search filter",
        description=(
            "LDAP filter used to find the user entry. Every ``{0}`` is"
            " replaced with the username, escaped so that it only matches"
            " itself. The default matches Active Directory users by"
            " ``sAMAccountName`` or ``userPrincipalName``."
        ),
    )

    tls: LDAPTLSConfig | None = Field(
        None,
        title="TLS settings",
        description="TLS settings for the connection to the LDAP server",
    )

    timeout: HumanTimedelta | None = Field(
        None,
        title="Operation timeout",
        description="Timeout for each LDAP operation",
    )

    connect_timeout: HumanTimedelta | None = Field(
        None,
        title="Connection timeout",
        description=(
            "Timeout for establishing a connection. Defaults to ``timeout``."
        ),
    )

    idle_timeout: HumanTimedelta | None = Field(
        None,
        title="Idle timeout",
        description=(
            "Close the connection if it has been idle for this long between"
            " operations"
        ),
    )

    reconnect: bool = Field(
        False,
        title="Reconnect after resets",
        description=(
            "If set to true, reopen the connection and retry the interrupted"
            " operation once after one of the errors in ``reconnectErrors``."
            " Those errors are then not treated as authentication failures."
        ),
    )

    reconnect_errors: list[str] = Field(
        list(DEFAULT_RECONNECT_ERRORS),
        title="Recoverable connection errors",
        description=(
            "Error codes treated as recoverable connection resets when"
            " ``reconnect`` is enabled: symbolic ``errno`` names such as"
            " ``ECONNRESET``, or the names of LDAP client exceptions such as"
            " ``ConnectionError``"
        ),
    )

    max_connections: int = Field(
        DEFAULT_MAX_CONNECTIONS,
        title="Maximum connections",
        description=(
            "Maximum number of LDAP connections open at the same time."
            " Authentication attempts beyond this wait for a free slot."
        ),
        ge=1,
    )

    @field_validator("search_query")
    @classmethod
    def _validate_search_query(cls, v: str) -> str:
        if SEARCH_PLACEHOLDER not in v:
            msg = f"searchQuery must contain {SEARCH_PLACEHOLDER}"
            raise ValueError(msg)
        return v


class Config(EnvFirstSettings):
    """Configuration for dirauth."""

    log_level: LogLevel = Field(
        LogLevel.INFO,
        title="Log level",
        description="Log level of the application's logger",
        validation_alias=AliasChoices("DIRAUTH_LOG_LEVEL", "logLevel"),
    )

    username_field: str = Field(
        "username",
        title="Username field",
        description=(
            "Name of the form field, JSON key, or query parameter holding the"
            " username in login requests"
        ),
    )

    password_field: str = Field(
        "password",
        title="Password field",
        description=(
            "Name of the form field, JSON key, or query parameter holding the"
            " password in login requests"
        ),
    )

    slack_alerts: bool = Field(
        False,
        title="Enable Slack alerts",
        description=(
            "Whether to enable Slack alerts. If true, ``slack_webhook`` must"
            " also be set."
        ),
    )

    slack_webhook: SecretStr | None = Field(
        None,
        title="Slack webhook for alerts",
        description="If set, alerts will be posted to this Slack webhook",
        validation_alias=AliasChoices(
            "DIRAUTH_SLACK_WEBHOOK", "slackWebhook"
        ),
    )

    ldap: LDAPConfig = Field(
        ...,
        title="LDAP configuration",
        description="Settings for the LDAP server to authenticate against",
    )

    @model_validator(mode="after")
    def _validate_slack(self) -> Self:
        if self.slack_alerts and not self.slack_webhook:
            raise ValueError("slackWebhook required if slackAlerts is set")
        return self

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct a Config object from a configuration file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding `Config` object.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f))

    def configure_logging(self) -> None:
        """Configure logging based on the dirauth configuration."""
        configure_logging(name="dirauth", log_level=self.log_level)
