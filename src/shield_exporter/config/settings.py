import os
import re
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    CliImplicitFlag,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

# Flat environment variables read by earlier shield_exporter releases
LEGACY_ENV_VARS: dict[str, tuple[str, str]] = {
    "SHIELD_EXPORTER_SHIELD_BACKEND_URL": ("shield", "backend_url"),
    "SHIELD_EXPORTER_SHIELD_USERNAME": ("shield", "username"),
    "SHIELD_EXPORTER_SHIELD_PASSWORD": ("shield", "password"),
    "SHIELD_EXPORTER_FILTER_COLLECTORS": ("filter", "collectors"),
    "SHIELD_EXPORTER_METRICS_NAMESPACE": ("metrics", "namespace"),
    "SHIELD_EXPORTER_METRICS_ENVIRONMENT": ("metrics", "environment"),
    "SHIELD_EXPORTER_WEB_LISTEN_ADDRESS": ("web", "listen_address"),
    "SHIELD_EXPORTER_WEB_TELEMETRY_PATH": ("web", "telemetry_path"),
    "SHIELD_EXPORTER_WEB_AUTH_USERNAME": ("web", "auth_username"),
    "SHIELD_EXPORTER_WEB_AUTH_PASSWORD": ("web", "auth_password"),
    "SHIELD_EXPORTER_WEB_TLS_CERTFILE": ("web", "tls_certfile"),
    "SHIELD_EXPORTER_WEB_TLS_KEYFILE": ("web", "tls_keyfile"),
}

# Flags of earlier releases whose names differ from the settings fields
LEGACY_FLAGS: dict[str, str] = {
    "web.listen-address": "web.listen_address",
    "web.telemetry-path": "web.telemetry_path",
    "web.auth.username": "web.auth_username",
    "web.auth.password": "web.auth_password",
    "web.tls.cert_file": "web.tls_certfile",
    "web.tls.key_file": "web.tls_keyfile",
}

_FLAG_RE = re.compile(r"^--?(?P<name>[A-Za-z][\w.\-]*)(?P<value>=.*)?$", re.DOTALL)


def normalize_cli_args(args: Sequence[str]) -> list[str]:
    """
    Rewrite flags in the form earlier releases accepted.

    Go-style single dash flags become double dash, and renamed web flags map
    to their current names, e.g. "-web.listen-address=:9179" becomes
    "--web.listen_address=:9179".
    """
    normalized = []
    for arg in args:
        match = _FLAG_RE.match(arg)
        if not match or arg in ("-h", "--help"):
            normalized.append(arg)
            continue
        name = LEGACY_FLAGS.get(match["name"], match["name"])
        normalized.append(f"--{name}{match['value'] or ''}")
    return normalized


class LegacyEnvSettingsSource(PydanticBaseSettingsSource):
    """Maps the flat SHIELD_EXPORTER_* variables onto the nested settings. Empty values are ignored."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, dict[str, str]] = {}
        for env_name, (group, key) in LEGACY_ENV_VARS.items():
            value = os.environ.get(env_name)
            if value:
                data.setdefault(group, {})[key] = value
        return data


class ShieldSettings(BaseModel):
    backend_url: str = ""
    username: str = ""
    password: SecretStr = SecretStr("")
    skip_ssl_validation: bool = False
    timeout: float | None = None


class FilterSettings(BaseModel):
    # Comma separated: Archives,Jobs,RetentionPolicies,Schedules,Status,Stores,Targets,Tasks
    collectors: str = ""


class MetricsSettings(BaseModel):
    namespace: str = "shield"
    environment: str = ""


class WebSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 9179
    # "host:port" form, e.g. ":9179"; overrides host and port when set
    listen_address: str | None = None
    telemetry_path: str = "/metrics"
    auth_username: str = ""
    auth_password: SecretStr = SecretStr("")
    tls_certfile: str | None = None
    tls_keyfile: str | None = None

    @field_validator("telemetry_path")
    @classmethod
    def check_telemetry_path(cls, value: str) -> str:
        if not value.startswith("/") or value == "/":
            raise ValueError("telemetry_path must start with '/' and cannot be the root path")
        return value

    @model_validator(mode="after")
    def apply_listen_address(self):
        if not self.listen_address:
            return self
        host, sep, port = self.listen_address.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"listen_address must be in host:port form, got {self.listen_address!r}")
        self.host = host.strip("[]") or "0.0.0.0"
        self.port = int(port)
        return self

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_username and self.auth_password.get_secret_value())

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_certfile and self.tls_keyfile)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        yaml_file="config.yaml",
        env_prefix="SHIELD_EXPORTER_",
        env_nested_delimiter="__",
        cli_prog_name="shield-exporter",
    )

    shield: ShieldSettings = ShieldSettings()
    filter: FilterSettings = FilterSettings()
    metrics: MetricsSettings = MetricsSettings()
    web: WebSettings = WebSettings()
    log_level: str = "INFO"
    log_file: str | None = None
    version: CliImplicitFlag[bool] = Field(default=False, description="Print version information.")

    @classmethod
    def from_args(cls, args: Sequence[str]) -> "Settings":
        """Parse command line flags, accepting the flag names of earlier releases."""
        return cls(_cli_parse_args=normalize_cli_args(args))

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            LegacyEnvSettingsSource(settings_cls),
            YamlConfigSettingsSource(settings_cls),
        )
