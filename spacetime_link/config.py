from functools import lru_cache
from pathlib import Path
from typing import Any, List, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError
from pydantic_settings import BaseSettings, SettingsConfigDict

from spacetime_link.exceptions import ConfigurationError, MissingConfigError


DEFAULT_SPACETIME_URI = "wss://bitcraft-early-access.spacetimedb.com"
DEFAULT_MODULE_NAME = "bitcraft-3"

SUPPORTED_SCHEMES = ("ws://", "wss://", "http://", "https://")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    logs_dir: Path = Field(default=Path("logs"), alias="LOGS_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str = Field(default="service.log", alias="LOG_FILE")

    cors_allow_origins_str: str = Field(default="http://localhost:3000", alias="ALLOW_ORIGINS")

    # SpacetimeDB connection
    spacetime_uri: str = Field(default=DEFAULT_SPACETIME_URI, alias="SPACETIME_URI")
    spacetime_module_name: str = Field(default=DEFAULT_MODULE_NAME, alias="SPACETIME_MODULE_NAME")
    spacetime_auth_token: str = Field(default="", alias="SPACETIME_AUTH_TOKEN")
    spacetime_connect_timeout: float = Field(default=10.0, alias="SPACETIME_CONNECT_TIMEOUT")

    # Readiness polling
    spacetime_poll_interval: float = Field(default=0.5, alias="SPACETIME_POLL_INTERVAL")
    spacetime_max_attempts: int = Field(default=10, alias="SPACETIME_MAX_ATTEMPTS")

    api_prefix: str = "/api"
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")

    @property
    def cors_allow_origins(self) -> List[str]:
        """Get CORS allowed origins as a list."""
        return [
            item.strip() for item in self.cors_allow_origins_str.split(",") if item.strip()
        ] if self.cors_allow_origins_str else ["http://localhost:3000"]


class ConnectionConfig(BaseModel):
    """Static parameters of the SpacetimeDB connection"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    uri: str
    module_name: str
    auth_token: str = Field(repr=False)
    connect_timeout: float = Field(default=10.0, gt=0)

    @field_validator("uri", "module_name", "auth_token", mode="before")
    @classmethod
    def _not_blank(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise PydanticCustomError("missing", "Field required")
        return value.strip() if isinstance(value, str) else value

    @field_validator("uri")
    @classmethod
    def _supported_scheme(cls, value: str) -> str:
        if not value.startswith(SUPPORTED_SCHEMES):
            raise ValueError(f"unsupported scheme, expected one of {', '.join(SUPPORTED_SCHEMES)}")
        return value

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConnectionConfig":
        return parse_connection_config({
            "uri": settings.spacetime_uri,
            "module_name": settings.spacetime_module_name,
            "auth_token": settings.spacetime_auth_token,
            "connect_timeout": settings.spacetime_connect_timeout,
        })


def parse_connection_config(data: Union[ConnectionConfig, Mapping[str, Any]]) -> ConnectionConfig:
    """Validate raw connection options, raising ConfigurationError on the first problem."""
    if isinstance(data, ConnectionConfig):
        return data
    try:
        return ConnectionConfig.model_validate(dict(data))
    except ValidationError as e:
        error = e.errors()[0]
        key = ".".join(str(part) for part in error["loc"]) or "connection"
        if error["type"] == "missing":
            raise MissingConfigError(key) from e
        raise ConfigurationError(key, error["msg"]) from e


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.logs_dir.mkdir(parents=True, exist_ok=True)
    return settings
