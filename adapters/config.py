from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from adapters.constants import (
    DEFAULT_CONNECTION_TIMEOUT_MS,
    DEFAULT_POOL_MIN,
    DEFAULT_POOL_SIZE,
    DEFAULT_PORTS,
    DEFAULT_QUERY_TIMEOUT_MS,
    DEFAULT_IDLE_TIMEOUT_MS,
    ENGINE_ALIASES,
    MASKED_SECRET,
    UNSUPPORTED_ENGINE,
    EngineType,
)
from utils.env_loader import env_int, env_str


def normalize_engine(value: Union[str, EngineType, None]) -> EngineType:
    if isinstance(value, EngineType):
        return value
    key = (value or "").strip().lower()
    if key not in ENGINE_ALIASES:
        supported = ", ".join(sorted(ENGINE_ALIASES))
        raise ValueError(UNSUPPORTED_ENGINE.format(engine=value, supported=supported))
    return ENGINE_ALIASES[key]


class ConnectionConfig(BaseModel):
    """Immutable connection settings for one adapter instance.

    Accepts both snake_case names and the camelCase keys used by request
    payloads (``dbType``, ``poolSize``, ``connectionTimeout`` ...).
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    engine: EngineType = Field(validation_alias=AliasChoices("engine", "engineType", "engine_type", "dbType", "db_type"))
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    username: Optional[str] = Field(default=None, validation_alias=AliasChoices("username", "user"))
    password: Optional[SecretStr] = None
    database: Optional[str] = Field(default=None, validation_alias=AliasChoices("database", "dbname", "db_name"))
    file_path: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("file_path", "filePath", "db_path", "dbPath")
    )
    schema_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("schema_name", "schemaName", "schema"))

    pool_size: int = Field(default=DEFAULT_POOL_SIZE, ge=1, le=500, validation_alias=AliasChoices("pool_size", "poolSize"))
    pool_min: int = Field(default=DEFAULT_POOL_MIN, ge=0, validation_alias=AliasChoices("pool_min", "poolMin"))
    connection_timeout_ms: int = Field(
        default=DEFAULT_CONNECTION_TIMEOUT_MS,
        ge=1,
        validation_alias=AliasChoices("connection_timeout_ms", "connectionTimeout"),
    )
    request_timeout_ms: int = Field(
        default=DEFAULT_QUERY_TIMEOUT_MS,
        ge=1,
        validation_alias=AliasChoices("request_timeout_ms", "requestTimeout", "queryTimeout", "statement_timeout"),
    )
    idle_timeout_ms: int = Field(
        default=DEFAULT_IDLE_TIMEOUT_MS, ge=1, validation_alias=AliasChoices("idle_timeout_ms", "idleTimeout")
    )

    # server engines
    ssl: Union[bool, Dict[str, Any], None] = None
    charset: Optional[str] = None
    timezone: Optional[str] = None
    socket_path: Optional[str] = Field(default=None, validation_alias=AliasChoices("socket_path", "socketPath"))
    application_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("application_name", "applicationName", "appName")
    )
    # oracle
    service_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("service_name", "serviceName"))
    sid: Optional[str] = None
    # mssql
    encrypt: Optional[bool] = None
    trust_server_certificate: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("trust_server_certificate", "trustServerCertificate")
    )
    odbc_driver: Optional[str] = Field(default=None, validation_alias=AliasChoices("odbc_driver", "odbcDriver", "driver"))
    instance_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("instance_name", "instanceName"))
    # sqlite
    journal_mode: Optional[str] = Field(default=None, validation_alias=AliasChoices("journal_mode", "journalMode"))
    busy_timeout_ms: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("busy_timeout_ms", "busyTimeout")
    )
    cache_size: Optional[int] = Field(default=None, validation_alias=AliasChoices("cache_size", "cacheSize"))
    synchronous: Union[bool, str, None] = None
    foreign_keys: Optional[bool] = Field(default=None, validation_alias=AliasChoices("foreign_keys", "foreignKeys"))
    read_only: bool = Field(default=False, validation_alias=AliasChoices("read_only", "readOnly"))

    @field_validator("engine", mode="before")
    @classmethod
    def _coerce_engine(cls, value: Any) -> EngineType:
        return normalize_engine(value)

    @field_validator("journal_mode", "charset", "service_name", "sid")
    @classmethod
    def _strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @model_validator(mode="after")
    def _check_target(self) -> "ConnectionConfig":
        if self.engine == EngineType.SQLITE:
            if not (self.file_path or self.database):
                raise ValueError("file_path is required for sqlite connections")
        elif not self.username:
            raise ValueError(f"username is required for {self.engine.value} connections")
        if self.journal_mode and not self.journal_mode.isalpha():
            raise ValueError(f"Invalid journal_mode: {self.journal_mode}")
        return self

    @property
    def resolved_host(self) -> str:
        return self.host or "localhost"

    @property
    def resolved_port(self) -> Optional[int]:
        return self.port or DEFAULT_PORTS.get(self.engine)

    @property
    def sqlite_path(self) -> str:
        return self.file_path or self.database or ":memory:"

    @property
    def password_value(self) -> Optional[str]:
        return self.password.get_secret_value() if self.password is not None else None

    @property
    def connection_timeout_s(self) -> float:
        return self.connection_timeout_ms / 1000.0

    @property
    def request_timeout_s(self) -> float:
        return self.request_timeout_ms / 1000.0

    def with_database(self, database: Optional[str]) -> "ConnectionConfig":
        """Copy aimed at another database; the schema falls back to that database's default."""
        return self.model_copy(update={"database": database, "schema_name": None})

    def public_dict(self) -> Dict[str, Any]:
        """Settings safe for listings and persistence; the password is masked."""
        data = self.model_dump(mode="json", exclude={"password"}, exclude_none=True)
        if self.password is not None:
            data["password"] = MASKED_SECRET
        return data

    @classmethod
    def from_env(cls, engine: Optional[str] = None, **overrides: Any) -> "ConnectionConfig":
        selected = normalize_engine(engine or env_str("DB_ENGINE", "postgres"))
        params: Dict[str, Any] = {"engine": selected}
        if selected == EngineType.SQLITE:
            db_path = env_str("SQLITE_DB_PATH")
            if not db_path and "file_path" not in overrides:
                raise ValueError("SQLITE_DB_PATH is required for sqlite adapter")
            params["file_path"] = db_path
        else:
            host = env_str("DB_HOST")
            user = env_str("DB_USER")
            password = env_str("DB_PASSWORD")
            if not host and "host" not in overrides:
                raise ValueError("DB_HOST is required")
            if not user and "username" not in overrides:
                raise ValueError("DB_USER is required")
            if password is None and "password" not in overrides:
                raise ValueError("DB_PASSWORD is required")
            params.update(
                host=host,
                port=env_int("DB_PORT"),
                username=user,
                password=password,
                database=env_str("DB_NAME"),
                schema_name=env_str("DB_SCHEMA"),
            )
        params["pool_size"] = env_int("DB_POOL_SIZE", DEFAULT_POOL_SIZE)
        params["connection_timeout_ms"] = env_int("DB_CONNECTION_TIMEOUT_MS", DEFAULT_CONNECTION_TIMEOUT_MS)
        params["request_timeout_ms"] = env_int("DB_QUERY_TIMEOUT_MS", DEFAULT_QUERY_TIMEOUT_MS)
        params.update(overrides)
        return cls(**params)
