from __future__ import annotations

import os
import pathlib
import typing
from typing import Dict, Literal, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from n8n_cloudrun._logging import logger
from n8n_cloudrun.errors import ConfigError

DEFAULT_CONFIG_PATH = "n8n-cloudrun.yaml"
DB_PASSWORD_ENV_VAR = "DB_POSTGRESDB_PASSWORD"
ENCRYPTION_KEY_ENV_VAR = "N8N_ENCRYPTION_KEY"
SECRET_ENV_VARS = frozenset({DB_PASSWORD_ENV_VAR, ENCRYPTION_KEY_ENV_VAR})

_SAMPLE_CONFIG = """\
# n8n on Cloud Run deployment settings.
# Secrets may be omitted here and supplied through the environment instead:
#   DB_POSTGRESDB_PASSWORD, N8N_ENCRYPTION_KEY
gcp:
  project_id: my-gcp-project
  region: us-central1
  repository: n8n-repo
  image_name: n8n
  tag: latest
  service_name: n8n

service:
  memory: 2Gi
  cpu: "1"
  min_instances: 0
  max_instances: 1
  container_port: 5678
  cpu_throttling: false
  allow_unauthenticated: true
  timeout: 3600

database:
  host: db.example.com
  port: 5432
  name: postgres
  user: postgres
  schema: public
  ssl: true

storage:
  bucket: my-n8n-bucket
  volume_name: n8n-data
  mount_path: /home/node/.n8n

n8n:
  timezone: UTC
  executions_mode: regular
  log_level: info
  health_check: true
  diagnostics: false
  protocol: https
  base_image: n8nio/n8n:latest
  extra_env: {}
"""


def _bool(value: bool) -> str:
    return "true" if value else "false"


class GcpConfig(BaseModel):
    project_id: str
    region: str = "us-central1"
    repository: str = "n8n-repo"
    image_name: str = "n8n"
    tag: str = "latest"
    service_name: str = "n8n"

    @property
    def registry_host(self) -> str:
        return f"{self.region}-docker.pkg.dev"

    @property
    def image(self) -> str:
        return f"{self.registry_host}/{self.project_id}/{self.repository}/{self.image_name}:{self.tag}"


class ServiceConfig(BaseModel):
    memory: str = "2Gi"
    cpu: str = "1"
    min_instances: int = Field(default=0, ge=0)
    max_instances: int = Field(default=1, ge=1)
    container_port: int = Field(default=5678, ge=1, le=65535)
    cpu_throttling: bool = False
    allow_unauthenticated: bool = True
    timeout: int = Field(default=3600, ge=1)

    @field_validator("cpu", mode="before")
    @classmethod
    def _cpu_as_str(cls, v: typing.Any) -> typing.Any:
        # YAML reads `cpu: 1` as an int
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @model_validator(mode="after")
    def _check_instances(self) -> ServiceConfig:
        if self.min_instances > self.max_instances:
            raise ValueError(
                f"min_instances ({self.min_instances}) cannot exceed max_instances ({self.max_instances})"
            )
        return self


class DatabaseConfig(BaseModel):
    host: str
    port: int = Field(default=5432, ge=1, le=65535)
    name: str = "postgres"
    user: str
    password: Optional[str] = None
    schema_name: str = Field(default="public", alias="schema")
    ssl: bool = True

    model_config = {"populate_by_name": True}


class StorageConfig(BaseModel):
    bucket: str
    volume_name: str = "n8n-data"
    mount_path: str = "/home/node/.n8n"

    @field_validator("mount_path")
    @classmethod
    def _absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"mount_path must be absolute, got '{v}'")
        return v


class N8nConfig(BaseModel):
    encryption_key: Optional[str] = None
    timezone: str = "UTC"
    executions_mode: Literal["regular", "queue"] = "regular"
    log_level: Literal["error", "warn", "info", "debug"] = "info"
    health_check: bool = True
    diagnostics: bool = False
    protocol: Literal["http", "https"] = "https"
    base_image: str = "n8nio/n8n:latest"
    extra_env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("extra_env", mode="before")
    @classmethod
    def _stringify(cls, v: typing.Any) -> typing.Any:
        if isinstance(v, dict):
            return {str(k): _bool(val) if isinstance(val, bool) else str(val) for k, val in v.items()}
        return v

    @field_validator("extra_env")
    @classmethod
    def _no_port_override(cls, v: Dict[str, str]) -> Dict[str, str]:
        if "N8N_PORT" in v:
            raise ValueError("N8N_PORT is derived from the platform PORT at startup and cannot be set in extra_env")
        return v


class DeploymentConfig(BaseModel):
    """
    Operator supplied parameters for deploying n8n to Cloud Run.

    Use :meth:`from_yaml` to load a file; secrets missing from the file are filled from the environment.
    """

    gcp: GcpConfig
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    database: DatabaseConfig
    storage: StorageConfig
    n8n: N8nConfig = Field(default_factory=N8nConfig)

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any], environ: typing.Mapping[str, str] | None = None):
        if environ is None:
            environ = os.environ
        data = {k: dict(v) if isinstance(v, dict) else v for k, v in data.items()}
        database = data.get("database")
        if isinstance(database, dict) and not database.get("password") and environ.get(DB_PASSWORD_ENV_VAR):
            logger.debug(f"Reading database password from {DB_PASSWORD_ENV_VAR}")
            database["password"] = environ[DB_PASSWORD_ENV_VAR]
        n8n = data.setdefault("n8n", {})
        if isinstance(n8n, dict) and not n8n.get("encryption_key") and environ.get(ENCRYPTION_KEY_ENV_VAR):
            logger.debug(f"Reading encryption key from {ENCRYPTION_KEY_ENV_VAR}")
            n8n["encryption_key"] = environ[ENCRYPTION_KEY_ENV_VAR]

        try:
            cfg = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid deployment configuration:\n{e}") from e

        missing = []
        if not cfg.database.password:
            missing.append(f"database.password (or ${DB_PASSWORD_ENV_VAR})")
        if not cfg.n8n.encryption_key:
            missing.append(f"n8n.encryption_key (or ${ENCRYPTION_KEY_ENV_VAR})")
        if missing:
            raise ConfigError(f"Missing required secrets: {', '.join(missing)}")
        return cfg

    @classmethod
    def from_yaml(cls, path: pathlib.Path | str, environ: typing.Mapping[str, str] | None = None):
        return cls.from_dict(read_yaml(path), environ=environ)

    @staticmethod
    def sample() -> str:
        return _SAMPLE_CONFIG

    def n8n_env_vars(self) -> Dict[str, str]:
        """
        The environment n8n is deployed with. ``N8N_PORT`` is intentionally absent, the startup shim sets it.
        """
        db = self.database
        env = {
            "DB_TYPE": "postgresdb",
            "DB_POSTGRESDB_HOST": db.host,
            "DB_POSTGRESDB_PORT": str(db.port),
            "DB_POSTGRESDB_DATABASE": db.name,
            "DB_POSTGRESDB_USER": db.user,
            DB_PASSWORD_ENV_VAR: db.password or "",
            "DB_POSTGRESDB_SCHEMA": db.schema_name,
        }
        if db.ssl:
            env["DB_POSTGRESDB_SSL_ENABLED"] = "true"
        env.update(
            {
                ENCRYPTION_KEY_ENV_VAR: self.n8n.encryption_key or "",
                "N8N_USER_FOLDER": self.storage.mount_path,
                "GENERIC_TIMEZONE": self.n8n.timezone,
                "TZ": self.n8n.timezone,
                "EXECUTIONS_MODE": self.n8n.executions_mode,
                "N8N_LOG_LEVEL": self.n8n.log_level,
                "QUEUE_HEALTH_CHECK_ACTIVE": _bool(self.n8n.health_check),
                "N8N_DIAGNOSTICS_ENABLED": _bool(self.n8n.diagnostics),
                "N8N_PROTOCOL": self.n8n.protocol,
            }
        )
        env.update(self.n8n.extra_env)
        return env

    def public_url_env_vars(self, url: str) -> Dict[str, str]:
        """
        Variables that point n8n at its public address once Cloud Run has assigned one.
        """
        parsed = urlparse(url.strip())
        if not parsed.scheme or not parsed.hostname:
            raise ConfigError(f"Service URL '{url}' must include a scheme and host, e.g. https://n8n-xyz.a.run.app")
        base = url.strip().rstrip("/") + "/"
        return {
            "N8N_HOST": parsed.hostname,
            "N8N_EDITOR_BASE_URL": base,
            "WEBHOOK_URL": base,
        }


def read_yaml(path: pathlib.Path | str) -> Dict[str, typing.Any]:
    """
    Reads a config file without validating it. Settings that need no secrets, such as ``n8n.base_image``, can be
    looked up from the result directly.
    """
    path = pathlib.Path(path)
    if not path.exists():
        raise ConfigError(f"Config file {path} not found, create one with `n8n-cloudrun init`.")
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    logger.debug(f"Loaded deployment config from {path}")
    return data


def mask_secrets(env: typing.Mapping[str, str]) -> Dict[str, str]:
    return {k: ("****" if k in SECRET_ENV_VARS and v else v) for k, v in env.items()}


def format_env_vars(env: typing.Mapping[str, str]) -> str:
    """
    Renders ``env`` as a single gcloud ``--set-env-vars`` value. Values containing commas switch to gcloud's
    alternate delimiter syntax, see ``gcloud topic escaping``.
    """
    pairs = [f"{k}={v}" for k, v in env.items()]
    if any("," in v for v in env.values()):
        for candidate in ("@", "#", "|", ";", "~"):
            if not any(candidate in p for p in pairs):
                delimiter = candidate
                break
        else:
            raise ConfigError("Environment values contain every supported gcloud delimiter, cannot format them")
        return f"^{delimiter}^" + delimiter.join(pairs)
    return ",".join(pairs)
