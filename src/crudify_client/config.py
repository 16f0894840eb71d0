"""Client configuration (pydantic BaseModel) and environment table."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigurationError, CrudifyErrorCodes


class Environment(str, Enum):
    """Crudify deployment to connect to."""

    DEV = "dev"
    STG = "stg"
    API = "api"
    PROD = "prod"

    @classmethod
    def parse(cls, value: str | Environment | None) -> Environment:
        """Resolve a selector, falling back to ``api`` for unknown values."""
        if isinstance(value, Environment):
            return value
        try:
            return cls((value or "api").lower())
        except ValueError:
            return cls.API


@dataclass(frozen=True)
class MetadataEndpoint:
    """Metadata service used by init() to discover the items endpoint."""

    url: str
    api_key: str


ENVIRONMENTS: dict[Environment, MetadataEndpoint] = {
    Environment.DEV: MetadataEndpoint("https://auth.dev.crudify.io", "da2-pl3xidupjnfwjiykpbp75gx344"),
    Environment.STG: MetadataEndpoint("https://auth.stg.crudify.io", "da2-hooybwpxirfozegx3v4f3kaelq"),
    Environment.API: MetadataEndpoint("https://auth.api.crudify.io", "da2-5hhytgms6nfxnlvcowd6crsvea"),
    Environment.PROD: MetadataEndpoint("https://auth.api.crudify.io", "da2-5hhytgms6nfxnlvcowd6crsvea"),
}


class CrudifyConfig(BaseModel):
    """Connection and logging settings for CrudifyClient."""

    env: Environment = Environment.API
    public_api_key: str = ""
    log_level: Literal["none", "debug"] = "none"
    log_format: Literal["json", "text"] = "json"
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_connections: int = Field(default=10, ge=1)
    keepalive_expiry_seconds: float = Field(default=60.0, ge=0)
    # Overrides for the environment table, e.g. for a self-hosted metadata service.
    metadata_endpoint: str | None = None
    metadata_api_key: str | None = None

    def metadata(self) -> MetadataEndpoint:
        default = ENVIRONMENTS[self.env]
        return MetadataEndpoint(
            url=self.metadata_endpoint or default.url,
            api_key=self.metadata_api_key or default.api_key,
        )


def _validate(data: Mapping[str, Any], source: str) -> CrudifyConfig:
    try:
        return CrudifyConfig.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigurationError(
            f"Config validation failed ({source}): {e}",
            code=CrudifyErrorCodes.INVALID_CONFIG,
            cause=e,
        ) from e


def load_config(path: Path) -> CrudifyConfig:
    """Read a YAML file and return a validated CrudifyConfig.

    The file may hold the settings at the top level or under a ``crudify`` key.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file: {path}",
            code=CrudifyErrorCodes.CONFIG_READ_FAILED,
            cause=e,
        ) from e
    try:
        data: dict[str, Any] = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML: {path}",
            code=CrudifyErrorCodes.CONFIG_READ_FAILED,
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config root must be a mapping: {path}",
            code=CrudifyErrorCodes.INVALID_CONFIG,
        )
    section = data.get("crudify", data)
    return _validate(section, str(path))


def config_from_env(environ: Mapping[str, str] | None = None) -> CrudifyConfig:
    """Build a config from CRUDIFY_ENV, CRUDIFY_API_KEY and CRUDIFY_LOG_LEVEL."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {"env": Environment.parse(env.get("CRUDIFY_ENV"))}
    if "CRUDIFY_API_KEY" in env:
        data["public_api_key"] = env["CRUDIFY_API_KEY"]
    if "CRUDIFY_LOG_LEVEL" in env:
        data["log_level"] = env["CRUDIFY_LOG_LEVEL"].lower()
    return _validate(data, "environment")
