"""Configuration management for the governed infrastructure server."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class AuditSettings(BaseModel):
    backend: Literal["jsonl", "sqlite"] = Field(default="jsonl")
    directory: str = Field(default="./data/audit", description="One JSONL file per UTC day")
    sqlite_path: str = Field(default="./data/audit.sqlite")
    sqlite_wal: bool = Field(default=True)


class PolicySettings(BaseModel):
    path: str = Field(default="./policy.yaml", description="Action policy YAML")
    ato_profiles_path: str | None = Field(default=None)
    policy_dir: str | None = Field(default=None, description="Directory holding ato.json")
    default_profile: str = Field(default="default")


class ScanSettings(BaseModel):
    limit_per_type: int = Field(default=100, ge=1, le=200)


class ProviderSettings(BaseModel):
    arm_endpoint: str = Field(default="https://management.azure.com")
    subscription_id: str | None = Field(default=None)
    access_token: str | None = Field(default=None, repr=False)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=600.0)


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1024, le=65535)
    instructions: str = Field(
        default=(
            "Mutating tools hold by default: review the plan, then resubmit with "
            "confirm=true. Scan tools are read-only."
        )
    )
    transport_mode: Literal["stdio", "http"] = Field(default="stdio")


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)


ENV_KEYS = {
    "host": "MCP_HOST",
    "port": "MCP_PORT",
    "instructions": "MCP_INSTRUCTIONS",
    "transport_mode": "TRANSPORT_MODE",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "audit_backend": "AUDIT_BACKEND",
    "audit_dir": "AUDIT_DIR",
    "audit_sqlite_path": "AUDIT_SQLITE_PATH",
    "audit_sqlite_wal": "AUDIT_SQLITE_WAL",
    "policy_path": "POLICY_PATH",
    "ato_profiles_path": "ATO_PROFILES_PATH",
    "policy_dir": "GOV_POL_DIR",
    "ato_profile": "ATO_PROFILE",
    "limit_per_type": "SCAN_LIMIT_PER_TYPE",
    "arm_endpoint": "ARM_ENDPOINT",
    "subscription_id": "AZURE_SUBSCRIPTION_ID",
    "access_token": "ARM_ACCESS_TOKEN",
    "provider_timeout": "PROVIDER_TIMEOUT_SECONDS",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_optional_path(key: str) -> str | None:
    value = (os.getenv(key) or "").strip()
    return _resolve_path(value) if value else None


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
            "instructions": os.getenv(ENV_KEYS["instructions"], ServerSettings().instructions),
            "transport_mode": os.getenv(
                ENV_KEYS["transport_mode"], ServerSettings().transport_mode
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _env_optional_path(ENV_KEYS["log_file"]),
        },
        "audit": {
            "backend": os.getenv(ENV_KEYS["audit_backend"], AuditSettings().backend),
            "directory": _resolve_path(
                os.getenv(ENV_KEYS["audit_dir"], AuditSettings().directory)
            ),
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["audit_sqlite_path"], AuditSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["audit_sqlite_wal"], AuditSettings().sqlite_wal),
        },
        "policy": {
            "path": _resolve_path(os.getenv(ENV_KEYS["policy_path"], PolicySettings().path)),
            "ato_profiles_path": _env_optional_path(ENV_KEYS["ato_profiles_path"]),
            "policy_dir": _env_optional_path(ENV_KEYS["policy_dir"]),
            "default_profile": (
                os.getenv(ENV_KEYS["ato_profile"], "").strip()
                or PolicySettings().default_profile
            ),
        },
        "scan": {
            "limit_per_type": _env_int(
                ENV_KEYS["limit_per_type"], ScanSettings().limit_per_type
            ),
        },
        "provider": {
            "arm_endpoint": os.getenv(
                ENV_KEYS["arm_endpoint"], ProviderSettings().arm_endpoint
            ).rstrip("/"),
            "subscription_id": os.getenv(ENV_KEYS["subscription_id"]) or None,
            "access_token": os.getenv(ENV_KEYS["access_token"]) or None,
            "timeout_seconds": _env_float(
                ENV_KEYS["provider_timeout"], ProviderSettings().timeout_seconds
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    return settings
