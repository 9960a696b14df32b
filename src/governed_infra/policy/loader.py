"""Loaders for the action policy and ATO profiles."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any

import yaml

from governed_infra.config import PolicySettings
from governed_infra.policy.defaults import DEFAULT_ATO_PROFILES
from governed_infra.policy.models import AtoProfile, PolicyConfig

logger = logging.getLogger(__name__)

_ATO_FILE_NAME = "ato.json"


def _read_document(path: Path) -> dict[str, Any]:
    # YAML is a superset of JSON, so one parser covers both formats
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}")
    return data


def load_policy(path: str) -> PolicyConfig:
    policy_path = Path(path)
    if not policy_path.exists():
        raise FileNotFoundError(f"Policy file not found: {policy_path}")
    return PolicyConfig.from_yaml(_read_document(policy_path))


def load_policy_or_empty(path: str) -> PolicyConfig:
    """Like ``load_policy`` but a missing file means "no rules"."""
    try:
        return load_policy(path)
    except FileNotFoundError:
        logger.warning("Policy file %s not found; every action evaluates to allow", path)
        return PolicyConfig()


def parse_ato_profiles(data: dict[str, Any]) -> dict[str, AtoProfile]:
    return {str(name): AtoProfile.model_validate(body or {}) for name, body in data.items()}


def resolve_ato_profiles_path(settings: PolicySettings) -> Path | None:
    if settings.ato_profiles_path:
        return Path(settings.ato_profiles_path)
    if settings.policy_dir:
        candidate = Path(settings.policy_dir) / _ATO_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def load_ato_profiles(settings: PolicySettings) -> dict[str, AtoProfile]:
    """Load ATO profiles: explicit path, then ``<policy_dir>/ato.json``, then built-ins."""
    path = resolve_ato_profiles_path(settings)
    if path is None:
        return parse_ato_profiles(copy.deepcopy(DEFAULT_ATO_PROFILES))
    if not path.exists():
        raise FileNotFoundError(f"ATO profiles file not found: {path}")
    logger.info("Loading ATO profiles from %s", path)
    return parse_ato_profiles(_read_document(path))
