"""
Configuration management and loading.

Handles application settings from a YAML file and the process environment.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from claude_spend.core.billing import parse_billing_context

BILLING_ENV_VAR = "CLAUDE_SPEND_BILLING"
API_KEY_ENV_VAR = "ANTHROPIC_API_KEY"


@dataclass(frozen=True)
class SpendConfig:
    """Settings for one analysis run."""
    data_dir: Optional[str] = None
    billing: Optional[str] = None
    max_workers: int = 4
    top_prompts: int = 20
    project_top_prompts: int = 10

    def __post_init__(self):
        """Validate settings are usable."""
        if self.billing is not None:
            parse_billing_context(self.billing)
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.top_prompts < 0:
            raise ValueError("top_prompts cannot be negative")
        if self.project_top_prompts < 0:
            raise ValueError("project_top_prompts cannot be negative")


@dataclass(frozen=True)
class EnvironmentSettings:
    """Billing-relevant values read once from the environment."""
    billing_override: Optional[str] = None
    external_credential_present: bool = False


def read_environment(environ: Optional[Mapping[str, str]] = None) -> EnvironmentSettings:
    """Read billing settings from the environment.

    Args:
        environ: Mapping to read from (defaults to os.environ)
    """
    env = os.environ if environ is None else environ
    return EnvironmentSettings(
        billing_override=env.get(BILLING_ENV_VAR) or None,
        external_credential_present=bool(env.get(API_KEY_ENV_VAR)),
    )


_INT_KEYS = ("max_workers", "top_prompts", "project_top_prompts")
_STR_KEYS = ("data_dir", "billing")


def load_config(path: Optional[str] = None) -> SpendConfig:
    """Load and validate settings from a YAML file.

    Unknown keys and wrongly typed values are rejected so that a typo
    never silently falls back to a default.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated SpendConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return SpendConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return SpendConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_keys = set(_INT_KEYS) | set(_STR_KEYS)
    unknown_keys = set(raw_config.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key in _INT_KEYS:
        if key in raw_config:
            value = raw_config[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"'{key}' must be an integer")
            values[key] = value
    for key in _STR_KEYS:
        if key in raw_config and raw_config[key] is not None:
            value = raw_config[key]
            if not isinstance(value, str):
                raise ValueError(f"'{key}' must be a string")
            values[key] = value

    return SpendConfig(**values)
