"""Configuration parsing and normalization helpers for sampdir.

Brief:
  This module contains the configuration-parsing utilities used by the CLI
  entrypoint. It centralizes:
    - reading YAML config files
    - merging variables from config/env/CLI
    - JSON Schema validation (including variable expansion performed by
      validate_config)
    - building typed DirectoryConfig models from the validated mapping

Inputs:
  - YAML config dicts and paths

Outputs:
  - Validated config dicts and DirectoryConfig instances
"""

from __future__ import annotations

import codecs
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, validator

from ..masterlist import DEFAULT_MASTERLISTS, DEFAULT_USER_AGENT
from ..scheduler import parse_daily_at
from ..store.base import StoreBackendConfig
from .config_schema import is_var_key, validate_config


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML.

    Inputs:
      - text: String containing YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (falls back to original string on parse errors).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge config/environment/CLI variables into cfg['vars'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['vars'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file variables.

    Notes:
      - Only environment keys already named in the file's `vars` or prefixed
        with SAMPDIR_ are taken, so unrelated shell variables stay out.
      - Values are parsed as YAML so list/dict/int/bool values can be provided.

    Example:
      >>> cfg = {'vars': {'WORKERS': 8}}
      >>> parse_config_variables(cfg, cli_vars=['WORKERS=32'], environ={})['WORKERS']
      32
    """

    base = cfg.get("vars")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ValueError("config.vars must be a mapping when present")

    env = dict(os.environ) if environ is None else environ
    for k, v in env.items():
        if not is_var_key(k):
            continue
        if k in merged or k.startswith("SAMPDIR_"):
            merged[k] = _parse_yaml_value(str(v))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ValueError(
                "Invalid -v/--var value (expected KEY=YAML), got: %r" % assignment
            )
        k, raw = assignment.split("=", 1)
        k = k.strip()
        if not is_var_key(k):
            raise ValueError(
                "Invalid variable name %r (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
                % k
            )
        merged[k] = _parse_yaml_value(raw)

    cfg["vars"] = merged
    return merged


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
    unknown_keys: str = "warn",
) -> Dict[str, Any]:
    """Brief: Read, variable-merge, and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - cli_vars: Optional list of CLI `KEY=YAML` assignments (from -v/--var).
      - environ: Optional environment mapping (defaults to os.environ).
      - unknown_keys: Policy for keys the schema does not describe.

    Outputs:
      - dict: Parsed configuration mapping with variables expanded.

    Raises:
      - OSError: When the file cannot be read.
      - ValueError: When the YAML root is not a mapping, schema validation
        fails, or variables are invalid.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    if cfg is None:
        cfg = {}
    if not isinstance(cfg, dict):
        raise ValueError(f"Configuration root in {config_path} must be a mapping")

    parse_config_variables(cfg, cli_vars=cli_vars, environ=environ)
    validate_config(cfg, config_path=config_path, unknown_keys=unknown_keys)
    return cfg


class FetchConfig(BaseModel):
    """Masterlist download settings."""

    timeout_seconds: float = Field(default=20.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT

    class Config:
        extra = "forbid"


class QueryConfig(BaseModel):
    """Per-server UDP query settings.

    timeout_seconds applies separately to the info and the rules exchange.
    """

    timeout_seconds: float = Field(default=2.0, gt=0)
    workers: int = Field(default=16, ge=1)
    encoding: str = "cp1252"

    class Config:
        extra = "forbid"

    @validator("encoding")
    def _known_encoding(cls, v: str) -> str:
        try:
            codecs.lookup(v)
        except LookupError:
            raise ValueError(f"unknown text encoding {v!r}")
        return v


class ScheduleConfig(BaseModel):
    """Daily refresh schedule."""

    enabled: bool = True
    daily_at: str = "23:59"
    refresh_on_start: bool = False

    class Config:
        extra = "forbid"

    @validator("daily_at")
    def _valid_time(cls, v: str) -> str:
        parse_daily_at(v)
        return v


class DirectoryConfig(BaseModel):
    """
    Typed view of a validated sampdir configuration.

    Inputs:
      - masterlists: URLs fetched each cycle, in order.
      - fetch, query, schedule: nested settings (defaults when omitted).
      - store: StoreBackendConfig for the directory store.
      - logging: mapping passed unchanged to init_logging.

    Outputs:
      - DirectoryConfig instance.
    """

    masterlists: List[str] = Field(default_factory=lambda: list(DEFAULT_MASTERLISTS))
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    store: StoreBackendConfig = Field(default_factory=StoreBackendConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "ignore"

    @classmethod
    def from_mapping(cls, cfg: Optional[Dict[str, Any]]) -> "DirectoryConfig":
        """Brief: Build a DirectoryConfig, treating null sections as defaults."""

        data = {k: v for k, v in (cfg or {}).items() if v is not None}
        return cls(**data)


def load_config(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> DirectoryConfig:
    """Brief: parse_config_file followed by DirectoryConfig.from_mapping.

    Inputs:
      - config_path: YAML file path.
      - cli_vars: Optional `KEY=YAML` assignments.
      - environ: Optional environment mapping.

    Outputs:
      - DirectoryConfig.

    Raises:
      - ValueError (including pydantic.ValidationError) on invalid config.
    """

    cfg = parse_config_file(config_path, cli_vars=cli_vars, environ=environ)
    return DirectoryConfig.from_mapping(cfg)
