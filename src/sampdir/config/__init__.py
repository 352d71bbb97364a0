"""Configuration loading, validation and logging setup for sampdir."""

from .config_parser import (
    DirectoryConfig,
    FetchConfig,
    QueryConfig,
    ScheduleConfig,
    load_config,
    parse_config_file,
    parse_config_variables,
)
from .config_schema import validate_config
from .logging_config import init_logging

__all__ = [
    "DirectoryConfig",
    "FetchConfig",
    "QueryConfig",
    "ScheduleConfig",
    "init_logging",
    "load_config",
    "parse_config_file",
    "parse_config_variables",
    "validate_config",
]
