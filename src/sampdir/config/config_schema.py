"""JSON Schema-based validation for the sampdir YAML configuration.

This module expands configuration variables and validates the result against
the JSON Schema document stored under ``assets/config-schema.json``.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)

_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")
_VAR_NAME = re.compile(r"[A-Z_][A-Z0-9_]*")


def is_var_key(key: object) -> bool:
    """Brief: True when key is an ALL_UPPERCASE name matching [A-Z_][A-Z0-9_]*."""

    return isinstance(key, str) and bool(_VAR_NAME.fullmatch(key))


def expand_variables(cfg: Dict[str, Any]) -> None:
    """Brief: Expand top-level `vars` into the config and remove the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Behavior:
      - Replaces `${KEY}` occurrences inside strings.
      - A string that is exactly `${KEY}` is replaced with the variable's
        underlying YAML value (list/dict/int/etc.).
      - Unknown `${KEY}` references are left as-is.

    Raises:
      - ValueError: non-mapping `vars`, invalid names, or cycles.

    Example:
      >>> c = {'vars': {'HOST': 'h'}, 'masterlists': ['http://${HOST}/a.txt']}
      >>> expand_variables(c); c
      {'masterlists': ['http://h/a.txt']}
    """

    variables = cfg.get("vars")
    if variables is None:
        cfg.pop("vars", None)
        return
    if not isinstance(variables, dict):
        raise ValueError("config.vars must be a mapping when present")
    for k in variables:
        if not is_var_key(k):
            raise ValueError(f"config.vars key {k!r} must match [A-Z_][A-Z0-9_]*")

    resolved: Dict[str, Any] = {}

    def _resolve_var(key: str, stack: List[str]) -> Any:
        if key in resolved:
            return resolved[key]
        if key in stack:
            cycle = " -> ".join(stack + [key])
            raise ValueError(f"config.vars contains a cycle: {cycle}")
        if key not in variables:
            raise KeyError(key)
        value = _expand_obj(variables[key], stack + [key])
        resolved[key] = value
        return value

    def _expand_string(text: str, stack: List[str]) -> Any:
        whole = _VAR_PATTERN.fullmatch(text)
        if whole and whole.group(1) in variables:
            return copy.deepcopy(_resolve_var(whole.group(1), stack))

        def _repl(match: re.Match[str]) -> str:
            try:
                v = _resolve_var(match.group(1), stack)
            except KeyError:
                return match.group(0)
            if isinstance(v, bool):
                return "true" if v else "false"
            if v is None:
                return "null"
            if isinstance(v, (int, float, str)):
                return str(v)
            return json.dumps(v)

        return _VAR_PATTERN.sub(_repl, text)

    def _expand_obj(obj: Any, stack: List[str]) -> Any:
        if isinstance(obj, str):
            return _expand_string(obj, stack)
        if isinstance(obj, list):
            return [_expand_obj(item, stack) for item in obj]
        if isinstance(obj, dict):
            return {k: _expand_obj(v, stack) for k, v in obj.items()}
        return obj

    for k in list(variables.keys()):
        _resolve_var(str(k), [])

    for top_key in list(cfg.keys()):
        if top_key == "vars":
            continue
        cfg[top_key] = _expand_obj(cfg[top_key], [])
    cfg.pop("vars", None)


def get_default_schema_path() -> Path:
    """Brief: Resolve the default JSON Schema path for configuration.

    Inputs:
      - None.

    Outputs:
      - Path to ``assets/config-schema.json`` in the nearest ancestor that has
        one, otherwise the path the source checkout would use.
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate
    return here.parents[3] / "assets" / "config-schema.json"


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    header = f"Invalid configuration in {config_path or '<config dict>'}:"
    lines: List[str] = [header]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = "./config/config.yaml",
    unknown_keys: str = "warn",
) -> None:
    """Brief: Expand variables, then validate cfg against the JSON Schema.

    Inputs:
      - cfg: Dict loaded from YAML (mutated by variable expansion).
      - schema_path: Optional explicit JSON Schema path.
      - config_path: Path of the YAML file, used only in error messages.
      - unknown_keys: "ignore", "warn" (default) or "error" for keys the
        schema does not describe.

    Outputs:
      - None on success.

    Raises:
      - ValueError: on schema violations (and unknown keys under "error").

    Notes:
      - A missing or unreadable schema file is logged and validation is
        skipped so a relocated install can still start.
    """

    if unknown_keys not in {"ignore", "warn", "error"}:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )

    expand_variables(cfg)

    effective_schema_path = schema_path or get_default_schema_path()
    if not effective_schema_path.is_file():
        logger.warning(
            "Configuration schema file %s not found; skipping JSON Schema validation",
            effective_schema_path,
        )
        return None

    try:
        with effective_schema_path.open("r", encoding="utf-8") as f:
            schema = json.load(f)
        validator = Draft202012Validator(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Failed to load configuration schema at %s: %s; skipping JSON Schema validation",
            effective_schema_path,
            exc,
        )
        return None

    all_errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    extra = [e for e in all_errors if e.validator == "additionalProperties"]
    other = [e for e in all_errors if e.validator != "additionalProperties"]

    if other:
        raise ValueError(_format_errors(other + extra, config_path=config_path))
    if not extra or unknown_keys == "ignore":
        return None
    message = _format_errors(extra, config_path=config_path)
    if unknown_keys == "warn":
        logger.warning(message)
        return None
    raise ValueError(message)
