"""Merge user overrides onto the dataclass spec defaults.

Every pipeline stage declares its configuration as a dataclass whose
field defaults are the documented defaults. Overrides arrive as nested
mappings, either a parsed YAML file or a single ``key.path=value`` phrase
from the command line, and are merged field by field:

  - nested dataclass: merged recursively.
  - list:             concatenated (defaults first, then overrides).
  - dict:             merged key by key. Fields declared with
                      ``metadata={"case_insensitive": True}`` lower-case
                      their keys (HTTP headers).
  - scalar:           replaced, after coercion to the default's type.

Coercion is driven by the default value, so "8" becomes 8 for an int
field and "yes" becomes True for a bool field. A list field given a string
splits it on commas, honoring quotes and backslash escapes.

Unknown keys and values that can't be coerced raise ConfigError naming
the dotted key and the value.
"""

import dataclasses
import math
from collections.abc import Mapping
from pathlib import Path

import yaml


class ConfigError(ValueError):
    """Invalid configuration: unknown key or uncoercible value."""


# ── Scalar helpers ─────────────────────────────────────────────────

def boolish(value) -> bool:
    """Interpret a bool, number, list or string ('true'/'yes'/'1') as bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, list):
        return True
    return str(value).lower() in ("true", "yes", "1")


def split_quoted_strings(value: str) -> list[str]:
    """Split on commas, honoring '...' / "..." quoting and backslash escapes.

    >>> split_quoted_strings('a,"b,c",d')
    ['a', 'b,c', 'd']
    """
    state = "bare"
    escaped = False
    chunk = ""
    result = []

    for c in value:
        if escaped:
            chunk += c
            escaped = False
            continue
        if c == "\\":
            escaped = True
            continue

        if state == "single":
            if c == "'":
                state = "bare"
            else:
                chunk += c
        elif state == "double":
            if c == '"':
                state = "bare"
            else:
                chunk += c
        elif c == ",":
            result.append(chunk)
            chunk = ""
        elif c == '"':
            state = "double"
        elif c == "'":
            state = "single"
        else:
            chunk += c

    result.append(chunk)
    return result


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(_stringify(v) for v in value)
    return str(value)


def _coerce_scalar(path: str, default, value):
    """Coerce value to the type of default."""
    if isinstance(value, Mapping):
        raise ConfigError(f"Invalid value for {path}: expected a scalar, got {value!r}")

    if isinstance(default, bool):
        return boolish(value)

    if isinstance(default, (int, float)):
        if isinstance(value, bool):
            return int(value)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid number value for {path}: {value!r}") from None
        if not math.isfinite(number):
            raise ConfigError(f"Invalid number value for {path}: {value!r}")
        if isinstance(default, int):
            if not number.is_integer():
                raise ConfigError(f"Invalid integer value for {path}: {value!r}")
            return int(number)
        return number

    return _stringify(value)


def _coerce_list(path: str, value) -> list[str]:
    if isinstance(value, Mapping):
        raise ConfigError(f"Invalid value for {path}: expected a list, got {value!r}")
    if isinstance(value, list):
        return [_stringify(v) for v in value]
    if isinstance(value, str):
        return [v.strip() for v in split_quoted_strings(value)]
    return [_stringify(value)]


def _coerce_map_value(path: str, value):
    if isinstance(value, (Mapping, list)):
        raise ConfigError(f"Invalid value for {path}: {value!r}")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _stringify(value)
    return value


# ── Merging ────────────────────────────────────────────────────────

def merge_spec(base, overrides: Mapping | None, prefix: str = ""):
    """Return a copy of dataclass base with overrides merged in.

    Args:
        base: A spec dataclass instance (left untouched).
        overrides: Nested mapping shaped like base. None values and a None
            mapping mean "no override".
        prefix: Dotted path of base within the root spec, for messages.

    Raises:
        ConfigError: Unknown key or uncoercible value.
    """
    if overrides is None:
        return base
    if not isinstance(overrides, Mapping):
        where = prefix.rstrip(".") or "spec"
        raise ConfigError(f"Invalid value for {where}: expected a mapping, got {overrides!r}")

    fields = {f.name: f for f in dataclasses.fields(base)}
    changes = {}
    for key, value in overrides.items():
        path = f"{prefix}{key}"
        if key not in fields:
            raise ConfigError(f"No such key {path} in spec")
        if value is None:
            continue

        current = getattr(base, key)

        if dataclasses.is_dataclass(current):
            changes[key] = merge_spec(current, value, prefix=f"{path}.")
        elif isinstance(current, list):
            changes[key] = [*current, *_coerce_list(path, value)]
        elif isinstance(current, dict):
            if not isinstance(value, Mapping):
                raise ConfigError(f"Invalid value for {path}: expected a mapping, got {value!r}")
            fold = fields[key].metadata.get("case_insensitive", False)
            merged = dict(current)
            for k, v in value.items():
                merged[str(k).lower() if fold else str(k)] = _coerce_map_value(f"{path}.{k}", v)
            changes[key] = merged
        else:
            changes[key] = _coerce_scalar(path, current, value)

    return dataclasses.replace(base, **changes)


# ── Override sources ──────────────────────────────────────────────

def parse_spec_phrase(phrase: str) -> tuple[str, str]:
    """Split 'key.path=value' at the first '='."""
    key, sep, value = phrase.partition("=")
    if not sep or not key:
        raise ConfigError(f"Invalid spec phrase: {phrase}")
    return key, value


def phrase_to_overrides(phrase: str) -> dict:
    """Turn 'a.b.c=value' into {'a': {'b': {'c': 'value'}}}."""
    key, value = parse_spec_phrase(phrase)
    overrides = value
    for part in reversed(key.split(".")):
        overrides = {part: overrides}
    return overrides


def load_yaml_overrides(path: str | Path) -> dict:
    """Load a YAML override file. An empty file means no overrides."""
    with open(path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {path} as YAML: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(raw).__name__}")
    return raw
