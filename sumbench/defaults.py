from __future__ import annotations

import copy
from functools import lru_cache
from importlib import resources
from typing import Any, Callable, Dict

import yaml

from sumbench.errors import ConfigurationError


def _coerce_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"true", "1", "yes"}:
            return True
        if raw in {"false", "0", "no"}:
            return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ConfigurationError(f"Invalid option {key}='{value}' (expected bool).")


def _coerce_positive(target_type: type, *, allow_none: bool = False):
    def _coerce(value: Any, key: str):
        if value is None and allow_none:
            return None
        if isinstance(value, bool):
            raise ConfigurationError(
                f"Invalid option {key}='{value}' (expected {target_type.__name__})."
            )
        try:
            if isinstance(value, str):
                value = float(value)
            number = target_type(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid option {key}='{value}' (expected {target_type.__name__})."
            ) from exc
        if number <= 0:
            raise ConfigurationError(f"Option {key} must be positive, got {value!r}.")
        return number

    return _coerce


BUILD_SCHEMA: Dict[str, Callable[[Any, str], Any]] = {
    "parallel": _coerce_bool,
    "n_workers": _coerce_positive(int),
    "timeout": _coerce_positive(float, allow_none=True),
    "catch_errors": _coerce_bool,
    "progress": _coerce_bool,
    "sort_ids": _coerce_bool,
    "keep_data": _coerce_bool,
}


def coerce_options(values: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(values) - set(schema))
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s) {unknown}. Available: {sorted(schema)}"
        )
    coerced = dict(values)
    for key, caster in schema.items():
        if key in coerced:
            coerced[key] = caster(coerced[key], key)
    return coerced


@lru_cache(maxsize=None)
def _load_config(name: str) -> Dict[str, Any]:
    path = resources.files("sumbench") / "configs" / f"{name}.yaml"
    if not path.is_file():
        raise ConfigurationError(f"Unknown config '{name}'")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config '{name}' must be a mapping")
    return data


class Defaults:
    def build(self) -> Dict[str, Any]:
        params = copy.deepcopy(_load_config("build"))
        return coerce_options(params, BUILD_SCHEMA)


defaults = Defaults()

__all__ = ["Defaults", "defaults", "coerce_options", "BUILD_SCHEMA"]
