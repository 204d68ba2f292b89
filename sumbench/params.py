"""Deferred method parameters.

Parameters bound to a method are stored unevaluated and resolved against the
benchmark dataset only when the method runs. Three kinds are supported:

- ``Column("p")`` / ``col("p")``: a column of the dataset, passed as a
  ``numpy`` array.
- ``Deferred(fn)`` / ``deferred(fn)``: ``fn(data)`` is called with the whole
  dataset and its return value is passed on.
- anything else is a literal and passed through untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

import numpy as np
import pandas as pd

from sumbench.errors import ConfigurationError


@dataclass(frozen=True)
class Column:
    name: str

    def __repr__(self) -> str:
        return f"col({self.name!r})"


@dataclass(frozen=True)
class Deferred:
    fn: Callable[[pd.DataFrame], Any]
    label: str | None = None

    def __repr__(self) -> str:
        label = self.label or getattr(self.fn, "__qualname__", repr(self.fn))
        return f"deferred({label})"


def col(name: str) -> Column:
    if not isinstance(name, str) or not name:
        raise ConfigurationError("Column reference must be a non-empty string")
    return Column(name)


def deferred(fn: Callable[[pd.DataFrame], Any], label: str | None = None) -> Deferred:
    if not callable(fn):
        raise ConfigurationError("deferred() expects a callable taking the dataset")
    return Deferred(fn, label=label)


def resolve(expr: Any, data: pd.DataFrame | None) -> Any:
    if isinstance(expr, Column):
        if data is None:
            raise ConfigurationError(
                f"Parameter references column '{expr.name}' but no data is attached"
            )
        if expr.name not in data.columns:
            raise KeyError(
                f"Column '{expr.name}' not found in data. "
                f"Available: {list(data.columns)}"
            )
        return data[expr.name].to_numpy()
    if isinstance(expr, Deferred):
        return expr.fn(data)
    return expr


def resolve_params(params: Mapping[str, Any], data: pd.DataFrame | None) -> dict:
    return {name: resolve(expr, data) for name, expr in params.items()}


def describe_param(expr: Any, *, max_len: int = 40) -> str:
    """Short human readable summary used for the method info table."""
    if isinstance(expr, (Column, Deferred)):
        return repr(expr)
    if isinstance(expr, (np.ndarray, pd.Series)):
        return f"<{type(expr).__name__} len={len(expr)}>"
    if callable(expr):
        return getattr(expr, "__qualname__", repr(expr))
    text = repr(expr)
    if len(text) > max_len:
        text = text[: max_len - 3] + "..."
    return text


__all__ = [
    "Column",
    "Deferred",
    "col",
    "deferred",
    "resolve",
    "resolve_params",
    "describe_param",
]
