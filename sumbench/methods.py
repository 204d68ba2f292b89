from __future__ import annotations

import functools
import hashlib
import json
import types
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Mapping

import numpy as np
import pandas as pd

from sumbench.errors import ConfigurationError
from sumbench.params import Column, Deferred, describe_param


@dataclass(frozen=True)
class MethodDescriptor:
    """One method under comparison: a callable plus its bound parameters.

    ``post`` maps post-step names to unary functions applied to the raw
    output. When it is empty a single identity step named after the method
    is used at execution time.
    """

    id: str
    func: Callable[..., Any]
    params: Mapping[str, Any] = field(default_factory=dict)
    post: Mapping[str, Callable[[Any], Any]] = field(default_factory=dict)
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise ConfigurationError("Method id must be a non-empty string")
        if not callable(self.func):
            raise ConfigurationError(f"Method '{self.id}': func must be callable")
        for name, fn in dict(self.post).items():
            if not isinstance(name, str) or not name:
                raise ConfigurationError(
                    f"Method '{self.id}': post-step names must be non-empty strings"
                )
            if not callable(fn):
                raise ConfigurationError(
                    f"Method '{self.id}': post-step '{name}' must be callable"
                )
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        object.__setattr__(self, "post", MappingProxyType(dict(self.post)))
        object.__setattr__(self, "meta", MappingProxyType(dict(self.meta)))

    @property
    def post_steps(self) -> dict[str, Callable[[Any], Any]]:
        if self.post:
            return dict(self.post)
        return {self.id: _identity}

    @property
    def post_names(self) -> list[str]:
        return list(self.post_steps)

    def with_changes(self, **changes: Any) -> "MethodDescriptor":
        return replace(self, **changes)

    def fingerprint(self) -> str:
        return method_fingerprint(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MethodDescriptor):
            return NotImplemented
        return self.id == other.id and self.fingerprint() == other.fingerprint()

    def __hash__(self) -> int:
        return hash((self.id, self.fingerprint()))

    def __getstate__(self) -> dict:
        return {
            "id": self.id,
            "func": self.func,
            "params": dict(self.params),
            "post": dict(self.post),
            "meta": dict(self.meta),
        }

    def __setstate__(self, state: dict) -> None:
        object.__setattr__(self, "id", state["id"])
        object.__setattr__(self, "func", state["func"])
        object.__setattr__(self, "params", MappingProxyType(dict(state["params"])))
        object.__setattr__(self, "post", MappingProxyType(dict(state["post"])))
        object.__setattr__(self, "meta", MappingProxyType(dict(state["meta"])))


def _identity(value: Any) -> Any:
    return value


def describe_callable(fn: Any) -> str:
    if isinstance(fn, functools.partial):
        return f"partial({describe_callable(fn.func)})"
    module = getattr(fn, "__module__", None)
    qualname = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None)
    if module and qualname:
        return f"{module}.{qualname}"
    if qualname:
        return str(qualname)
    cls = type(fn)
    return f"{cls.__module__}.{cls.__qualname__}()"


# ----------------------------
# Fingerprints
# ----------------------------


def _code_digest(code) -> str:
    consts = []
    for const in code.co_consts:
        if hasattr(const, "co_code"):
            consts.append(_code_digest(const))
        else:
            consts.append(repr(const))
    payload = code.co_code + "|".join(consts).encode("utf-8")
    payload += "|".join(code.co_names).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()[:16]


def _is_callable_instance(fn: Any) -> bool:
    if isinstance(fn, type) or hasattr(fn, "__code__"):
        return False
    return hasattr(getattr(type(fn), "__call__", None), "__code__")


def _instance_state(obj: Any, seen: frozenset) -> Any:
    if isinstance(obj, type):
        return {"class": describe_callable(obj)}
    state: dict[str, Any] = {}
    if hasattr(obj, "__dict__"):
        state.update(vars(obj))
    for cls in type(obj).__mro__:
        for name in getattr(cls, "__slots__", ()):
            if name not in ("__dict__", "__weakref__") and hasattr(obj, name):
                state.setdefault(name, getattr(obj, name))
    return {
        "class": describe_callable(type(obj)),
        "state": _canonical_value(state, seen),
    }


def _callable_key(fn: Any, seen: frozenset = frozenset()) -> Any:
    # ``seen`` holds the callables on the current path; a repeat is a cycle
    # (a recursive closure or an object that refers back to itself).
    if id(fn) in seen:
        return {"ref": describe_callable(fn), "cycle": True}
    seen = seen | {id(fn)}
    if isinstance(fn, functools.partial):
        return {
            "partial": _callable_key(fn.func, seen),
            "args": [_canonical_value(arg, seen) for arg in fn.args],
            "keywords": {k: _canonical_value(v, seen) for k, v in fn.keywords.items()},
        }
    if isinstance(fn, types.MethodType):
        return {
            "method": _callable_key(fn.__func__, seen),
            "self": _instance_state(fn.__self__, seen),
        }
    if _is_callable_instance(fn):
        return {
            "instance": describe_callable(fn),
            "call": _callable_key(type(fn).__call__, seen),
            "self": _instance_state(fn, seen),
        }
    key: dict[str, Any] = {"ref": describe_callable(fn)}
    code = getattr(fn, "__code__", None)
    if code is not None:
        key["code"] = _code_digest(code)
        defaults = getattr(fn, "__defaults__", None) or ()
        key["defaults"] = [_canonical_value(value, seen) for value in defaults]
        kwdefaults = getattr(fn, "__kwdefaults__", None) or {}
        if kwdefaults:
            key["kwdefaults"] = _canonical_value(kwdefaults, seen)
        closure = getattr(fn, "__closure__", None) or ()
        cells = []
        for cell in closure:
            try:
                cells.append(_canonical_value(cell.cell_contents, seen))
            except ValueError:
                cells.append(None)
        key["closure"] = cells
    return key


def _array_digest(values: np.ndarray) -> dict:
    arr = np.asarray(values)
    if arr.dtype == object:
        raw = repr(arr.tolist()).encode("utf-8")
    else:
        raw = np.ascontiguousarray(arr).tobytes()
    return {
        "array": hashlib.sha256(raw).hexdigest(),
        "dtype": str(arr.dtype),
        "shape": list(arr.shape),
    }


def _canonical_value(value: Any, seen: frozenset = frozenset()) -> Any:
    if isinstance(value, Column):
        return {"col": value.name}
    if isinstance(value, Deferred):
        return {"deferred": _callable_key(value.fn, seen)}
    if isinstance(value, (pd.Series, pd.Index)):
        return _array_digest(value.to_numpy())
    if isinstance(value, pd.DataFrame):
        return _array_digest(value.to_numpy())
    if isinstance(value, np.ndarray):
        return _array_digest(value)
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (str, bytes, int, float, bool, type(None))):
        return value
    if id(value) in seen:
        return {"cycle": type(value).__qualname__}
    if isinstance(value, Mapping):
        inner = seen | {id(value)}
        return {str(k): _canonical_value(v, inner) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        inner = seen | {id(value)}
        return [_canonical_value(v, inner) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(repr(v) for v in value)
    if callable(value):
        return _callable_key(value, seen)
    if type(value).__repr__ is object.__repr__:
        # The default repr embeds the address; key plain objects by state.
        return _instance_state(value, seen | {id(value)})
    return value


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=repr)


def method_fingerprint(method: MethodDescriptor) -> str:
    """Hash of callable identity, bound parameters and post-steps.

    Metadata and the id do not take part, so renaming a method or
    annotating it does not force a rerun.
    """
    payload = _canonical_json(
        {
            "func": _callable_key(method.func),
            "params": {k: _canonical_value(v) for k, v in method.params.items()},
            "post": [[name, _callable_key(fn)] for name, fn in method.post.items()],
        }
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def compare_methods(a: MethodDescriptor, b: MethodDescriptor) -> dict[str, bool]:
    return {
        "func": _canonical_json(_callable_key(a.func))
        == _canonical_json(_callable_key(b.func)),
        "params": _canonical_json(
            {k: _canonical_value(v) for k, v in a.params.items()}
        )
        == _canonical_json({k: _canonical_value(v) for k, v in b.params.items()}),
        "post": _canonical_json([[n, _callable_key(f)] for n, f in a.post.items()])
        == _canonical_json([[n, _callable_key(f)] for n, f in b.post.items()]),
        "meta": _canonical_json(_canonical_value(dict(a.meta)))
        == _canonical_json(_canonical_value(dict(b.meta))),
    }


def summarize_params(method: MethodDescriptor) -> dict[str, str]:
    return {f"param.{k}": describe_param(v) for k, v in method.params.items()}


__all__ = [
    "MethodDescriptor",
    "describe_callable",
    "method_fingerprint",
    "compare_methods",
    "summarize_params",
]
