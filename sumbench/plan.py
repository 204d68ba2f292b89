from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Mapping

import pandas as pd

from sumbench.errors import ConfigurationError, DuplicateIdError, NotFoundError
from sumbench.methods import MethodDescriptor, compare_methods, describe_callable
from sumbench.params import describe_param

logger = logging.getLogger(__name__)


def _as_frame(data: Any) -> pd.DataFrame | None:
    if data is None:
        return None
    if isinstance(data, pd.DataFrame):
        return data
    if isinstance(data, Mapping):
        return pd.DataFrame(dict(data))
    raise ConfigurationError(
        f"Benchmark data must be a DataFrame or a mapping of columns, "
        f"got {type(data).__name__}"
    )


class BenchPlan:
    """Ordered, declarative collection of methods to benchmark.

    Nothing is executed here; see :func:`sumbench.engine.execute`.

    Example:
        >>> plan = BenchPlan(df)
        >>> plan.add("bonf", adjust, {"p": col("pval"), "method": "bonferroni"})
    """

    def __init__(self, data: Any = None) -> None:
        self._data = _as_frame(data)
        self._methods: dict[str, MethodDescriptor] = {}

    # ----------------------------
    # Data
    # ----------------------------

    @property
    def data(self) -> pd.DataFrame | None:
        return self._data

    def set_data(self, data: Any) -> "BenchPlan":
        self._data = _as_frame(data)
        if self._data is None:
            logger.info("Benchmark data detached")
        else:
            logger.info("Benchmark data attached: shape=%s", self._data.shape)
        return self

    @property
    def n_rows(self) -> int | None:
        return None if self._data is None else int(len(self._data))

    # ----------------------------
    # Methods
    # ----------------------------

    def add(
        self,
        id: str,
        func: Callable[..., Any],
        params: Mapping[str, Any] | None = None,
        post: Mapping[str, Callable[[Any], Any]] | Callable[[Any], Any] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> MethodDescriptor:
        if id in self._methods:
            raise DuplicateIdError(f"Method '{id}' is already in the plan")
        method = MethodDescriptor(
            id=id,
            func=func,
            params=dict(params or {}),
            post=_normalize_post(id, post),
            meta=dict(meta or {}),
        )
        self._methods[id] = method
        return method

    def add_method(self, method: MethodDescriptor) -> MethodDescriptor:
        if method.id in self._methods:
            raise DuplicateIdError(f"Method '{method.id}' is already in the plan")
        self._methods[method.id] = method
        return method

    def remove(self, id: str) -> MethodDescriptor:
        if id not in self._methods:
            raise NotFoundError(f"Method '{id}' is not in the plan")
        return self._methods.pop(id)

    def list(self) -> list[MethodDescriptor]:
        return list(self._methods.values())

    def ids(self) -> list[str]:
        return list(self._methods)

    def get(self, id: str) -> MethodDescriptor:
        if id not in self._methods:
            available = ", ".join(self._methods) or "<none>"
            raise NotFoundError(
                f"Method '{id}' is not in the plan. Available: {available}"
            )
        return self._methods[id]

    def modify(
        self,
        id: str,
        *,
        params: Mapping[str, Any] | None = None,
        func: Callable[..., Any] | None = None,
        post: Mapping[str, Callable[[Any], Any]] | Callable[[Any], Any] | None = None,
        meta: Mapping[str, Any] | None = None,
        overwrite_params: bool = False,
    ) -> MethodDescriptor:
        """Replace parts of a method, keeping its position in the plan.

        ``params`` and ``meta`` are merged into the existing values unless
        ``overwrite_params`` is set, in which case ``params`` replaces them.
        """
        method = self.get(id)
        changes: dict[str, Any] = {}
        if func is not None:
            changes["func"] = func
        if params is not None:
            changes["params"] = (
                dict(params) if overwrite_params else {**method.params, **params}
            )
        if post is not None:
            changes["post"] = _normalize_post(id, post)
        if meta is not None:
            changes["meta"] = {**method.meta, **meta}
        updated = method.with_changes(**changes)
        self._methods[id] = updated
        return updated

    def rename(self, old: str, new: str) -> MethodDescriptor:
        method = self.get(old)
        if new in self._methods and new != old:
            raise DuplicateIdError(f"Method '{new}' is already in the plan")
        renamed = method.with_changes(id=new)
        self._methods = {
            (new if key == old else key): (renamed if key == old else value)
            for key, value in self._methods.items()
        }
        return renamed

    def expand(
        self,
        id: str,
        variants: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        param: str | None = None,
        values: list[Any] | None = None,
        keep: bool = False,
    ) -> list[MethodDescriptor]:
        """Create parameter variants of an existing method.

        Either pass ``variants`` (new id -> parameter overrides) or a single
        ``param`` with a list of ``values``; the latter names the new methods
        ``"{id}_{value}"``. New methods are inserted right after ``id``.
        """
        base = self.get(id)
        if variants is None:
            if param is None or values is None:
                raise ConfigurationError(
                    "expand() needs either 'variants' or both 'param' and 'values'"
                )
            variants = {f"{id}_{value}": {param: value} for value in values}
        elif param is not None or values is not None:
            raise ConfigurationError(
                "expand() takes 'variants' or 'param'/'values', not both"
            )
        if not variants:
            raise ConfigurationError("expand() needs at least one variant")

        new_methods: list[MethodDescriptor] = []
        for new_id, overrides in variants.items():
            clash = new_id in self._methods and not (new_id == id and not keep)
            if clash or any(m.id == new_id for m in new_methods):
                raise DuplicateIdError(f"Method '{new_id}' is already in the plan")
            new_methods.append(
                base.with_changes(id=new_id, params={**base.params, **overrides})
            )

        rebuilt: dict[str, MethodDescriptor] = {}
        for key, value in self._methods.items():
            if key == id:
                if keep:
                    rebuilt[key] = value
                for method in new_methods:
                    rebuilt[method.id] = method
            else:
                rebuilt[key] = value
        self._methods = rebuilt
        return new_methods

    def copy(self) -> "BenchPlan":
        other = BenchPlan(self._data)
        other._methods = dict(self._methods)
        return other

    def without_data(self) -> "BenchPlan":
        other = self.copy()
        other._data = None
        return other

    def compare(self, other: "BenchPlan") -> pd.DataFrame:
        """Per-method differences between two plans."""
        ids = list(self._methods)
        ids += [m for m in other._methods if m not in self._methods]
        rows = []
        for method_id in ids:
            mine = self._methods.get(method_id)
            theirs = other._methods.get(method_id)
            row: dict[str, Any] = {
                "method": method_id,
                "in_self": mine is not None,
                "in_other": theirs is not None,
            }
            if mine is not None and theirs is not None:
                row.update(compare_methods(mine, theirs))
            else:
                row.update({"func": None, "params": None, "post": None, "meta": None})
            rows.append(row)
        columns = ["method", "in_self", "in_other", "func", "params", "post", "meta"]
        return pd.DataFrame(rows, columns=columns).set_index("method")

    def describe(self) -> pd.DataFrame:
        rows = []
        for method in self._methods.values():
            rows.append(
                {
                    "method": method.id,
                    "func": describe_callable(method.func),
                    "params": ", ".join(
                        f"{k}={describe_param(v)}" for k, v in method.params.items()
                    ),
                    "post": ", ".join(method.post_names),
                }
            )
        return pd.DataFrame(rows, columns=["method", "func", "params", "post"])

    def __len__(self) -> int:
        return len(self._methods)

    def __contains__(self, id: object) -> bool:
        return id in self._methods

    def __getitem__(self, id: str) -> MethodDescriptor:
        return self.get(id)

    def __iter__(self) -> Iterator[MethodDescriptor]:
        return iter(list(self._methods.values()))

    def __repr__(self) -> str:
        shape = None if self._data is None else self._data.shape
        return f"BenchPlan(methods={self.ids()}, data={shape})"


def _normalize_post(
    id: str, post: Mapping[str, Callable[[Any], Any]] | Callable[[Any], Any] | None
) -> dict[str, Callable[[Any], Any]]:
    if post is None:
        return {}
    if isinstance(post, Mapping):
        return dict(post)
    if callable(post):
        # A bare function is a single post-step named after the method.
        return {id: post}
    raise ConfigurationError(
        f"Method '{id}': post must be a mapping of name -> callable or a callable"
    )


__all__ = ["BenchPlan"]
