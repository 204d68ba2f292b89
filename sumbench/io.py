# sumbench/io.py
from __future__ import annotations

import importlib
import os
import pickle
from typing import Any, Dict, Optional

import pandas as pd

from sumbench.errors import ConfigurationError
from sumbench.methods import MethodDescriptor
from sumbench.metrics import MetricEntry
from sumbench.params import Deferred
from sumbench.plan import BenchPlan
from sumbench.session import SessionLog
from sumbench.table import ResultTable

PAYLOAD_VERSION = 1


# ---------------- utils ----------------


def _lookup_dotted(module: str, qualname: str):
    obj = importlib.import_module(module)
    for part in qualname.split("."):
        obj = getattr(obj, part)
    return obj


def _callable_to_meta(fn) -> Dict[str, Any]:
    mod = getattr(fn, "__module__", None)
    qn = getattr(fn, "__qualname__", None)
    if mod and qn and "<" not in qn and mod != "__main__":
        try:
            if _lookup_dotted(mod, qn) is fn:
                return {"kind": "dotted", "module": mod, "qualname": qn}
        except (ImportError, AttributeError):
            pass
    try:
        return {"kind": "pickle", "blob": pickle.dumps(fn)}
    except (pickle.PicklingError, AttributeError, TypeError) as exc:
        raise ConfigurationError(
            f"Cannot save callable {fn!r}: it is neither importable nor picklable. "
            "Define it at module level."
        ) from exc


def _meta_to_callable(meta: Dict[str, Any]):
    kind = meta.get("kind")
    if kind == "dotted":
        return _lookup_dotted(meta["module"], meta["qualname"])
    if kind == "pickle":
        return pickle.loads(meta["blob"])
    raise ConfigurationError(f"Unknown callable serialization kind '{kind}'")


def _param_to_payload(value: Any) -> Any:
    if isinstance(value, Deferred):
        return {"__deferred__": _callable_to_meta(value.fn), "label": value.label}
    if callable(value) and not isinstance(value, type):
        return {"__callable__": _callable_to_meta(value)}
    return value


def _param_from_payload(value: Any) -> Any:
    if isinstance(value, dict) and "__deferred__" in value:
        return Deferred(_meta_to_callable(value["__deferred__"]), label=value["label"])
    if isinstance(value, dict) and "__callable__" in value:
        return _meta_to_callable(value["__callable__"])
    return value


def _method_to_payload(method: MethodDescriptor) -> Dict[str, Any]:
    return {
        "id": method.id,
        "func": _callable_to_meta(method.func),
        "params": {k: _param_to_payload(v) for k, v in method.params.items()},
        "post": [[name, _callable_to_meta(fn)] for name, fn in method.post.items()],
        "meta": dict(method.meta),
    }


def _method_from_payload(payload: Dict[str, Any]) -> MethodDescriptor:
    return MethodDescriptor(
        id=payload["id"],
        func=_meta_to_callable(payload["func"]),
        params={k: _param_from_payload(v) for k, v in payload["params"].items()},
        post={name: _meta_to_callable(meta) for name, meta in payload["post"]},
        meta=payload.get("meta") or {},
    )


def plan_to_payload(plan: BenchPlan) -> Dict[str, Any]:
    return {
        "data": plan.data,
        "methods": [_method_to_payload(m) for m in plan.list()],
    }


def plan_from_payload(payload: Dict[str, Any]) -> BenchPlan:
    plan = BenchPlan(payload.get("data"))
    for method_payload in payload.get("methods") or []:
        plan.add_method(_method_from_payload(method_payload))
    return plan


def _write(payload: Dict[str, Any], path: str) -> None:
    os.makedirs(os.path.dirname(os.fspath(path)) or ".", exist_ok=True)
    pd.to_pickle(payload, path)


def _read(path: str, kind: str) -> Dict[str, Any]:
    payload = pd.read_pickle(path)
    if not isinstance(payload, dict) or payload.get("kind") != kind:
        raise ConfigurationError(f"'{path}' does not contain a saved {kind}")
    version = payload.get("version")
    if version != PAYLOAD_VERSION:
        raise ConfigurationError(
            f"Unsupported {kind} payload version {version!r} "
            f"(expected {PAYLOAD_VERSION})"
        )
    return payload


# ---------------- public API ----------------


def save_plan(plan: BenchPlan, path: str) -> None:
    """Persist a plan: data plus every method with its callables."""
    payload = {"version": PAYLOAD_VERSION, "kind": "plan", **plan_to_payload(plan)}
    _write(payload, path)


def load_plan(path: str) -> BenchPlan:
    return plan_from_payload(_read(path, "plan"))


def save_table(table: ResultTable, path: str) -> None:
    """
    Persist a result table: layers, method info, ground truth, features,
    every session, the stored plan and the registered metrics.
    """
    payload = {
        "version": PAYLOAD_VERSION,
        "kind": "table",
        "row_index": table.row_index,
        "layers": table.layers,
        "method_info": table.method_info,
        "ground_truth": table.ground_truths,
        "features": table.features,
        "sessions": [session.to_dict() for session in table.sessions],
        "plan": plan_to_payload(table.plan) if table.plan is not None else None,
        "metrics": [
            {"layer": e.layer, "metric": e.metric, "fn": _callable_to_meta(e.fn)}
            for e in table.metrics.entries()
        ],
        "stored_columns": dict(table.metrics.stored_columns),
    }
    _write(payload, path)


def load_table(path: str) -> ResultTable:
    payload = _read(path, "table")
    plan_payload: Optional[Dict[str, Any]] = payload.get("plan")
    table = ResultTable(
        dict(payload["layers"]),
        payload["method_info"],
        row_index=payload["row_index"],
        ground_truth=payload.get("ground_truth"),
        features=payload.get("features"),
        sessions=[SessionLog.from_dict(s) for s in payload.get("sessions") or []],
        plan=plan_from_payload(plan_payload) if plan_payload is not None else None,
    )
    for entry in payload.get("metrics") or []:
        table.metrics.add(
            MetricEntry(
                layer=entry["layer"],
                metric=entry["metric"],
                fn=_meta_to_callable(entry["fn"]),
            )
        )
    table.metrics.stored_columns.update(payload.get("stored_columns") or {})
    return table


__all__ = ["save_plan", "load_plan", "save_table", "load_table"]
