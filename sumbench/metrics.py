"""Performance metrics computed from a result table and its ground truth.

Metrics are registered per result table as ``(layer, metric, fn)``. ``fn``
is called as ``fn(query, truth, **params)`` where ``query`` is one method's
column of the layer and ``truth`` the layer's ground truth, both ``numpy``
arrays. Every parameter after ``query``/``truth`` must have a default so a
metric can always be evaluated without a parameter grid.
"""

from __future__ import annotations

import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

import numpy as np
import pandas as pd

from sumbench.errors import ConfigurationError, DuplicateIdError, UnknownAssayError

if TYPE_CHECKING:
    from sumbench.table import ResultTable

logger = logging.getLogger(__name__)

MetricFn = Callable[..., float]


@dataclass(frozen=True)
class MetricEntry:
    layer: str
    metric: str
    fn: MetricFn

    @property
    def defaults(self) -> dict[str, Any]:
        return metric_defaults(self.fn)

    @property
    def accepts_any(self) -> bool:
        params = inspect.signature(self.fn).parameters.values()
        return any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params)


class MetricRegistry:
    """Metrics registered against one result table."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], MetricEntry] = {}
        self.stored_columns: dict[str, dict[str, Any]] = {}

    def add(self, entry: MetricEntry) -> MetricEntry:
        key = (entry.layer, entry.metric)
        if key in self._entries:
            raise DuplicateIdError(
                f"Metric '{entry.metric}' is already registered "
                f"for layer '{entry.layer}'"
            )
        self._entries[key] = entry
        return entry

    def entries(self) -> list[MetricEntry]:
        return list(self._entries.values())

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "layer": entry.layer,
                "metric": entry.metric,
                "params": ", ".join(f"{k}={v!r}" for k, v in entry.defaults.items()),
            }
            for entry in self._entries.values()
        ]
        return pd.DataFrame(rows, columns=["layer", "metric", "params"])

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


def metric_defaults(fn: MetricFn) -> dict[str, Any]:
    """Default values of every parameter after ``query`` and ``truth``.

    Raises:
        ConfigurationError: If ``fn`` cannot take two positional arguments or
            an extra parameter has no default.
    """
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Cannot inspect metric function {fn!r}") from exc

    positional = (
        inspect.Parameter.POSITIONAL_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
    )
    params = list(signature.parameters.values())
    has_varargs = any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params)
    leading = [p for p in params if p.kind in positional][:2]
    if len(leading) < 2 and not has_varargs:
        raise ConfigurationError(
            "Metric function must accept (query, truth) as its first two arguments"
        )

    out: dict[str, Any] = {}
    missing: list[str] = []
    for p in params:
        if p in leading or p.kind in (
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
        ):
            continue
        if p.default is inspect.Parameter.empty:
            missing.append(p.name)
        else:
            out[p.name] = p.default
    if missing:
        raise ConfigurationError(
            f"Metric function parameters {missing} need default values"
        )
    return out


# ----------------------------
# Built-in metrics
# ----------------------------


def _ratio(num: float, den: float) -> float:
    return float(num) / float(den) if den else float("nan")


def _split(query: Any, truth: Any, alpha: float) -> tuple[np.ndarray, ...]:
    q = np.asarray(query, dtype=float)
    t = np.asarray(truth, dtype=float)
    valid = ~np.isnan(q) & ~np.isnan(t)
    significant = valid & (np.where(valid, q, np.inf) < alpha)
    not_significant = valid & ~significant
    positive = valid & (t == 1)
    negative = valid & (t == 0)
    return significant, not_significant, positive, negative


def rejections(query: Any, truth: Any, alpha: float = 0.1) -> float:
    q = np.asarray(query, dtype=float)
    return float(np.sum(q[~np.isnan(q)] < alpha))


def true_positive_rate(query: Any, truth: Any, alpha: float = 0.1) -> float:
    sig, _, pos, _ = _split(query, truth, alpha)
    return _ratio(np.sum(sig & pos), np.sum(pos))


def true_negative_rate(query: Any, truth: Any, alpha: float = 0.1) -> float:
    _, nonsig, _, neg = _split(query, truth, alpha)
    return _ratio(np.sum(nonsig & neg), np.sum(neg))


def false_discovery_rate(query: Any, truth: Any, alpha: float = 0.1) -> float:
    sig, _, _, neg = _split(query, truth, alpha)
    return _ratio(np.sum(sig & neg), np.sum(sig))


def false_negative_rate(query: Any, truth: Any, alpha: float = 0.1) -> float:
    _, nonsig, pos, _ = _split(query, truth, alpha)
    return _ratio(np.sum(nonsig & pos), np.sum(pos))


BUILTIN_METRICS: dict[str, tuple[MetricFn, str]] = {
    "rejections": (rejections, "Number of values below alpha"),
    "TPR": (true_positive_rate, "True positive rate at alpha"),
    "TNR": (true_negative_rate, "True negative rate at alpha"),
    "FDR": (false_discovery_rate, "False discovery rate at alpha"),
    "FNR": (false_negative_rate, "False negative rate at alpha"),
}


def available_metrics() -> pd.DataFrame:
    rows = [
        {"metric": name, "function": fn.__name__, "description": text}
        for name, (fn, text) in BUILTIN_METRICS.items()
    ]
    return pd.DataFrame(rows, columns=["metric", "function", "description"])


# ----------------------------
# Registration
# ----------------------------


def register_metric(
    table: "ResultTable", layer: str, metric: str, fn: MetricFn
) -> MetricEntry:
    if not table.has_layer(layer):
        available = ", ".join(table.layer_names()) or "<none>"
        raise UnknownAssayError(
            f"Cannot register metric '{metric}': layer '{layer}' not found. "
            f"Available: {available}"
        )
    if not isinstance(metric, str) or not metric:
        raise ConfigurationError("Metric name must be a non-empty string")
    if not callable(fn):
        raise ConfigurationError(f"Metric '{metric}' must be callable")
    metric_defaults(fn)
    return table.metrics.add(MetricEntry(layer=layer, metric=metric, fn=fn))


def register_default_metric(
    table: "ResultTable", layer: str, metric: str | Iterable[str]
) -> list[MetricEntry]:
    names = [metric] if isinstance(metric, str) else list(metric)
    unknown = [name for name in names if name not in BUILTIN_METRICS]
    if unknown:
        raise ConfigurationError(
            f"Unknown built-in metric(s) {unknown}. "
            f"Available: {list(BUILTIN_METRICS)}"
        )
    return [
        register_metric(table, layer, name, BUILTIN_METRICS[name][0]) for name in names
    ]


# ----------------------------
# Evaluation
# ----------------------------


def _as_grid(params: Mapping[str, Any] | None) -> dict[str, list]:
    grid: dict[str, list] = {}
    for key, values in (params or {}).items():
        if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            grid[key] = [values]
        else:
            grid[key] = list(values)
        if not grid[key]:
            raise ConfigurationError(f"Parameter grid for '{key}' is empty")
    return grid


def _column_label(entry: MetricEntry, varied: Mapping[str, Any]) -> str:
    label = f"{entry.layer}.{entry.metric}"
    if varied:
        label += "[" + ",".join(f"{k}={v}" for k, v in varied.items()) + "]"
    return label


def _entry_records(
    table: "ResultTable", entry: MetricEntry, grid: Mapping[str, list]
) -> list[dict]:
    if not table.has_layer(entry.layer):
        raise UnknownAssayError(
            f"Metric '{entry.metric}' refers to missing layer '{entry.layer}'"
        )
    if not table.has_ground_truth(entry.layer):
        logger.info(
            "Skipping metric '%s': no ground truth for layer '%s'",
            entry.metric,
            entry.layer,
        )
        return []

    defaults = entry.defaults
    keys = [k for k in grid if k in defaults or entry.accepts_any]
    truth = table.ground_truth(entry.layer).to_numpy()
    frame = table.layer(entry.layer)

    records: list[dict] = []
    for combo in itertools.product(*(grid[k] for k in keys)):
        varied = dict(zip(keys, combo))
        params = {**defaults, **varied}
        label = _column_label(entry, varied)
        for method_id in frame.columns:
            query = frame[method_id]
            if query.isna().all():
                continue
            value = entry.fn(query.to_numpy(), truth, **params)
            records.append(
                {
                    "method": method_id,
                    "layer": entry.layer,
                    "metric": entry.metric,
                    "label": label,
                    "params": params,
                    "value": value,
                }
            )
    return records


def _tidy_frame(records: list[dict]) -> pd.DataFrame:
    param_names: list[str] = []
    for record in records:
        for key in record["params"]:
            if key not in param_names:
                param_names.append(key)
    rows = []
    for record in records:
        row = {
            "method": record["method"],
            "layer": record["layer"],
            "metric": record["metric"],
        }
        row.update({name: record["params"].get(name, np.nan) for name in param_names})
        row["value"] = record["value"]
        rows.append(row)
    columns = ["method", "layer", "metric", *param_names, "value"]
    return pd.DataFrame(rows, columns=columns)


def _wide_frame(table: "ResultTable", records: list[dict]) -> pd.DataFrame:
    labels: list[str] = []
    values: dict[str, dict[str, Any]] = {}
    for record in records:
        if record["label"] not in labels:
            labels.append(record["label"])
        values.setdefault(record["label"], {})[record["method"]] = record["value"]
    methods = [m for m in table.method_ids() if any(m in v for v in values.values())]
    wide = pd.DataFrame(index=pd.Index(methods, name="method"))
    for label in labels:
        wide[label] = pd.Series(values[label], dtype=object).reindex(methods)
    return wide.infer_objects()


def evaluate(
    table: "ResultTable",
    params: Mapping[str, Any] | None = None,
    *,
    tidy: bool = False,
    add_to_method_info: bool = False,
) -> pd.DataFrame:
    """Compute every registered metric for every method with values.

    ``params`` is a grid: each key maps to one value or a list of values and
    every combination is evaluated for the metrics that accept that key.
    Methods whose layer column is entirely missing, and layers without ground
    truth, produce no output.

    Returns:
        A wide table (one row per method, one column per metric and
        parameter combination), a long table when ``tidy`` is set, or the
        updated ``table.method_info`` when ``add_to_method_info`` is set.
    """
    entries = table.metrics.entries()
    if not entries:
        raise ConfigurationError("No metrics registered; call register_metric() first")
    grid = _as_grid(params)

    records: list[dict] = []
    for entry in entries:
        records.extend(_entry_records(table, entry, grid))
    logger.info(
        "Evaluated %s metric value(s) over %s metric(s)", len(records), len(entries)
    )

    if add_to_method_info:
        wide = _wide_frame(table, records)
        for record in records:
            table.metrics.stored_columns[record["label"]] = {
                "layer": record["layer"],
                "metric": record["metric"],
                "params": dict(record["params"]),
            }
        for label in wide.columns:
            table.method_info[label] = wide[label].reindex(table.method_info.index)
        return table.method_info
    if tidy:
        return _tidy_frame(records)
    return _wide_frame(table, records)


def tidy_metrics(table: "ResultTable") -> pd.DataFrame:
    """Long form of the metric columns stored in ``table.method_info``."""
    records: list[dict] = []
    info = table.method_info
    for label, stored in table.metrics.stored_columns.items():
        if label not in info.columns:
            continue
        for method_id, value in info[label].items():
            if pd.isna(value):
                continue
            records.append(
                {**stored, "method": method_id, "label": label, "value": value}
            )
    return _tidy_frame(records)


__all__ = [
    "MetricEntry",
    "MetricRegistry",
    "metric_defaults",
    "rejections",
    "true_positive_rate",
    "true_negative_rate",
    "false_discovery_rate",
    "false_negative_rate",
    "BUILTIN_METRICS",
    "available_metrics",
    "register_metric",
    "register_default_metric",
    "evaluate",
    "tidy_metrics",
]
