"""Data behind the usual benchmark figures.

These helpers only prepare tables; drawing them is left to the caller's
plotting library of choice.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from sumbench.errors import ConfigurationError, UnknownAssayError
from sumbench.table import ResultTable


def _check_alpha(alpha: float) -> float:
    try:
        value = float(alpha)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"alpha must be numeric, got {alpha!r}") from exc
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"alpha must be within [0, 1], got {alpha!r}")
    return value


def _layer(table: ResultTable, layer: str) -> pd.DataFrame:
    if not table.has_layer(layer):
        raise UnknownAssayError(f"Layer '{layer}' not found")
    return table.layer(layer)


def overlap_indicators(
    table: ResultTable, layer: str = "qvalue", alpha: float = 0.1
) -> pd.DataFrame:
    """0/1 matrix of ``value < alpha`` per method, missing values count as 0.

    Raises:
        ConfigurationError: If ``alpha`` is outside [0, 1] or fewer than two
            methods have any value below ``alpha``.
    """
    alpha = _check_alpha(alpha)
    frame = _layer(table, layer).apply(pd.to_numeric, errors="coerce")
    hits = (frame < alpha).astype(int)
    if int((hits.sum(axis=0) > 0).sum()) < 2:
        raise ConfigurationError(
            "To compute overlaps, at least 2 methods must have observations "
            "that pass the alpha threshold."
        )
    return hits


def roc_frame(table: ResultTable, layer: str = "qvalue") -> pd.DataFrame:
    """Long ``method, TPR, FDR`` table, ranking each method's values ascending."""
    frame = _layer(table, layer)
    if not table.has_ground_truth(layer):
        raise ConfigurationError(f"Ground truths not found for layer '{layer}'")
    truth = table.ground_truth(layer).to_numpy(dtype=float)
    n_true = np.nansum(truth)

    parts = []
    for method_id in frame.columns:
        values = pd.to_numeric(frame[method_id], errors="coerce").to_numpy(dtype=float)
        if np.isnan(values).all():
            continue
        order = np.argsort(values, kind="mergesort")
        ranked = truth[order]
        tpr = np.cumsum(ranked) / n_true if n_true else np.full(len(ranked), np.nan)
        fdr = np.cumsum(np.abs(ranked - 1)) / np.arange(1, len(ranked) + 1)
        parts.append(pd.DataFrame({"method": method_id, "TPR": tpr, "FDR": fdr}))
    if not parts:
        return pd.DataFrame(columns=["method", "TPR", "FDR"])
    return pd.concat(parts, ignore_index=True)


__all__ = ["overlap_indicators", "roc_frame"]
