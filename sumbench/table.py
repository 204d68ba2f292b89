from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

import numpy as np
import pandas as pd

from sumbench.errors import ConfigurationError, UnknownLayerError
from sumbench.metrics import MetricRegistry
from sumbench.session import SessionLog, sessions_frame

if TYPE_CHECKING:
    from sumbench.plan import BenchPlan


class ResultTable:
    """Benchmark results: one layer per post-step name.

    Each layer is an ``N x M`` DataFrame (rows = observations, columns =
    methods in plan order). Cells a method did not produce are ``NaN``;
    the reason is recorded in :attr:`sessions`.
    """

    def __init__(
        self,
        layers: dict[str, pd.DataFrame],
        method_info: pd.DataFrame,
        *,
        row_index: pd.Index,
        ground_truth: pd.DataFrame | None = None,
        features: pd.DataFrame | None = None,
        sessions: Iterable[SessionLog] = (),
        plan: "BenchPlan | None" = None,
    ) -> None:
        self.row_index = pd.Index(row_index)
        n_rows = len(self.row_index)
        for name, frame in layers.items():
            if frame.shape[0] != n_rows:
                raise ConfigurationError(
                    f"Layer '{name}' has {frame.shape[0]} rows, expected {n_rows}"
                )
        self._layers = dict(layers)
        self.method_info = method_info
        self._ground_truth = (
            ground_truth
            if ground_truth is not None
            else pd.DataFrame(index=self.row_index)
        )
        self.features = features
        self._sessions: list[SessionLog] = list(sessions)
        self.plan = plan
        self.metrics = MetricRegistry()

    # ----------------------------
    # Shape
    # ----------------------------

    @property
    def n_rows(self) -> int:
        return len(self.row_index)

    @property
    def shape(self) -> tuple[int, int]:
        return self.n_rows, len(self.method_ids())

    def method_ids(self) -> list[str]:
        return list(self.method_info.index)

    # ----------------------------
    # Layers
    # ----------------------------

    def layer_names(self) -> list[str]:
        return list(self._layers)

    def has_layer(self, name: str) -> bool:
        return name in self._layers

    def layer(self, name: str) -> pd.DataFrame:
        if name not in self._layers:
            available = ", ".join(self._layers) or "<none>"
            raise UnknownLayerError(f"Layer '{name}' not found. Available: {available}")
        return self._layers[name]

    @property
    def layers(self) -> dict[str, pd.DataFrame]:
        return dict(self._layers)

    def methods_with_values(self, name: str) -> list[str]:
        frame = self.layer(name)
        return [column for column in frame.columns if frame[column].notna().any()]

    # ----------------------------
    # Ground truth
    # ----------------------------

    def ground_truth(self, name: str) -> pd.Series | None:
        if name in self._ground_truth.columns:
            return self._ground_truth[name]
        return None

    def has_ground_truth(self, name: str) -> bool:
        return name in self._ground_truth.columns and bool(
            self._ground_truth[name].notna().any()
        )

    @property
    def ground_truths(self) -> pd.DataFrame:
        return self._ground_truth

    def set_ground_truth(self, name: str, values: Any) -> None:
        if name not in self._layers:
            raise UnknownLayerError(
                f"Cannot attach ground truth: layer '{name}' not found"
            )
        arr = np.asarray(values)
        if arr.ndim != 1 or arr.shape[0] != self.n_rows:
            raise ConfigurationError(
                f"Ground truth for '{name}' must have {self.n_rows} values, "
                f"got shape {arr.shape}"
            )
        self._ground_truth[name] = arr

    # ----------------------------
    # Sessions
    # ----------------------------

    @property
    def sessions(self) -> list[SessionLog]:
        return list(self._sessions)

    def outcomes(self) -> pd.DataFrame:
        return sessions_frame(self._sessions)

    def latest_outcomes(self) -> dict[str, dict]:
        """Outcomes from the most recent session that ran each method."""
        latest: dict[str, dict] = {}
        for session in self._sessions:
            for method_id, steps in session.results.items():
                latest[method_id] = dict(steps)
        return latest

    def failed_methods(self) -> list[str]:
        latest = self.latest_outcomes()
        return [
            method_id
            for method_id in self.method_ids()
            if any(o.is_error for o in latest.get(method_id, {}).values())
        ]

    def __repr__(self) -> str:
        return (
            f"ResultTable(rows={self.n_rows}, methods={self.method_ids()}, "
            f"layers={self.layer_names()}, sessions={len(self._sessions)})"
        )


__all__ = ["ResultTable"]
