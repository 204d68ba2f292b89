import numpy as np
import pandas as pd
import pytest
from bench_helpers import adjust_with_stats, always_fails, take_qvalue, take_rank

from sumbench import (
    BenchPlan,
    available_metrics,
    build,
    col,
    evaluate,
    register_default_metric,
    register_metric,
    tidy_metrics,
)
from sumbench.errors import (
    ConfigurationError,
    DuplicateIdError,
    UnknownAssayError,
    UnknownLayerError,
)
from sumbench.metrics import (
    false_discovery_rate,
    false_negative_rate,
    metric_defaults,
    rejections,
    true_negative_rate,
    true_positive_rate,
)


@pytest.fixture
def table(pvalues):
    plan = BenchPlan(pvalues)
    for name, method in (("bonf", "bonferroni"), ("bh", "bh")):
        plan.add(
            name,
            adjust_with_stats,
            {"p": col("pval"), "method": method},
            post={"qvalue": take_qvalue, "rank": take_rank},
        )
    plan.add("broken", always_fails, {"p": col("pval")}, post={"qvalue": take_qvalue})
    return build(plan, truth_cols={"qvalue": "truth"})


def test_builtin_metrics_on_small_vectors():
    query = np.array([0.01, 0.5, 0.02, 0.9])
    truth = np.array([1, 1, 0, 0])
    assert rejections(query, truth) == 2.0
    assert true_positive_rate(query, truth) == 0.5
    assert true_negative_rate(query, truth) == 0.5
    assert false_discovery_rate(query, truth) == 0.5
    assert false_negative_rate(query, truth) == 0.5

    truth = np.array([1, 0, 0, 0])
    assert true_positive_rate(query, truth) == 1.0
    assert false_discovery_rate(query, truth) == 0.5
    assert true_negative_rate(query, truth) == pytest.approx(2 / 3)
    assert false_negative_rate(query, truth) == 0.0
    assert rejections(query, truth, alpha=0.015) == 1.0


def test_builtin_metrics_ignore_missing_values():
    query = np.array([0.01, np.nan, 0.5])
    truth = np.array([1.0, 1.0, np.nan])
    assert rejections(query, truth) == 1.0
    assert true_positive_rate(query, truth) == 1.0
    assert np.isnan(false_discovery_rate(np.array([0.5]), np.array([0])))


def test_available_metrics_lists_builtins():
    frame = available_metrics()
    assert list(frame["metric"]) == ["rejections", "TPR", "TNR", "FDR", "FNR"]


def test_register_unknown_layer(table):
    with pytest.raises(UnknownAssayError):
        register_metric(table, "Z", "TPR", true_positive_rate)
    with pytest.raises(UnknownLayerError):
        register_default_metric(table, "Z", "TPR")


def test_metric_without_defaults_rejected(table):
    def needs_k(query, truth, k):
        return float(k)

    with pytest.raises(ConfigurationError):
        register_metric(table, "qvalue", "k", needs_k)
    with pytest.raises(ConfigurationError):
        metric_defaults(lambda query: 0.0)
    assert metric_defaults(true_positive_rate) == {"alpha": 0.1}


def test_duplicate_and_unknown_builtin(table):
    register_default_metric(table, "qvalue", "TPR")
    with pytest.raises(DuplicateIdError):
        register_metric(table, "qvalue", "TPR", true_positive_rate)
    with pytest.raises(ConfigurationError):
        register_default_metric(table, "qvalue", "AUC")
    frame = table.metrics.to_frame()
    assert frame.to_dict("records") == [
        {"layer": "qvalue", "metric": "TPR", "params": "alpha=0.1"}
    ]


def test_evaluate_without_metrics_raises(table):
    with pytest.raises(ConfigurationError):
        evaluate(table)


def test_evaluate_wide_with_defaults(table, pvalues):
    register_default_metric(table, "qvalue", ["TPR", "FDR"])
    wide = evaluate(table)

    # The failed method has no values and produces no row.
    assert list(wide.index) == ["bonf", "bh"]
    assert list(wide.columns) == ["qvalue.TPR", "qvalue.FDR"]
    assert wide.loc["bonf", "qvalue.TPR"] == 1.0
    expected = false_discovery_rate(
        table.layer("qvalue")["bh"].to_numpy(), pvalues["truth"].to_numpy()
    )
    assert wide.loc["bh", "qvalue.FDR"] == pytest.approx(expected, nan_ok=True)


def test_evaluate_parameter_grid(table):
    register_default_metric(table, "qvalue", ["TPR", "FDR"])
    wide = evaluate(table, {"alpha": [0.05, 0.1]})
    assert list(wide.columns) == [
        "qvalue.TPR[alpha=0.05]",
        "qvalue.TPR[alpha=0.1]",
        "qvalue.FDR[alpha=0.05]",
        "qvalue.FDR[alpha=0.1]",
    ]
    assert wide.shape == (2, 4)

    tidy = evaluate(table, {"alpha": [0.05, 0.1]}, tidy=True)
    assert list(tidy.columns) == ["method", "layer", "metric", "alpha", "value"]
    assert len(tidy) == 8
    assert set(tidy["alpha"]) == {0.05, 0.1}


def test_grid_keys_only_reach_metrics_that_accept_them(table):
    def mean_q(query, truth):
        return float(np.mean(query))

    def count_kwargs(query, truth, **kwargs):
        return float(len(kwargs))

    register_metric(table, "qvalue", "mean", mean_q)
    register_metric(table, "qvalue", "nkw", count_kwargs)
    wide = evaluate(table, {"alpha": 0.2})
    assert list(wide.columns) == ["qvalue.mean", "qvalue.nkw[alpha=0.2]"]
    assert (wide["qvalue.nkw[alpha=0.2]"] == 1.0).all()


def test_layer_without_ground_truth_is_skipped(table):
    register_default_metric(table, "rank", "rejections")
    register_default_metric(table, "qvalue", "rejections")
    wide = evaluate(table)
    assert list(wide.columns) == ["qvalue.rejections"]

    table.set_ground_truth("rank", np.zeros(50))
    wide = evaluate(table)
    assert list(wide.columns) == ["rank.rejections", "qvalue.rejections"]


def test_add_to_method_info_and_tidy_metrics(table):
    register_default_metric(table, "qvalue", "TPR")
    info = evaluate(table, {"alpha": [0.05, 0.1]}, add_to_method_info=True)

    assert info is table.method_info
    assert "qvalue.TPR[alpha=0.05]" in info.columns
    assert pd.isna(info.loc["broken", "qvalue.TPR[alpha=0.1]"])
    assert info.loc["bonf", "qvalue.TPR[alpha=0.1]"] == 1.0

    long = tidy_metrics(table)
    assert list(long.columns) == ["method", "layer", "metric", "alpha", "value"]
    assert len(long) == 4
    assert set(long["method"]) == {"bonf", "bh"}
