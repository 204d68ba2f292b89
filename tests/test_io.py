import numpy as np
import pandas as pd
import pytest
from bench_helpers import adjust_with_stats, always_fails, half_pval, take_qvalue

from sumbench import (
    BenchPlan,
    build,
    col,
    deferred,
    evaluate,
    load_plan,
    load_table,
    register_default_metric,
    save_plan,
    save_table,
    update,
)
from sumbench.errors import ConfigurationError


def _plan(data):
    plan = BenchPlan(data)
    plan.add(
        "bonf",
        adjust_with_stats,
        {"p": col("pval"), "method": "bonferroni"},
        post={"qvalue": take_qvalue},
        meta={"family": "fwer"},
    )
    plan.add(
        "half",
        adjust_with_stats,
        {"p": deferred(half_pval), "method": "bh"},
        post={"qvalue": take_qvalue},
    )
    plan.add("broken", always_fails, {"p": col("pval")}, post={"qvalue": take_qvalue})
    return plan


def test_plan_round_trip(tmp_path, pvalues):
    plan = _plan(pvalues)
    path = tmp_path / "plans" / "plan.pkl"
    save_plan(plan, str(path))
    loaded = load_plan(str(path))

    assert loaded.ids() == plan.ids()
    for method in plan:
        assert loaded[method.id].fingerprint() == method.fingerprint()
    assert loaded["bonf"].meta["family"] == "fwer"
    pd.testing.assert_frame_equal(loaded.data, pvalues)


def test_plan_with_lambda_cannot_be_saved(tmp_path, pvalues):
    plan = BenchPlan(pvalues)
    plan.add("anon", lambda p: p, {"p": col("pval")})
    with pytest.raises(ConfigurationError):
        save_plan(plan, str(tmp_path / "plan.pkl"))


def test_table_round_trip(tmp_path, pvalues):
    table = build(_plan(pvalues), truth_cols={"qvalue": "truth"})
    register_default_metric(table, "qvalue", "TPR")
    evaluate(table, {"alpha": [0.05, 0.1]}, add_to_method_info=True)

    path = tmp_path / "table.pkl"
    save_table(table, str(path))
    loaded = load_table(str(path))

    assert loaded.method_ids() == table.method_ids()
    np.testing.assert_array_equal(
        loaded.layer("qvalue").to_numpy(), table.layer("qvalue").to_numpy()
    )
    pd.testing.assert_frame_equal(loaded.method_info, table.method_info)
    assert [s.to_dict() for s in loaded.sessions] == [
        s.to_dict() for s in table.sessions
    ]
    assert loaded.failed_methods() == ["broken"]
    assert ("qvalue", "TPR") in loaded.metrics
    assert set(loaded.metrics.stored_columns) == set(table.metrics.stored_columns)
    pd.testing.assert_frame_equal(evaluate(loaded), evaluate(table))


def test_loaded_table_supports_update(tmp_path, pvalues):
    table = build(_plan(pvalues))
    path = tmp_path / "table.pkl"
    save_table(table, str(path))
    again = update(load_table(str(path)))
    assert again.sessions[-1].methods == ["broken"]
    assert len(again.sessions) == 2


def test_wrong_payload_kind(tmp_path, pvalues):
    path = tmp_path / "plan.pkl"
    save_plan(_plan(pvalues), str(path))
    with pytest.raises(ConfigurationError):
        load_table(str(path))
