import functools

import numpy as np
import pytest
from bench_helpers import (
    Adjuster,
    Scaler,
    adjust,
    adjust_with_stats,
    always_fails,
    make_halving,
    take_qvalue,
    take_rank,
)

from sumbench import (
    BenchPlan,
    build,
    col,
    load_table,
    register_default_metric,
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
    )
    plan.add(
        "bh",
        adjust_with_stats,
        {"p": col("pval"), "method": "bh"},
        post={"qvalue": take_qvalue},
    )
    return plan


def test_unchanged_methods_are_reused(pvalues):
    table = build(_plan(pvalues), truth_cols={"qvalue": "truth"})
    again = update(table)

    assert len(again.sessions) == 2
    latest = again.sessions[-1]
    assert latest.index == 1
    assert latest.methods == []
    np.testing.assert_array_equal(
        again.layer("qvalue").to_numpy(), table.layer("qvalue").to_numpy()
    )
    assert list(again.method_info["session_idx"]) == [0, 0]
    np.testing.assert_array_equal(again.ground_truth("qvalue"), pvalues["truth"])


def test_changed_method_is_rerun(pvalues):
    table = build(_plan(pvalues))
    plan = table.plan.copy()
    plan.modify("bonf", params={"method": "bh"})
    again = update(table, plan)

    assert again.sessions[-1].methods == ["bonf"]
    assert again.sessions[-1].parameters["incremental"] is True
    np.testing.assert_allclose(
        again.layer("qvalue")["bonf"], adjust(pvalues["pval"], "bh")
    )
    assert list(again.method_info["session_idx"]) == [1, 0]
    # The earlier table is left untouched.
    assert len(table.sessions) == 1


def test_failed_method_is_rerun_after_fix(pvalues):
    plan = _plan(pvalues)
    plan.add("fixme", always_fails, {"p": col("pval")}, post={"qvalue": take_qvalue})
    table = build(plan)
    assert table.failed_methods() == ["fixme"]

    # Still failing: rerun again because the last outcome was an error.
    again = update(table)
    assert again.sessions[-1].methods == ["fixme"]

    fixed = again.plan.copy()
    fixed.modify("fixme", func=adjust_with_stats)
    repaired = update(again, fixed)
    assert repaired.sessions[-1].methods == ["fixme"]
    assert repaired.failed_methods() == []
    assert repaired.layer("qvalue")["fixme"].notna().all()
    assert len(repaired.sessions) == 3


def test_new_method_and_new_layer(pvalues):
    table = build(_plan(pvalues))
    plan = table.plan.copy()
    plan.add(
        "ranked",
        adjust_with_stats,
        {"p": col("pval")},
        post={"qvalue": take_qvalue, "rank": take_rank},
    )
    again = update(table, plan)

    assert again.sessions[-1].methods == ["ranked"]
    assert again.layer_names() == ["qvalue", "rank"]
    assert again.layer("rank")["bonf"].isna().all()
    assert again.method_ids() == ["bonf", "bh", "ranked"]


def test_removed_method_is_dropped(pvalues):
    table = build(_plan(pvalues))
    plan = table.plan.copy()
    plan.remove("bh")
    again = update(table, plan)
    assert again.method_ids() == ["bonf"]
    assert list(again.layer("qvalue").columns) == ["bonf"]


def test_metric_registrations_survive_update(pvalues):
    table = build(_plan(pvalues), truth_cols={"qvalue": "truth"})
    register_default_metric(table, "qvalue", "TPR")
    again = update(table)
    assert ("qvalue", "TPR") in again.metrics


def test_update_checks_row_count(pvalues):
    table = build(_plan(pvalues))
    plan = table.plan.copy().set_data(pvalues.iloc[:10])
    with pytest.raises(ConfigurationError):
        update(table, plan)


def test_update_needs_plan_with_data(pvalues):
    table = build(_plan(pvalues), keep_data=False)
    with pytest.raises(ConfigurationError):
        update(table)


def test_fingerprint_policy():
    base = BenchPlan().add("m", adjust, {"p": col("pval"), "method": "bh"})

    # Value-equal literals, arrays and partials compare equal.
    assert base.fingerprint() == base.with_changes(
        params={"p": col("pval"), "method": "bh"}
    ).fingerprint()
    arr = base.with_changes(params={"p": np.arange(3.0)})
    assert arr.fingerprint() == base.with_changes(
        params={"p": np.arange(3.0)}
    ).fingerprint()
    part = base.with_changes(func=functools.partial(adjust, method="bh"))
    assert part.fingerprint() == base.with_changes(
        func=functools.partial(adjust, method="bh")
    ).fingerprint()

    # Different column, literal, array content, callable or post-step differ.
    other_col = base.with_changes(params={"p": col("q"), "method": "bh"})
    assert other_col.fingerprint() != base.fingerprint()
    assert arr.fingerprint() != base.with_changes(
        params={"p": np.arange(4.0)}
    ).fingerprint()
    assert base.with_changes(func=always_fails).fingerprint() != base.fingerprint()
    with_post = base.with_changes(post={"q": take_qvalue})
    assert with_post.fingerprint() != base.fingerprint()
    assert part.fingerprint() != base.with_changes(
        func=functools.partial(adjust, method="bonferroni")
    ).fingerprint()


def test_fingerprint_tracks_closure_values():
    def make(scale):
        def scaled(p):
            return np.asarray(p) * scale

        return scaled

    plan = BenchPlan()
    one = plan.add("a", make(1.0), {"p": col("pval")})
    two = plan.add("b", make(2.0), {"p": col("pval")})
    same = plan.add("c", make(1.0), {"p": col("pval")})
    assert one.fingerprint() != two.fingerprint()
    assert one.fingerprint() == same.fingerprint()


def test_bound_method_instance_state_is_tracked(pvalues):
    plan = BenchPlan(pvalues)
    plan.add("scaled", Scaler(1.0).apply, {"p": col("pval")})
    table = build(plan)

    same = table.plan.copy()
    same.modify("scaled", func=Scaler(1.0).apply)
    assert update(table, same).sessions[-1].methods == []

    doubled = table.plan.copy()
    doubled.modify("scaled", func=Scaler(2.0).apply)
    again = update(table, doubled)
    assert again.sessions[-1].methods == ["scaled"]
    np.testing.assert_allclose(
        again.layer("scaled")["scaled"], pvalues["pval"].to_numpy() * 2.0
    )


def test_callable_instance_is_reused_after_reload(tmp_path, pvalues):
    adjuster = Adjuster("bh")
    plan = BenchPlan(pvalues)
    plan.add("a", adjuster, {"p": col("pval")})
    table = build(plan)
    assert table.method_info.loc["a", "func"] == "bench_helpers.Adjuster()"

    path = tmp_path / "table.pkl"
    save_table(table, str(path))
    assert update(load_table(str(path))).sessions[-1].methods == []

    # In-place mutation of the instance changes the fingerprint.
    adjuster.method = "bonferroni"
    again = update(table, plan)
    assert again.sessions[-1].methods == ["a"]
    np.testing.assert_allclose(
        again.layer("a")["a"], adjust(pvalues["pval"], "bonferroni")
    )


def test_recursive_closure_builds_and_is_stable(pvalues):
    plan = BenchPlan(pvalues)
    plan.add("half", make_halving(), {"p": col("pval")})
    table = build(plan)
    np.testing.assert_allclose(table.layer("half")["half"], pvalues["pval"] / 2)

    assert make_halving().__closure__ is not None
    fresh = table.plan.copy()
    fresh.modify("half", func=make_halving())
    assert update(table, fresh).sessions[-1].methods == []
