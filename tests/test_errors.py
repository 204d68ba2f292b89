from bench_helpers import adjust_with_stats, always_fails, broken_post, take_qvalue

from sumbench import BenchPlan, build, col, render_error_summary_md, summarize_errors
from sumbench.errors import (
    ErrorSummary,
    MethodExecutionError,
    MethodTimeoutError,
    NotFoundError,
    classify_error,
    normalize_error_signature,
)


def test_normalize_error_signature_masks_variable_parts():
    a = normalize_error_signature("KeyError", "Column 'pval' not found at 0x7f12")
    b = normalize_error_signature("KeyError", "Column 'other' not found at 0x9a00")
    assert a == b
    assert normalize_error_signature(None, None) == "unknown"
    assert "<sec>" in normalize_error_signature("X", "timed out after 12.5s")


def test_classify_timeouts():
    assert classify_error("MethodTimeoutError", "x")["is_timeout"] is True
    assert classify_error("RuntimeError", "call timed out")["is_timeout"] is True
    assert classify_error("ValueError", "bad input")["is_timeout"] is False


def test_error_messages():
    err = MethodExecutionError(
        "bh", "exploded", origin="post", post_step="q", error_type="RuntimeError"
    )
    assert str(err) == "[bh/q] post stage failed: RuntimeError: exploded"
    assert isinstance(MethodTimeoutError("bh", "timed out"), TimeoutError)
    assert str(NotFoundError("Method 'x' is not in the plan")) == (
        "Method 'x' is not in the plan"
    )


def test_summary_counts():
    summary = ErrorSummary(max_examples=1)
    for msg in ("bad 1", "bad 2"):
        summary.add(
            method="m",
            post_step="q",
            error_type="ValueError",
            error_msg=msg,
            origin="main",
        )
    assert summary.total == 2
    payload = summary.to_dict()
    assert payload["counts"]["error_type"] == {"ValueError": 2}
    assert payload["by_method"]["m"]["total"] == 2
    assert sum(len(v) for v in payload["examples"].values()) == 2


def test_summarize_table_and_render(pvalues):
    plan = BenchPlan(pvalues)
    plan.add(
        "broken",
        always_fails,
        {"p": col("pval")},
        post={"qvalue": take_qvalue, "other": take_qvalue},
    )
    plan.add(
        "halfway",
        adjust_with_stats,
        {"p": col("pval")},
        post={"qvalue": take_qvalue, "bad": broken_post},
    )
    table = build(plan)

    summary = summarize_errors(table)
    payload = summary.to_dict()
    assert summary.total == 3
    assert payload["counts"]["origin"] == {"main": 2, "post": 1}
    assert payload["by_method"]["broken"]["total"] == 2
    assert payload["by_post_step"]["bad"]["error_type"] == {"RuntimeError": 1}

    text = render_error_summary_md(payload)
    assert text.startswith("# Error Summary")
    assert "## Errors by Method" in text
    assert "| broken | 2 | ValueError (2) |" in text
