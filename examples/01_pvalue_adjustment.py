import logging
import os
from pathlib import Path

import numpy as np
import pandas as pd
from sumbench import (
    BenchPlan,
    build,
    col,
    evaluate,
    register_default_metric,
    render_error_summary_md,
    roc_frame,
    summarize_errors,
)


def make_df(n_signal=100, n_null=900, seed=0):
    rng = np.random.default_rng(seed)
    pval = np.concatenate(
        [rng.beta(0.2, 8.0, size=n_signal), rng.uniform(size=n_null)]
    )
    truth = np.concatenate([np.ones(n_signal), np.zeros(n_null)])
    return pd.DataFrame({"pval": pval, "truth": truth})


def adjust(p, method="bonferroni"):
    p = np.asarray(p, dtype=float)
    n = len(p)
    if method == "bonferroni":
        return np.minimum(p * n, 1.0)
    if method == "bh":
        order = np.argsort(p)
        ranked = p[order] * n / np.arange(1, n + 1)
        ranked = np.minimum.accumulate(ranked[::-1])[::-1]
        out = np.empty(n)
        out[order] = np.minimum(ranked, 1.0)
        return out
    raise ValueError(f"unknown adjustment '{method}'")


def main():
    logging.basicConfig(
        level=logging.INFO, format="%(levelname)s %(name)s: %(message)s"
    )
    out_dir = Path(
        os.getenv("SUMBENCH_OUT_DIR", Path(__file__).resolve().parent / "out")
    )
    out_dir.mkdir(parents=True, exist_ok=True)

    plan = BenchPlan(make_df())
    plan.add("bonf", adjust, {"p": col("pval"), "method": "bonferroni"})
    plan.expand("bonf", param="method", values=["bonferroni", "bh"])
    # Misspelled column: recorded as a failure, the other methods still run.
    plan.add("typo", adjust, {"p": col("pvalue")})
    for method in plan.list():
        plan.modify(method.id, post={"qvalue": np.asarray})
    print(plan.describe())

    table = build(plan, truth_cols={"qvalue": "truth"}, progress=True)
    print(table)
    print(table.outcomes())

    register_default_metric(table, "qvalue", ["rejections", "TPR", "FDR"])
    print(evaluate(table, {"alpha": [0.01, 0.05, 0.1]}))

    roc = roc_frame(table, "qvalue")
    roc.to_csv(out_dir / "roc.csv", index=False)

    report = render_error_summary_md(summarize_errors(table).to_dict())
    (out_dir / "errors.md").write_text(report, encoding="utf-8")
    print(report)


if __name__ == "__main__":
    main()
