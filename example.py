import numpy as np
import pandas as pd
from sumbench import BenchPlan, build, col, evaluate, register_default_metric

rng = np.random.default_rng(0)
df = pd.DataFrame(
    {
        "pval": np.concatenate([rng.uniform(0, 1e-3, 20), rng.uniform(size=180)]),
        "truth": np.concatenate([np.ones(20), np.zeros(180)]),
    }
)


def bonferroni(p):
    return np.minimum(np.asarray(p) * len(p), 1.0)


def holm(p):
    p = np.asarray(p)
    order = np.argsort(p)
    steps = p[order] * (len(p) - np.arange(len(p)))
    out = np.empty(len(p))
    out[order] = np.minimum(np.maximum.accumulate(steps), 1.0)
    return out


plan = BenchPlan(df)
plan.add("bonferroni", bonferroni, {"p": col("pval")}, post={"qvalue": np.asarray})
plan.add("holm", holm, {"p": col("pval")}, post={"qvalue": np.asarray})
plan.add("unadjusted", np.asarray, {"a": col("pval")}, post={"qvalue": np.asarray})

table = build(plan, truth_cols={"qvalue": "truth"})
print(table)

register_default_metric(table, "qvalue", ["TPR", "FDR"])
print(evaluate(table, {"alpha": [0.05, 0.1]}, tidy=True))
