import os
from pathlib import Path

import numpy as np
import pandas as pd
from sumbench import BenchPlan, build, col, load_table, save_table, update


def ranks(p):
    return np.argsort(np.argsort(p)).astype(float)


def scaled(p, factor=1.0):
    return np.minimum(np.asarray(p) * factor, 1.0)


def flaky(p, fail=True):
    if fail:
        raise RuntimeError("not ready yet")
    return np.asarray(p)


def main():
    out_dir = Path(
        os.getenv("SUMBENCH_OUT_DIR", Path(__file__).resolve().parent / "out")
    )
    out_dir.mkdir(parents=True, exist_ok=True)

    rng = np.random.default_rng(1)
    df = pd.DataFrame({"pval": rng.uniform(size=200)})

    plan = BenchPlan(df)
    plan.add(
        "raw", scaled, {"p": col("pval")}, post={"value": np.asarray, "rank": ranks}
    )
    plan.add(
        "x10", scaled, {"p": col("pval"), "factor": 10.0}, post={"value": np.asarray}
    )
    plan.add("flaky", flaky, {"p": col("pval")}, post={"value": np.asarray})

    table = build(plan)
    path = out_dir / "table.pkl"
    save_table(table, str(path))
    print("failed after first build:", table.failed_methods())

    table = load_table(str(path))
    fixed = table.plan.copy()
    fixed.modify("flaky", params={"fail": False})
    table = update(table, fixed)

    for session in table.sessions:
        print(f"session {session.index}: ran {session.methods}")
    print(table.method_info[["func", "session_idx", "fingerprint"]])
    print("failed after update:", table.failed_methods())


if __name__ == "__main__":
    main()
