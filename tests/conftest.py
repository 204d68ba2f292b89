from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def pvalues() -> pd.DataFrame:
    """50 p-values: the first 10 are true signals, the rest uniform noise."""
    rng = np.random.default_rng(0)
    pval = np.concatenate(
        [rng.uniform(0.0, 1e-4, size=10), rng.uniform(0.0, 1.0, size=40)]
    )
    truth = np.concatenate([np.ones(10), np.zeros(40)])
    weight = rng.normal(size=50)
    return pd.DataFrame({"pval": pval, "truth": truth, "weight": weight})
