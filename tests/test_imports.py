from __future__ import annotations

from pathlib import Path

import sumbench
from sumbench import BenchPlan, ResultTable
from sumbench.plan import BenchPlan as BenchPlan_Canonical
from sumbench.table import ResultTable as ResultTable_Canonical


def test_imports_resolve_to_local_repo() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sumbench_path = Path(sumbench.__file__).resolve()
    assert sumbench_path.is_relative_to(
        repo_root
    ), f"sumbench imported from unexpected location: {sumbench_path}"


def test_public_api_matches_canonical_paths() -> None:
    assert BenchPlan is BenchPlan_Canonical
    assert ResultTable is ResultTable_Canonical
    missing = [name for name in sumbench.__all__ if not hasattr(sumbench, name)]
    assert missing == []
    assert sumbench.__version__ == "0.1.0"
