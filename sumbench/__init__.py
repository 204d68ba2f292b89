from sumbench.curves import overlap_indicators, roc_frame
from sumbench.defaults import defaults
from sumbench.engine import BuildOptions, build, execute, update
from sumbench.errors import (
    BenchmarkError,
    ConfigurationError,
    DuplicateIdError,
    MethodExecutionError,
    MethodTimeoutError,
    NotFoundError,
    UnknownAssayError,
    UnknownLayerError,
    render_error_summary_md,
    summarize_errors,
)
from sumbench.io import load_plan, load_table, save_plan, save_table
from sumbench.methods import MethodDescriptor
from sumbench.metrics import (
    available_metrics,
    evaluate,
    register_default_metric,
    register_metric,
    tidy_metrics,
)
from sumbench.params import col, deferred
from sumbench.plan import BenchPlan
from sumbench.session import ErrorDetail, Origin, Outcome, OutcomeStatus, SessionLog
from sumbench.table import ResultTable

__version__ = "0.1.0"

__all__ = [
    "BenchPlan",
    "MethodDescriptor",
    "ResultTable",
    "SessionLog",
    "Outcome",
    "OutcomeStatus",
    "ErrorDetail",
    "Origin",
    "BuildOptions",
    "execute",
    "build",
    "update",
    "col",
    "deferred",
    "register_metric",
    "register_default_metric",
    "available_metrics",
    "evaluate",
    "tidy_metrics",
    "overlap_indicators",
    "roc_frame",
    "save_plan",
    "load_plan",
    "save_table",
    "load_table",
    "summarize_errors",
    "render_error_summary_md",
    "defaults",
    "BenchmarkError",
    "DuplicateIdError",
    "NotFoundError",
    "UnknownLayerError",
    "UnknownAssayError",
    "ConfigurationError",
    "MethodExecutionError",
    "MethodTimeoutError",
]
