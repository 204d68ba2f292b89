"""Benchmark execution engine.

``execute`` runs every method of a :class:`~sumbench.plan.BenchPlan` against
the plan's data, applies each method's post-steps and assembles a
:class:`~sumbench.table.ResultTable` plus the :class:`~sumbench.session.SessionLog`
describing the pass.

Failures are isolated per (method, post-step) pair: a failing main call marks
every post-step of that method, a failing post-step marks only its own cell.
With ``catch_errors=False`` the first failure aborts the whole call and no
table is produced.

Timeouts run the invocation in a helper thread and stop waiting once the
budget is spent. Python cannot interrupt a running thread, so a timed-out
call may keep running in the background; its result is discarded.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from sumbench.defaults import BUILD_SCHEMA, coerce_options, defaults
from sumbench.errors import (
    ConfigurationError,
    MethodExecutionError,
    MethodTimeoutError,
)
from sumbench.methods import MethodDescriptor, describe_callable, summarize_params
from sumbench.params import resolve_params
from sumbench.plan import BenchPlan
from sumbench.provenance import environment_info, package_provenance
from sumbench.session import ErrorDetail, Origin, Outcome, SessionLog, utc_timestamp
from sumbench.table import ResultTable

logger = logging.getLogger(__name__)

_TABLE_OPTIONS = ("truth_cols", "feature_cols", "existing")


@dataclass(frozen=True)
class BuildOptions:
    parallel: bool = False
    n_workers: int = 4
    timeout: float | None = None
    catch_errors: bool = True
    progress: bool = False
    sort_ids: bool = False
    keep_data: bool = True
    truth_cols: Mapping[str, str] | None = None
    feature_cols: Sequence[str] | None = None
    existing: ResultTable | None = None

    @classmethod
    def from_defaults(cls, **overrides: Any) -> "BuildOptions":
        table_opts = {k: overrides.pop(k) for k in _TABLE_OPTIONS if k in overrides}
        params = {**defaults.build(), **coerce_options(overrides, BUILD_SCHEMA)}
        return cls(**params, **table_opts)

    def session_parameters(self) -> dict:
        return {
            "parallel": self.parallel,
            "n_workers": self.n_workers,
            "timeout": self.timeout,
            "catch_errors": self.catch_errors,
            "incremental": self.existing is not None,
        }


@dataclass
class _MethodRun:
    method_id: str
    values: dict[str, np.ndarray] = field(default_factory=dict)
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    elapsed_ms: float = 0.0


# ----------------------------
# Invocation
# ----------------------------


def _call_with_timeout(
    fn: Callable[..., Any],
    args: tuple,
    kwargs: Mapping[str, Any],
    timeout: float | None,
    *,
    method_id: str,
    origin: Origin,
    post_step: str | None = None,
) -> Any:
    if timeout is None:
        return fn(*args, **kwargs)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sumbench-call")
    try:
        future = executor.submit(fn, *args, **kwargs)
        done, _ = wait([future], timeout=timeout)
        if not done:
            future.cancel()
            raise MethodTimeoutError(
                method_id,
                f"timeout: exceeded {timeout:g}s",
                origin=origin.value,
                post_step=post_step,
                error_type="MethodTimeoutError",
            )
        return future.result()
    finally:
        executor.shutdown(wait=False)


def _as_column(value: Any, n_rows: int) -> np.ndarray:
    if isinstance(value, (pd.Series, pd.Index)):
        arr = value.to_numpy()
    elif isinstance(value, pd.DataFrame) and value.shape[1] == 1:
        arr = value.iloc[:, 0].to_numpy()
    else:
        arr = np.asarray(value)
    if arr.ndim == 2 and arr.shape[1] == 1:
        arr = arr[:, 0]
    if arr.ndim != 1 or arr.shape[0] != n_rows:
        raise ValueError(
            f"expected a vector of {n_rows} values, got shape {tuple(arr.shape)}"
        )
    return arr


def _error_detail(
    exc: BaseException, origin: Origin, post_step: str | None
) -> ErrorDetail:
    if isinstance(exc, MethodExecutionError):
        return ErrorDetail(
            message=exc.message,
            origin=origin,
            post_step=post_step,
            error_type=exc.error_type or type(exc).__name__,
        )
    return ErrorDetail(
        message=str(exc),
        origin=origin,
        post_step=post_step,
        error_type=type(exc).__name__,
    )


def _raise_uncaught(method_id: str, exc: Exception, detail: ErrorDetail) -> None:
    if isinstance(exc, MethodExecutionError):
        raise exc
    raise MethodExecutionError(
        method_id,
        detail.message,
        origin=detail.origin.value,
        post_step=detail.post_step,
        error_type=detail.error_type,
    ) from exc


def _run_method(
    method: MethodDescriptor,
    data: pd.DataFrame,
    *,
    timeout: float | None,
    catch_errors: bool,
) -> _MethodRun:
    run = _MethodRun(method.id)
    steps = method.post_steps
    n_rows = len(data)
    start = time.perf_counter()

    try:
        kwargs = resolve_params(method.params, data)
        raw = _call_with_timeout(
            method.func,
            (),
            kwargs,
            timeout,
            method_id=method.id,
            origin=Origin.MAIN,
        )
    except Exception as exc:
        detail = _error_detail(exc, Origin.MAIN, None)
        if not catch_errors:
            _raise_uncaught(method.id, exc, detail)
        for name in steps:
            run.outcomes[name] = Outcome.failure(detail)
        run.elapsed_ms = (time.perf_counter() - start) * 1000.0
        return run

    for name, fn in steps.items():
        try:
            value = _call_with_timeout(
                fn,
                (raw,),
                {},
                timeout,
                method_id=method.id,
                origin=Origin.POST,
                post_step=name,
            )
            run.values[name] = _as_column(value, n_rows)
            run.outcomes[name] = Outcome.success()
        except Exception as exc:
            detail = _error_detail(exc, Origin.POST, name)
            if not catch_errors:
                _raise_uncaught(method.id, exc, detail)
            run.outcomes[name] = Outcome.failure(detail)

    run.elapsed_ms = (time.perf_counter() - start) * 1000.0
    return run


def _report(run: _MethodRun, bar) -> None:
    errors = [o.error for o in run.outcomes.values() if o.is_error]
    seen: set[int] = set()
    for error in errors:
        if id(error) in seen:
            continue
        seen.add(id(error))
        where = run.method_id
        if error.post_step is not None:
            where = f"{run.method_id}/{error.post_step}"
        message = (
            f"[{where}] {error.origin.value} stage failed: "
            f"{error.error_type}: {error.message}"
        )
        if bar is not None:
            tqdm.write(message)
        else:
            logger.warning(message)
    logger.info(
        "[%s] done in %.3f ms (ok=%s err=%s)",
        run.method_id,
        run.elapsed_ms,
        sum(o.ok for o in run.outcomes.values()),
        len(errors),
    )


def _run_all(
    methods: list[MethodDescriptor], data: pd.DataFrame, options: BuildOptions
) -> dict[str, _MethodRun]:
    results: dict[str, _MethodRun] = {}
    if not methods:
        return results
    bar = (
        tqdm(total=len(methods), desc="sumbench", leave=False)
        if options.progress
        else None
    )
    try:
        if not options.parallel or len(methods) == 1:
            for method in methods:
                logger.info("[%s] start", method.id)
                run = _run_method(
                    method,
                    data,
                    timeout=options.timeout,
                    catch_errors=options.catch_errors,
                )
                results[method.id] = run
                _report(run, bar)
                if bar is not None:
                    bar.update(1)
            return results

        executor = ThreadPoolExecutor(
            max_workers=min(options.n_workers, len(methods)),
            thread_name_prefix="sumbench-worker",
        )
        futures = {
            executor.submit(
                _run_method,
                method,
                data,
                timeout=options.timeout,
                catch_errors=options.catch_errors,
            ): method.id
            for method in methods
        }
        try:
            for future in as_completed(futures):
                run = future.result()
                results[futures[future]] = run
                _report(run, bar)
                if bar is not None:
                    bar.update(1)
        except BaseException:
            for remaining in futures:
                if not remaining.done():
                    remaining.cancel()
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return results
    finally:
        if bar is not None:
            bar.close()


# ----------------------------
# Table assembly
# ----------------------------


def _layer_names(methods: list[MethodDescriptor]) -> list[str]:
    names: list[str] = []
    for method in methods:
        for name in method.post_names:
            if name not in names:
                names.append(name)
    return names


def _provenance_fields(
    method: MethodDescriptor, provenance: Callable[[Any], Mapping[str, Any]] | None
) -> dict:
    out: dict[str, Any] = {"pkg_name": None, "pkg_vers": None}
    if provenance is None:
        return out
    try:
        found = provenance(method.func) or {}
        out.update(dict(found))
    except Exception as exc:
        logger.debug("Provenance lookup failed for '%s': %s", method.id, exc)
    return out


def _method_info_row(
    method: MethodDescriptor,
    session_idx: int,
    provenance: Callable[[Any], Mapping[str, Any]] | None,
) -> dict:
    row: dict[str, Any] = {
        "method": method.id,
        "func": describe_callable(method.func),
        "post": ",".join(method.post_names),
    }
    row.update(summarize_params(method))
    row.update(_provenance_fields(method, provenance))
    row.update({f"meta.{k}": v for k, v in method.meta.items()})
    row["session_idx"] = int(session_idx)
    row["fingerprint"] = method.fingerprint()
    return row


def _select_columns(data: pd.DataFrame, columns: Sequence[str], what: str) -> None:
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise ConfigurationError(
            f"{what} column(s) {missing} not found in data. "
            f"Available: {list(data.columns)}"
        )


def _plan_to_run(
    plan: BenchPlan, existing: ResultTable | None
) -> tuple[list[MethodDescriptor], list[MethodDescriptor]]:
    methods = plan.list()
    if existing is None:
        return methods, []
    info = existing.method_info
    latest = existing.latest_outcomes()
    to_run: list[MethodDescriptor] = []
    reuse: list[MethodDescriptor] = []
    for method in methods:
        if method.id not in info.index:
            reason = "new"
        elif info.at[method.id, "fingerprint"] != method.fingerprint():
            reason = "changed"
        elif any(o.is_error for o in latest.get(method.id, {}).values()):
            reason = "failed previously"
        elif any(not existing.has_layer(name) for name in method.post_names):
            reason = "layer missing"
        else:
            reuse.append(method)
            logger.info("[%s] unchanged, reusing results", method.id)
            continue
        logger.info("[%s] scheduled for rerun (%s)", method.id, reason)
        to_run.append(method)
    return to_run, reuse


def execute(
    plan: BenchPlan,
    options: BuildOptions | None = None,
    *,
    environment: Callable[[], Mapping[str, Any]] | None = environment_info,
    provenance: Callable[[Any], Mapping[str, Any]] | None = package_provenance,
    clock: Callable[[], str] = utc_timestamp,
) -> tuple[ResultTable, SessionLog]:
    """Run ``plan`` and return the result table and the new session log."""
    options = options or BuildOptions.from_defaults()
    data = plan.data
    if data is None:
        raise ConfigurationError("Cannot execute a plan without data; call set_data()")
    if len(plan) == 0:
        raise ConfigurationError("Cannot execute an empty plan")

    existing = options.existing
    if existing is not None and existing.n_rows != len(data):
        raise ConfigurationError(
            f"Data has {len(data)} rows but the existing table has {existing.n_rows}"
        )
    truth_cols = dict(options.truth_cols or {})
    feature_cols = list(options.feature_cols or [])
    _select_columns(data, list(truth_cols.values()), "Truth")
    _select_columns(data, feature_cols, "Feature")

    to_run, reuse = _plan_to_run(plan, existing)
    logger.info(
        "Executing %s of %s method(s): parallel=%s timeout=%s catch_errors=%s",
        len(to_run),
        len(plan),
        options.parallel,
        options.timeout,
        options.catch_errors,
    )
    runs = _run_all(to_run, data, options)

    # Everything below runs on the calling thread only.
    methods = plan.list()
    if options.sort_ids:
        methods = sorted(methods, key=lambda m: m.id)
    order = [m.id for m in methods]
    names = _layer_names(methods)
    session_idx = len(existing.sessions) if existing is not None else 0
    reused_ids = {m.id for m in reuse}

    layers: dict[str, pd.DataFrame] = {}
    for name in names:
        columns: dict[str, Any] = {}
        for method in methods:
            if method.id in reused_ids and name in method.post_names:
                columns[method.id] = existing.layer(name)[method.id].to_numpy()
                continue
            run = runs.get(method.id)
            if run is not None and name in run.values:
                columns[method.id] = run.values[name]
            else:
                columns[method.id] = np.full(len(data), np.nan)
        layers[name] = pd.DataFrame(columns, index=data.index, columns=order)

    results: dict[str, dict[str, Outcome]] = {}
    for method in methods:
        run = runs.get(method.id)
        if run is None:
            continue
        steps = dict(run.outcomes)
        for name in names:
            if name not in steps:
                steps[name] = Outcome.missing()
        results[method.id] = {name: steps[name] for name in names}

    env = environment() if environment is not None else {}
    session = SessionLog(
        index=session_idx,
        timestamp=clock(),
        environment=env,
        parameters={**options.session_parameters(), "methods_run": list(results)},
        results=results,
    )

    rows = []
    for method in methods:
        if method.id in reused_ids:
            old = existing.method_info.loc[method.id].to_dict()
            row = _method_info_row(method, int(old.get("session_idx", 0)), None)
            for key in ("pkg_name", "pkg_vers"):
                row[key] = old.get(key)
        else:
            row = _method_info_row(method, session_idx, provenance)
        rows.append(row)
    method_info = pd.DataFrame(rows).set_index("method")

    if truth_cols:
        ground_truth = pd.DataFrame(
            {layer: data[column].to_numpy() for layer, column in truth_cols.items()},
            index=data.index,
        )
    elif existing is not None:
        keep = [c for c in existing.ground_truths.columns if c in names]
        ground_truth = existing.ground_truths[keep].copy()
        ground_truth.index = data.index
    else:
        ground_truth = pd.DataFrame(index=data.index)

    if feature_cols:
        features = data[feature_cols].copy()
    elif existing is not None and existing.features is not None:
        features = existing.features
    else:
        features = None

    sessions = (existing.sessions if existing is not None else []) + [session]
    table = ResultTable(
        layers,
        method_info,
        row_index=data.index,
        ground_truth=ground_truth,
        features=features,
        sessions=sessions,
        plan=plan.copy() if options.keep_data else plan.without_data(),
    )
    if existing is not None:
        for entry in existing.metrics.entries():
            if table.has_layer(entry.layer):
                table.metrics.add(entry)
    logger.info(
        "Session %s recorded: %s method(s) run, %s failed",
        session_idx,
        len(results),
        len(session.failed_methods()),
    )
    return table, session


def build(plan: BenchPlan, **options: Any) -> ResultTable:
    """Run every method of ``plan``; options override the packaged defaults."""
    table, _ = execute(plan, BuildOptions.from_defaults(**options))
    return table


def update(
    table: ResultTable, plan: BenchPlan | None = None, **options: Any
) -> ResultTable:
    """Rerun only new, changed or previously failed methods.

    ``plan`` defaults to the plan stored in ``table``; it must carry data
    (build with ``keep_data=True`` or pass a plan with data attached).
    """
    plan = plan if plan is not None else table.plan
    if plan is None:
        raise ConfigurationError("No plan given and none stored in the table")
    options["existing"] = table
    result, _ = execute(plan, BuildOptions.from_defaults(**options))
    return result


__all__ = ["BuildOptions", "execute", "build", "update"]
