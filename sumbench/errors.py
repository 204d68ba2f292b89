from __future__ import annotations

import re
from collections import Counter, defaultdict
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from sumbench.table import ResultTable


class BenchmarkError(Exception):
    """Base class for every error raised by sumbench."""


class DuplicateIdError(BenchmarkError, ValueError):
    pass


class NotFoundError(BenchmarkError, KeyError):
    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""


class UnknownLayerError(NotFoundError):
    pass


class UnknownAssayError(UnknownLayerError):
    """A metric references a layer that is absent from the result table."""


class ConfigurationError(BenchmarkError, ValueError):
    pass


class MethodExecutionError(BenchmarkError, RuntimeError):
    """Failure raised by a method call or one of its post-processing steps."""

    def __init__(
        self,
        method_id: str,
        message: str,
        *,
        origin: str = "main",
        post_step: str | None = None,
        error_type: str | None = None,
    ) -> None:
        self.method_id = method_id
        self.message = message
        self.origin = origin
        self.post_step = post_step
        self.error_type = error_type
        where = f"[{method_id}]"
        if post_step is not None:
            where = f"[{method_id}/{post_step}]"
        prefix = f"{error_type}: " if error_type else ""
        super().__init__(f"{where} {origin} stage failed: {prefix}{message}")


class MethodTimeoutError(MethodExecutionError, TimeoutError):
    pass


# ----------------------------
# Error classification
# ----------------------------


def normalize_error_signature(error_type: str | None, error_msg: str | None) -> str:
    if error_type:
        base = f"{error_type}: {error_msg or ''}"
    else:
        base = error_msg or ""
    text = base.strip().lower()
    if not text:
        return "unknown"

    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"0x[0-9a-f]+", "<hex>", text)
    # Quoted names (columns, parameters) vary between methods.
    text = re.sub(r"['\"][^'\"]+['\"]", "<name>", text)
    text = re.sub(r"\d+(\.\d+)?\s*s\b", "<sec>", text)
    text = re.sub(r"\d{2,}", "<num>", text)

    text = re.sub(r"\s+", " ", text).strip()
    return text or "unknown"


def is_timeout_error(error_type: str | None, error_msg: str | None) -> bool:
    if error_type in {"MethodTimeoutError", "TimeoutError"}:
        return True
    text = (error_msg or "").lower()
    return "timed out" in text or "timeout" in text


def classify_error(error_type: str | None, error_msg: str | None) -> dict:
    return {
        "is_timeout": bool(is_timeout_error(error_type, error_msg)),
        "error_signature": normalize_error_signature(error_type, error_msg),
    }


def _empty_bucket() -> dict:
    return {
        "error_type": Counter(),
        "error_signature": Counter(),
        "origin": Counter(),
        "is_timeout": Counter(),
        "total": 0,
    }


class ErrorSummary:
    def __init__(self, *, max_examples: int = 3) -> None:
        self.max_examples = int(max_examples)
        self.counts = {
            "error_type": Counter(),
            "error_signature": Counter(),
            "origin": Counter(),
            "is_timeout": Counter(),
        }
        self.by_method: dict[str, dict] = defaultdict(_empty_bucket)
        self.by_post_step: dict[str, dict] = defaultdict(_empty_bucket)
        self.examples: dict[str, list[str]] = defaultdict(list)

    def add(
        self,
        *,
        method: str | None,
        post_step: str | None,
        error_type: str | None,
        error_msg: str | None,
        origin: str | None,
    ) -> None:
        info = classify_error(error_type, error_msg)
        err_type = error_type or "UnknownError"
        err_sig = info["error_signature"]
        err_origin = origin or "unknown"
        timeout_key = "timeout" if info["is_timeout"] else "other"

        self.counts["error_type"][err_type] += 1
        self.counts["error_signature"][err_sig] += 1
        self.counts["origin"][err_origin] += 1
        self.counts["is_timeout"][timeout_key] += 1

        for bucket in (
            self.by_method[method or "unknown"],
            self.by_post_step[post_step or "unknown"],
        ):
            bucket["total"] = int(bucket["total"]) + 1
            bucket["error_type"][err_type] += 1
            bucket["error_signature"][err_sig] += 1
            bucket["origin"][err_origin] += 1
            bucket["is_timeout"][timeout_key] += 1

        if error_msg:
            examples = self.examples[err_sig]
            if len(examples) < self.max_examples and error_msg not in examples:
                examples.append(str(error_msg))

    @property
    def total(self) -> int:
        return int(sum(self.counts["error_type"].values()))

    @staticmethod
    def _counter_payload(counter: Counter) -> dict:
        return dict(counter.most_common())

    def _bucket_payload(self, bucket: dict) -> dict:
        return {
            "total": int(bucket.get("total", 0)),
            "error_type": self._counter_payload(bucket["error_type"]),
            "error_signature": self._counter_payload(bucket["error_signature"]),
            "origin": self._counter_payload(bucket["origin"]),
            "is_timeout": self._counter_payload(bucket["is_timeout"]),
        }

    def to_dict(self) -> dict:
        return {
            "counts": {
                key: self._counter_payload(counter)
                for key, counter in self.counts.items()
            },
            "by_method": {
                key: self._bucket_payload(bucket)
                for key, bucket in sorted(self.by_method.items())
            },
            "by_post_step": {
                key: self._bucket_payload(bucket)
                for key, bucket in sorted(self.by_post_step.items())
            },
            "examples": {key: list(values) for key, values in self.examples.items()},
        }


def summarize_errors(table: "ResultTable", *, max_examples: int = 3) -> ErrorSummary:
    """Collect every recorded failure across all sessions of ``table``."""
    summary = ErrorSummary(max_examples=max_examples)
    for session in table.sessions:
        for method_id, steps in session.results.items():
            for post_step, outcome in steps.items():
                if outcome.error is None:
                    continue
                summary.add(
                    method=method_id,
                    post_step=post_step,
                    error_type=outcome.error.error_type,
                    error_msg=outcome.error.message,
                    origin=outcome.error.origin.value,
                )
    return summary


def _render_md_table(headers: list[str], rows: Iterable[Iterable[str]]) -> str:
    header_line = "| " + " | ".join(headers) + " |"
    divider = "| " + " | ".join(["---"] * len(headers)) + " |"
    body_lines = ["| " + " | ".join(row) + " |" for row in rows]
    return "\n".join([header_line, divider, *body_lines])


def render_error_summary_md(summary: dict, *, top_k: int = 10) -> str:
    lines: list[str] = ["# Error Summary", ""]
    counts = summary.get("counts", {}) if isinstance(summary, dict) else {}

    def _add_count_section(title: str, key: str) -> None:
        data = counts.get(key, {}) if isinstance(counts, dict) else {}
        if not isinstance(data, dict) or not data:
            return
        items = list(data.items())[:top_k]
        lines.append(f"## {title}")
        lines.append("")
        lines.append(
            _render_md_table(
                [key, "count"],
                [[str(label), str(count)] for label, count in items],
            )
        )
        lines.append("")

    _add_count_section("Counts by Error Type", "error_type")
    _add_count_section("Counts by Error Signature", "error_signature")
    _add_count_section("Counts by Origin", "origin")
    _add_count_section("Timeout vs Other", "is_timeout")

    def _add_bucket_section(title: str, bucket_key: str) -> None:
        bucket = summary.get(bucket_key, {}) if isinstance(summary, dict) else {}
        if not isinstance(bucket, dict) or not bucket:
            return
        rows = []
        for name, payload in list(bucket.items())[:top_k]:
            if not isinstance(payload, dict):
                continue
            top_types = payload.get("error_type", {})
            if isinstance(top_types, dict) and top_types:
                label, count = next(iter(top_types.items()))
                top_type_label = f"{label} ({count})"
            else:
                top_type_label = "-"
            rows.append([str(name), str(payload.get("total", 0)), top_type_label])
        if rows:
            lines.append(f"## {title}")
            lines.append("")
            lines.append(_render_md_table(["name", "total", "top_error_type"], rows))
            lines.append("")

    _add_bucket_section("Errors by Method", "by_method")
    _add_bucket_section("Errors by Post-step", "by_post_step")

    examples = summary.get("examples", {}) if isinstance(summary, dict) else {}
    if isinstance(examples, dict) and examples:
        lines.append("## Examples")
        lines.append("")
        for signature, msgs in list(examples.items())[:top_k]:
            lines.append(f"- {signature}")
            if isinstance(msgs, list):
                for msg in msgs:
                    lines.append(f"  - {msg}")
        lines.append("")

    return "\n".join(lines).strip() + "\n"


__all__ = [
    "BenchmarkError",
    "DuplicateIdError",
    "NotFoundError",
    "UnknownLayerError",
    "UnknownAssayError",
    "ConfigurationError",
    "MethodExecutionError",
    "MethodTimeoutError",
    "normalize_error_signature",
    "is_timeout_error",
    "classify_error",
    "ErrorSummary",
    "summarize_errors",
    "render_error_summary_md",
]
