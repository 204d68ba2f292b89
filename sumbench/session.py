from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

import pandas as pd


class Origin(str, Enum):
    MAIN = "main"
    POST = "post"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    MISSING = "missing"
    ERROR = "error"


@dataclass(frozen=True)
class ErrorDetail:
    message: str
    origin: Origin
    post_step: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "origin": self.origin.value,
            "post_step": self.post_step,
            "error_type": self.error_type,
        }


@dataclass(frozen=True)
class Outcome:
    """Result of one (method, post-step) pair within a session.

    ``MISSING`` means the post-step is declared by another method only;
    it is a structural gap, not a failure.
    """

    status: OutcomeStatus
    error: ErrorDetail | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(OutcomeStatus.SUCCESS)

    @classmethod
    def missing(cls) -> "Outcome":
        return cls(OutcomeStatus.MISSING)

    @classmethod
    def failure(cls, error: ErrorDetail) -> "Outcome":
        return cls(OutcomeStatus.ERROR, error)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def is_missing(self) -> bool:
        return self.status is OutcomeStatus.MISSING

    @property
    def is_error(self) -> bool:
        return self.status is OutcomeStatus.ERROR


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class SessionLog:
    """Record of one execution pass.

    ``results`` only holds the methods run in this session; methods carried
    over from an earlier session are absent rather than ``MISSING``.
    """

    index: int
    timestamp: str
    environment: Mapping[str, Any] = field(default_factory=dict)
    parameters: Mapping[str, Any] = field(default_factory=dict)
    results: Mapping[str, Mapping[str, Outcome]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = {
            method_id: MappingProxyType(dict(steps))
            for method_id, steps in self.results.items()
        }
        object.__setattr__(self, "results", MappingProxyType(frozen))
        for name in ("environment", "parameters"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @property
    def methods(self) -> list[str]:
        return list(self.results)

    def outcome(self, method_id: str, post_step: str) -> Outcome | None:
        return self.results.get(method_id, {}).get(post_step)

    def failed_methods(self) -> list[str]:
        return [
            method_id
            for method_id, steps in self.results.items()
            if any(outcome.is_error for outcome in steps.values())
        ]

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for method_id, steps in self.results.items():
            for post_step, outcome in steps.items():
                error = outcome.error
                rows.append(
                    {
                        "session": self.index,
                        "method": method_id,
                        "post_step": post_step,
                        "status": outcome.status.value,
                        "origin": error.origin.value if error else None,
                        "error_type": error.error_type if error else None,
                        "message": error.message if error else None,
                    }
                )
        columns = [
            "session",
            "method",
            "post_step",
            "status",
            "origin",
            "error_type",
            "message",
        ]
        return pd.DataFrame(rows, columns=columns)

    def to_dict(self) -> dict:
        return {
            "index": int(self.index),
            "timestamp": self.timestamp,
            "environment": dict(self.environment),
            "parameters": dict(self.parameters),
            "results": {
                method_id: {
                    post_step: {
                        "status": outcome.status.value,
                        "error": outcome.error.to_dict() if outcome.error else None,
                    }
                    for post_step, outcome in steps.items()
                }
                for method_id, steps in self.results.items()
            },
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionLog":
        results: dict[str, dict[str, Outcome]] = {}
        for method_id, steps in (payload.get("results") or {}).items():
            results[method_id] = {}
            for post_step, raw in steps.items():
                error = raw.get("error")
                detail = None
                if error:
                    detail = ErrorDetail(
                        message=error["message"],
                        origin=Origin(error["origin"]),
                        post_step=error.get("post_step"),
                        error_type=error.get("error_type"),
                    )
                results[method_id][post_step] = Outcome(
                    OutcomeStatus(raw["status"]), detail
                )
        return cls(
            index=int(payload["index"]),
            timestamp=payload["timestamp"],
            environment=payload.get("environment") or {},
            parameters=payload.get("parameters") or {},
            results=results,
        )

    # Mapping proxies do not pickle; round-trip through plain dicts.
    def __getstate__(self) -> dict:
        return self.to_dict()

    def __setstate__(self, state: dict) -> None:
        restored = SessionLog.from_dict(state)
        for name in ("index", "timestamp", "environment", "parameters", "results"):
            object.__setattr__(self, name, getattr(restored, name))


def sessions_frame(sessions: list[SessionLog]) -> pd.DataFrame:
    frames = [session.to_frame() for session in sessions]
    frames = [frame for frame in frames if not frame.empty]
    if not frames:
        return SessionLog(index=0, timestamp="").to_frame()
    return pd.concat(frames, ignore_index=True)


__all__ = [
    "Origin",
    "OutcomeStatus",
    "ErrorDetail",
    "Outcome",
    "SessionLog",
    "utc_timestamp",
    "sessions_frame",
]
