from __future__ import annotations

import datetime as dt
import threading
import time
import typing as t
from dataclasses import dataclass, field
from enum import Enum

from tracepipe.errors import Cancelled


class Stage(str, Enum):
    INGESTED = "Ingested"
    AUTHORIZED = "Authorized"
    VALIDATED = "Validated"
    TRANSFORMED = "Transformed"
    LOADED = "Loaded"
    ROUTED = "Routed"


STAGE_ORDER: t.Tuple[Stage, ...] = (
    Stage.INGESTED,
    Stage.AUTHORIZED,
    Stage.VALIDATED,
    Stage.TRANSFORMED,
    Stage.LOADED,
    Stage.ROUTED,
)


def previous_stage(stage: Stage) -> t.Optional[Stage]:
    idx = STAGE_ORDER.index(stage)
    return STAGE_ORDER[idx - 1] if idx > 0 else None


class Outcome(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


# ---------- Documents ----------

@dataclass(frozen=True)
class Document:
    name: str
    location: str
    content: str

    @property
    def ref(self) -> str:
        return f"{self.location.rstrip('/')}/{self.name}"


@dataclass(frozen=True)
class DocumentMetadata:
    source_id: str
    destination_id: str
    primary_product_id: t.Optional[str]
    object_event_count: int
    aggregation_event_count: int

    def event_counts(self) -> t.Dict[str, int]:
        return {
            "object_events": self.object_event_count,
            "aggregation_events": self.aggregation_event_count,
        }


@dataclass(frozen=True)
class LoadSummary:
    total: int
    duplicates: int
    indexed: int
    failed: int

    def as_dict(self) -> t.Dict[str, int]:
        return {
            "total": self.total,
            "duplicates": self.duplicates,
            "indexed": self.indexed,
            "failed": self.failed,
        }


@dataclass
class PipelineRun:
    """State carried through one run of one document. Never shared across runs."""

    run_id: str
    document: Document
    body: t.Optional[dict] = None
    metadata: t.Optional[DocumentMetadata] = None
    normalized: t.Optional[dict] = None
    load_summary: t.Optional[LoadSummary] = None


@dataclass(frozen=True)
class RunOutcome:
    run_id: str
    document_ref: str
    stage: Stage
    outcome: Outcome
    error_code: t.Optional[str] = None
    error_detail: t.Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    def as_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "document": self.document_ref,
            "stage": self.stage.value,
            "outcome": self.outcome.value,
            "error_code": self.error_code,
            "error_detail": self.error_detail,
        }


# ---------- Read-side views of stored rows ----------

@dataclass(frozen=True)
class RouteConfig:
    destination_id: str
    credential_ref: str
    endpoint_url: str


@dataclass(frozen=True)
class OperationEntry:
    id: int
    run_id: str
    document_ref: str
    stage: Stage
    outcome: Outcome
    object_event_count: t.Optional[int]
    aggregation_event_count: t.Optional[int]
    details: t.Dict[str, t.Any]
    error_code: t.Optional[str]
    error_detail: t.Optional[str]
    created_at: dt.datetime

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "document": self.document_ref,
            "stage": self.stage.value,
            "outcome": self.outcome.value,
            "object_events": self.object_event_count,
            "aggregation_events": self.aggregation_event_count,
            "details": self.details,
            "error_code": self.error_code,
            "error_detail": self.error_detail,
            "created_at": self.created_at.isoformat(),
        }


# ---------- Typed results from external capabilities ----------

@dataclass(frozen=True)
class ConversionResult:
    content: t.Optional[dict] = None
    status: t.Optional[int] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.content is not None


@dataclass(frozen=True)
class IndexItemResult:
    key: str
    ok: bool
    status: t.Optional[int] = None
    detail: str = ""


@dataclass(frozen=True)
class BulkIndexResult:
    items: t.List[IndexItemResult] = field(default_factory=list)
    error: t.Optional[str] = None
    status: t.Optional[int] = None


@dataclass(frozen=True)
class ForwardResult:
    ok: bool
    status: t.Optional[int] = None
    detail: str = ""


# ---------- Cancellation ----------

class CancelToken:
    """Caller-driven cancellation with an optional monotonic deadline."""

    def __init__(self, deadline: t.Optional[float] = None):
        self._event = threading.Event()
        self._reason = "cancelled by caller"
        self.deadline = deadline

    @classmethod
    def after(cls, seconds: t.Optional[float]) -> "CancelToken":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + float(seconds))

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    def remaining(self) -> t.Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        rem = self.remaining()
        return rem is not None and rem <= 0

    @property
    def reason(self) -> str:
        if self._event.is_set():
            return self._reason
        return "deadline exceeded"

    def check(self) -> None:
        if self.cancelled:
            raise Cancelled(self.reason)

    def timeout_for(self, default: float) -> float:
        """Clamp an outbound call timeout to what is left of the deadline."""
        self.check()
        rem = self.remaining()
        if rem is None:
            return float(default)
        return max(0.001, min(float(default), rem))
