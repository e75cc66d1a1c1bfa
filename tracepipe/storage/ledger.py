"""Append-only audit trail of stage attempts.

The ledger is the system of record for how far a run got: the current stage of
a document is whatever its latest record says, never a mutable field.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select

from tracepipe.errors import PipelineError
from tracepipe.models import DocumentMetadata, OperationEntry, Outcome, Stage
from tracepipe.storage.engine import Database
from tracepipe.storage.tables import OperationRecord, utc_now
from tracepipe.utils import get_logger, truncate

logger = get_logger(__name__)


def _to_entry(row: OperationRecord) -> OperationEntry:
    return OperationEntry(
        id=row.id,
        run_id=row.run_id,
        document_ref=row.document_ref,
        stage=Stage(row.stage),
        outcome=Outcome(row.outcome),
        object_event_count=row.object_event_count,
        aggregation_event_count=row.aggregation_event_count,
        details=dict(row.details or {}),
        error_code=row.error_code,
        error_detail=row.error_detail,
        created_at=row.created_at,
    )


class OperationLedger:
    def __init__(self, db: Database):
        self._db = db

    def append(
        self,
        *,
        run_id: str,
        document_ref: str,
        stage: Stage,
        outcome: Outcome,
        metadata: Optional[DocumentMetadata] = None,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> OperationEntry:
        error_code = error_detail = None
        if error is not None:
            if isinstance(error, PipelineError):
                error_code, error_detail = error.code, str(error)
            else:
                error_code, error_detail = type(error).__name__, str(error) or repr(error)
            error_detail = truncate(error_detail, 4000)

        row = OperationRecord(
            run_id=run_id,
            document_ref=document_ref,
            stage=stage.value,
            outcome=outcome.value,
            object_event_count=metadata.object_event_count if metadata else None,
            aggregation_event_count=metadata.aggregation_event_count if metadata else None,
            details=details or {},
            error_code=error_code,
            error_detail=error_detail,
            created_at=utc_now(),
        )
        with self._db.session_scope() as s:
            s.add(row)
            s.flush()
            entry = _to_entry(row)
        logger.debug("ledger: run=%s stage=%s outcome=%s", run_id, stage.value, outcome.value)
        return entry

    def has_succeeded(self, run_id: str, stage: Stage) -> bool:
        stmt = select(OperationRecord.id).where(
            OperationRecord.run_id == run_id,
            OperationRecord.stage == stage.value,
            OperationRecord.outcome == Outcome.SUCCEEDED.value,
        ).limit(1)
        with self._db.session_scope() as s:
            return s.scalars(stmt).first() is not None

    def latest(self, document_ref: str) -> Optional[OperationEntry]:
        stmt = (
            select(OperationRecord)
            .where(OperationRecord.document_ref == document_ref)
            .order_by(OperationRecord.id.desc())
            .limit(1)
        )
        with self._db.session_scope() as s:
            row = s.scalars(stmt).first()
            return _to_entry(row) if row is not None else None

    def current_stage(self, document_ref: str) -> Optional[Stage]:
        entry = self.latest(document_ref)
        return entry.stage if entry is not None else None

    def query(
        self,
        *,
        document_ref: Optional[str] = None,
        stage: Optional[Stage] = None,
        outcome: Optional[Outcome] = None,
        run_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[OperationEntry]:
        stmt = select(OperationRecord)
        if document_ref is not None:
            stmt = stmt.where(OperationRecord.document_ref == document_ref)
        if stage is not None:
            stmt = stmt.where(OperationRecord.stage == stage.value)
        if outcome is not None:
            stmt = stmt.where(OperationRecord.outcome == outcome.value)
        if run_id is not None:
            stmt = stmt.where(OperationRecord.run_id == run_id)
        stmt = stmt.order_by(OperationRecord.id.asc())
        if limit:
            stmt = stmt.limit(int(limit))
        with self._db.session_scope() as s:
            return [_to_entry(r) for r in s.scalars(stmt).all()]
