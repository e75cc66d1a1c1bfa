"""Dedup & load: claim each event's content hash, index the survivors.

Ordering per attempt is claim -> index -> confirm or release. A hash is only
durable once the event it stands for is in the index store; every claim this
attempt made but could not confirm is released before the attempt ends,
including on cancellation and unexpected errors.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from tracepipe import epcis
from tracepipe.errors import IndexingFailed
from tracepipe.models import CancelToken, LoadSummary, PipelineRun
from tracepipe.services.base import IndexStore
from tracepipe.storage.hash_store import EventHashStore
from tracepipe.utils import get_logger

logger = get_logger(__name__)


def enrichment_context(run: PipelineRun) -> Dict[str, str]:
    md = run.metadata
    return {
        "sourceId": md.source_id,
        "destinationBillingId": md.destination_id,
        "documentRef": run.document.ref,
        "runId": run.run_id,
    }


def _enrich(event: dict, context: Dict[str, str], digest: str) -> dict:
    out = dict(event)
    out.update(context)
    out["eventHash"] = digest
    return out


class LoadEngine:
    def __init__(self, hashes: EventHashStore, index_store: IndexStore, *, timeout: float = 60.0):
        self.hashes = hashes
        self.index_store = index_store
        self.timeout = float(timeout)

    def load(self, run: PipelineRun, token: Optional[CancelToken] = None) -> LoadSummary:
        token = token or CancelToken()
        owner = run.run_id
        events = epcis.event_list(run.normalized or {})
        context = enrichment_context(run)

        batch: List[Tuple[str, dict]] = []
        duplicates = 0
        try:
            for event in events:
                token.check()
                digest = epcis.event_hash(event)
                if not self.hashes.claim(digest, owner):
                    duplicates += 1
                    continue
                batch.append((digest, _enrich(event, context, digest)))

            if not batch:
                summary = LoadSummary(total=len(events), duplicates=duplicates, indexed=0, failed=0)
                logger.info("load: document=%s %s", run.document.ref, summary.as_dict())
                return summary

            result = self.index_store.bulk_index(batch, timeout=token.timeout_for(self.timeout))
        except BaseException:
            self.hashes.release([d for d, _ in batch], owner)
            raise

        claimed = [d for d, _ in batch]
        if result.error is not None:
            self.hashes.release(claimed, owner)
            raise IndexingFailed(result.error, status=result.status)

        ok_keys = {item.key for item in result.items if item.ok}
        indexed = [d for d in claimed if d in ok_keys]
        failed = [d for d in claimed if d not in ok_keys]
        self.hashes.release(failed, owner)
        self.hashes.confirm(indexed, owner)

        summary = LoadSummary(
            total=len(events),
            duplicates=duplicates,
            indexed=len(indexed),
            failed=len(failed),
        )
        logger.info("load: document=%s %s", run.document.ref, summary.as_dict())
        return summary
