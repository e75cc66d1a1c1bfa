from __future__ import annotations

import json
from typing import List, Optional, Sequence, Tuple

import requests

from tracepipe.models import BulkIndexResult, IndexItemResult
from tracepipe.utils import get_logger, truncate

logger = get_logger(__name__)


class BulkIndexStore:
    """Elasticsearch/OpenSearch ``_bulk`` client.

    Each event is written with its content hash as ``_id``, so writing the same
    event twice overwrites rather than duplicates.
    """

    def __init__(self, url: str, index: str, *, timeout: float = 60.0, auth: Optional[Tuple[str, str]] = None):
        self.url = url.rstrip("/")
        self.index = index
        self.timeout = float(timeout)
        self.auth = auth

    def _body(self, docs: Sequence[Tuple[str, dict]]) -> str:
        lines: List[str] = []
        for key, doc in docs:
            lines.append(json.dumps({"index": {"_index": self.index, "_id": key}}))
            lines.append(json.dumps(doc, ensure_ascii=False))
        return "\n".join(lines) + "\n"

    def bulk_index(self, docs: Sequence[Tuple[str, dict]], *, timeout: Optional[float] = None) -> BulkIndexResult:
        if not docs:
            return BulkIndexResult(items=[])
        try:
            r = requests.post(
                f"{self.url}/_bulk",
                data=self._body(docs).encode("utf-8"),
                headers={"Content-Type": "application/x-ndjson"},
                auth=self.auth,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            return BulkIndexResult(error=f"bulk request failed: {e}")

        if not 200 <= r.status_code < 300:
            return BulkIndexResult(error=truncate(r.text), status=r.status_code)
        try:
            payload = r.json()
        except ValueError:
            return BulkIndexResult(error="index store returned non-JSON body", status=r.status_code)
        if not isinstance(payload, dict):
            return BulkIndexResult(error="index store returned unexpected body", status=r.status_code)

        raw_items = payload.get("items") or []
        results: List[IndexItemResult] = []
        for (key, _), item in zip(docs, raw_items):
            op = next(iter(item.values()), {}) if isinstance(item, dict) else {}
            status = op.get("status")
            err = op.get("error")
            ok = err is None and isinstance(status, int) and 200 <= status < 300
            detail = ""
            if err is not None:
                detail = err.get("reason", "") if isinstance(err, dict) else str(err)
            results.append(IndexItemResult(key=key, ok=ok, status=status, detail=truncate(detail, 300)))

        # Items the store never reported on count as failed
        for key, _ in docs[len(raw_items):]:
            results.append(IndexItemResult(key=key, ok=False, detail="no item result returned"))

        failed = sum(1 for x in results if not x.ok)
        if failed:
            logger.warning("index_store: bulk items=%d failed=%d index=%s", len(results), failed, self.index)
        return BulkIndexResult(items=results, status=r.status_code)
