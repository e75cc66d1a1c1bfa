"""Helpers for reading EPCIS-style traceability documents.

Raw and normalized documents share the same outline: an envelope naming the
sender and receiver, and ``epcisBody.eventList`` holding typed events. Only the
parts the pipeline needs are interpreted here.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from typing import Dict, Iterable, List, Optional, Set, Tuple

from tracepipe.models import DocumentMetadata

OBJECT_EVENT = "ObjectEvent"
AGGREGATION_EVENT = "AggregationEvent"

_SGTIN_RE = re.compile(r"^urn:epc:id:sgtin:([0-9]+)\.([0-9]+)\.[^\s]+$")
_CLASS_RE = re.compile(r"^urn:epc:(?:class:lgtin|idpat:sgtin):([0-9]+)\.([0-9]+)\.[^\s]*$")

_EPC_FIELDS = ("epcList", "childEPCs", "inputEPCList", "outputEPCList")
_QUANTITY_FIELDS = ("quantityList", "childQuantityList", "inputQuantityList", "outputQuantityList")


def parse_document(content: str) -> dict:
    try:
        doc = json.loads(content)
    except (TypeError, ValueError) as e:
        raise ValueError(f"document is not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise ValueError("document root must be a JSON object")
    return doc


def event_list(doc: dict) -> List[dict]:
    body = doc.get("epcisBody") or {}
    events = body.get("eventList") if isinstance(body, dict) else None
    if not isinstance(events, list):
        return []
    return [e for e in events if isinstance(e, dict)]


def event_type(event: dict) -> str:
    return str(event.get("type") or event.get("isA") or "")


def count_events(doc: dict) -> Tuple[int, int]:
    objects = aggregations = 0
    for ev in event_list(doc):
        kind = event_type(ev)
        if kind == OBJECT_EVENT:
            objects += 1
        elif kind == AGGREGATION_EVENT:
            aggregations += 1
    return objects, aggregations


# ---------- Product identifiers ----------

def product_pattern(identifier: str) -> Optional[str]:
    """Map an instance- or class-level GTIN identifier to its product pattern.

    ``urn:epc:id:sgtin:0614141.107346.2017`` and
    ``urn:epc:class:lgtin:0614141.107346.LOT1`` both map to
    ``urn:epc:idpat:sgtin:0614141.107346.*``. Identifiers that do not name a
    trade item (SSCC pallets, locations) map to None.
    """
    s = (identifier or "").strip()
    m = _SGTIN_RE.match(s) or _CLASS_RE.match(s)
    if not m:
        return None
    return f"urn:epc:idpat:sgtin:{m.group(1)}.{m.group(2)}.*"


def _iter_identifiers(event: dict) -> Iterable[str]:
    for key in _EPC_FIELDS:
        for epc in event.get(key) or []:
            if isinstance(epc, str):
                yield epc
    for key in _QUANTITY_FIELDS:
        for q in event.get(key) or []:
            if isinstance(q, dict) and isinstance(q.get("epcClass"), str):
                yield q["epcClass"]


def event_product_ids(event: dict) -> List[str]:
    out: List[str] = []
    for ident in _iter_identifiers(event):
        p = product_pattern(ident)
        if p and p not in out:
            out.append(p)
    return out


def document_product_ids(doc: dict) -> Set[str]:
    return {p for ev in event_list(doc) for p in event_product_ids(ev)}


# ---------- Envelope metadata ----------

def _party(doc: dict, key: str, list_key: str, item_key: str) -> Optional[str]:
    header = doc.get("epcisHeader") if isinstance(doc.get("epcisHeader"), dict) else {}
    for candidate in (doc.get(key), header.get(key)):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    # Fall back to the first event's source/destination list
    for ev in event_list(doc):
        for entry in ev.get(list_key) or []:
            if isinstance(entry, dict) and isinstance(entry.get(item_key), str):
                return entry[item_key].strip()
    return None


def extract_metadata(doc: dict) -> DocumentMetadata:
    source = _party(doc, "sender", "sourceList", "source")
    destination = _party(doc, "receiver", "destinationList", "destination")
    if not source:
        raise ValueError("document names no sender")
    if not destination:
        raise ValueError("document names no receiver")

    primary = None
    for ev in event_list(doc):
        ids = event_product_ids(ev)
        if ids:
            primary = ids[0]
            break

    objects, aggregations = count_events(doc)
    return DocumentMetadata(
        source_id=source,
        destination_id=destination,
        primary_product_id=primary,
        object_event_count=objects,
        aggregation_event_count=aggregations,
    )


# ---------- Canonical event hashing ----------

def canonicalize_event(event: dict) -> str:
    """Stable serialization used for dedup hashes.

    NFKC-normalized, keys sorted, compact separators, then every whitespace
    character removed. Changing this invalidates every stored hash.
    """
    text = json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    text = unicodedata.normalize("NFKC", text)
    return re.sub(r"\s+", "", text)


def event_hash(event: dict) -> str:
    return hashlib.sha256(canonicalize_event(event).encode("utf-8")).hexdigest()


def event_summary(doc: dict) -> Dict[str, int]:
    objects, aggregations = count_events(doc)
    return {"object_events": objects, "aggregation_events": aggregations}
