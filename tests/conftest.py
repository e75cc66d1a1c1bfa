import json
import os
import tempfile
import threading

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="tracepipe-logs-"))

import pytest

from tracepipe.models import BulkIndexResult, ConversionResult, Document, ForwardResult, IndexItemResult
from tracepipe.orchestrator import Pipeline
from tracepipe.services.schema_validator import JsonSchemaValidator
from tracepipe.storage import Database, EventHashStore, OperationLedger, RoutingRegistry, RuleRegistry
from tracepipe.storage.tables import BusinessRule, RoutingConfig

S1 = "urn:epc:id:sgln:0614141.00001.0"
D1 = "urn:epc:id:sgln:0012345.00001.0"
P1 = "urn:epc:idpat:sgtin:0614141.107346.*"
P2 = "urn:epc:idpat:sgtin:0614141.107347.*"


def sgtin(item_ref: str, serial: int) -> str:
    return f"urn:epc:id:sgtin:0614141.{item_ref}.{serial}"


def object_event(epcs, *, when="2024-03-01T10:00:00Z", biz_step="shipping"):
    return {
        "type": "ObjectEvent",
        "eventTime": when,
        "eventTimeZoneOffset": "+00:00",
        "action": "OBSERVE",
        "bizStep": biz_step,
        "epcList": list(epcs),
    }


def aggregation_event(parent, children, *, when="2024-03-01T09:00:00Z"):
    return {
        "type": "AggregationEvent",
        "eventTime": when,
        "eventTimeZoneOffset": "+00:00",
        "action": "ADD",
        "parentID": parent,
        "childEPCs": list(children),
    }


def epcis_body(events, *, sender=S1, receiver=D1):
    return {
        "type": "EPCISDocument",
        "schemaVersion": "1.2",
        "creationDate": "2024-03-01T12:00:00Z",
        "sender": sender,
        "receiver": receiver,
        "epcisBody": {"eventList": list(events)},
    }


def make_document(events, *, name="doc-1.json", location="/inbox", **kw) -> Document:
    return Document(name=name, location=location, content=json.dumps(epcis_body(events, **kw)))


# ---------- fakes for external capabilities ----------

class FakeConverter:
    """Echo the document back as a 2.0 document; optionally lose events."""

    def __init__(self, *, drop_events: int = 0, status: int = None, detail: str = ""):
        self.drop_events = drop_events
        self.status = status
        self.detail = detail
        self.calls = 0

    def convert(self, content, *, timeout=None):
        self.calls += 1
        if self.status is not None:
            return ConversionResult(status=self.status, detail=self.detail)
        doc = json.loads(content)
        doc["schemaVersion"] = "2.0"
        events = doc["epcisBody"]["eventList"]
        if self.drop_events:
            doc["epcisBody"]["eventList"] = events[: len(events) - self.drop_events]
        return ConversionResult(content=doc, status=200)


class FakeIndexStore:
    def __init__(self):
        self._lock = threading.Lock()
        self.docs = {}
        self.writes = []
        self.fail_keys = set()
        self.batch_error = None
        self.calls = 0

    def bulk_index(self, docs, *, timeout=None):
        with self._lock:
            self.calls += 1
            if self.batch_error:
                return BulkIndexResult(error=self.batch_error, status=503)
            items = []
            for key, doc in docs:
                if key in self.fail_keys:
                    items.append(IndexItemResult(key=key, ok=False, status=429, detail="rejected"))
                    continue
                self.docs[key] = doc
                self.writes.append(key)
                items.append(IndexItemResult(key=key, ok=True, status=201))
            return BulkIndexResult(items=items, status=200)


class FakeCredentials:
    def __init__(self, secrets=None):
        self.secrets = dict(secrets or {})

    def resolve(self, credential_ref):
        return self.secrets.get(credential_ref)


class FakeForwarder:
    def __init__(self, *, status: int = 200):
        self.status = status
        self.sent = []

    def forward(self, url, content, secret, *, timeout=None):
        self.sent.append((url, content, secret))
        if 200 <= self.status < 300:
            return ForwardResult(ok=True, status=self.status)
        return ForwardResult(ok=False, status=self.status, detail="rejected by destination")


class RecordingNotifier:
    def __init__(self):
        self.notices = []

    def notify(self, document_ref, stage, error_detail):
        self.notices.append((document_ref, stage, error_detail))


# ---------- fixtures ----------

@pytest.fixture
def db(tmp_path):
    d = Database(f"sqlite:///{tmp_path / 'tracepipe.db'}")
    d.create_all()
    yield d
    d.dispose()


def add_rule(db, source=S1, destination=D1, product=P1, status="Active"):
    with db.session_scope() as s:
        s.add(BusinessRule(
            source_location=source, destination_location=destination, product_id=product, status=status,
        ))


def add_route(db, destination=D1, credential="acme/token", endpoint="https://edi.example.com/inbound", active=True):
    with db.session_scope() as s:
        s.add(RoutingConfig(
            destination_id=destination, credential_ref=credential, endpoint_url=endpoint, active=active,
        ))


@pytest.fixture
def fakes():
    return {
        "converter": FakeConverter(),
        "index_store": FakeIndexStore(),
        "credentials": FakeCredentials({"acme/token": "s3cr3t-token"}),
        "forwarder": FakeForwarder(),
        "notifier": RecordingNotifier(),
    }


@pytest.fixture
def make_pipeline(db, fakes):
    built = []

    def _make(**overrides):
        parts = dict(fakes)
        parts.update(overrides)
        pipeline = Pipeline(
            ledger=OperationLedger(db),
            rules=RuleRegistry(db),
            routes=RoutingRegistry(db),
            hashes=EventHashStore(db),
            validator=JsonSchemaValidator(),
            **parts,
        )
        built.append(pipeline)
        return pipeline

    yield _make
    for pipeline in built:
        pipeline.close()


@pytest.fixture
def seeded(db):
    add_rule(db)
    add_route(db)
    return db
