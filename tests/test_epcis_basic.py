import json

import pytest

from tracepipe import epcis
from conftest import D1, P1, P2, S1, aggregation_event, epcis_body, object_event, sgtin


def test_event_hash_ignores_key_order_and_whitespace():
    a = {"type": "ObjectEvent", "epcList": ["urn:a", "urn:b"], "action": "OBSERVE"}
    b = json.loads('{ "action" : "OBSERVE",\n  "epcList": ["urn:a",   "urn:b"], "type":"ObjectEvent" }')
    assert epcis.event_hash(a) == epcis.event_hash(b)
    assert len(epcis.event_hash(a)) == 64


def test_event_hash_differs_on_content():
    a = object_event([sgtin("107346", 1)])
    b = object_event([sgtin("107346", 2)])
    assert epcis.event_hash(a) != epcis.event_hash(b)


def test_product_pattern_mapping():
    assert epcis.product_pattern("urn:epc:id:sgtin:0614141.107346.2017") == P1
    assert epcis.product_pattern("urn:epc:class:lgtin:0614141.107346.LOT9") == P1
    assert epcis.product_pattern(P1) == P1
    assert epcis.product_pattern("urn:epc:id:sscc:0614141.1234567890") is None


def test_document_products_and_counts():
    doc = epcis_body([
        object_event([sgtin("107346", 1), sgtin("107347", 1)]),
        aggregation_event("urn:epc:id:sscc:0614141.1234567890", [sgtin("107346", 2)]),
        {**object_event([]), "quantityList": [{"epcClass": "urn:epc:class:lgtin:0614141.107346.L1", "quantity": 5}]},
    ])
    assert epcis.document_product_ids(doc) == {P1, P2}
    assert epcis.count_events(doc) == (2, 1)


def test_extract_metadata_from_envelope():
    doc = epcis_body([object_event([sgtin("107346", 1)]), object_event([sgtin("107347", 1)])])
    md = epcis.extract_metadata(doc)
    assert md.source_id == S1
    assert md.destination_id == D1
    assert md.primary_product_id == P1
    assert md.event_counts() == {"object_events": 2, "aggregation_events": 0}


def test_extract_metadata_falls_back_to_event_parties():
    ev = object_event([sgtin("107346", 1)])
    ev["sourceList"] = [{"type": "owning_party", "source": "urn:src"}]
    ev["destinationList"] = [{"type": "owning_party", "destination": "urn:dst"}]
    doc = epcis_body([ev], sender="", receiver="")
    md = epcis.extract_metadata(doc)
    assert (md.source_id, md.destination_id) == ("urn:src", "urn:dst")


def test_extract_metadata_requires_parties():
    doc = epcis_body([object_event([sgtin("107346", 1)])], sender="", receiver=D1)
    with pytest.raises(ValueError):
        epcis.extract_metadata(doc)


def test_parse_document_rejects_non_object():
    with pytest.raises(ValueError):
        epcis.parse_document("[1, 2]")
    with pytest.raises(ValueError):
        epcis.parse_document("{not json")
