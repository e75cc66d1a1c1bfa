import json
import os

import pytest
import yaml

import cli
from tracepipe.models import CancelToken
from tracepipe.orchestrator import Pipeline, load_config
from tracepipe.storage import Database, RoutingRegistry, RuleRegistry, load_registry_file
from tracepipe.utils import validate_config
from conftest import D1, P1, S1

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
EXAMPLE_CONFIG = os.path.join(ROOT, "configs", "pipeline.example.yaml")
EXAMPLE_REGISTRY = os.path.join(ROOT, "configs", "registry.example.yaml")


def _write_config(tmp_path):
    with open(EXAMPLE_CONFIG, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    cfg["database"]["url"] = f"sqlite:///{tmp_path / 'cli.db'}"
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return str(path)


def test_example_config_is_valid():
    cfg = load_config(EXAMPLE_CONFIG)
    assert cfg["indexing"]["index"] == "epcis-events"


def test_config_rejects_unknown_section():
    with pytest.raises(ValueError, match="Config validation error"):
        validate_config({"database": {"url": "sqlite://"}, "conversion": {"url": "x"},
                         "indexing": {"url": "x", "index": "i"}, "surprise": {}})


def test_pipeline_from_config(tmp_path):
    cfg = load_config(_write_config(tmp_path))
    pipeline = Pipeline.from_config(cfg)
    assert pipeline.loader.hashes.lease_seconds == 900
    assert pipeline.conversion_timeout == 120


def test_registry_seed_is_idempotent(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'reg.db'}")
    db.create_all()
    load_registry_file(db, EXAMPLE_REGISTRY)
    load_registry_file(db, EXAMPLE_REGISTRY)

    assert RuleRegistry(db).active_products(S1, D1) == {P1}
    route = RoutingRegistry(db).active_config(D1)
    assert route.credential_ref == "acme-distribution/api-token"


def test_cli_seed_and_audit(tmp_path, capsys):
    config = _write_config(tmp_path)
    assert cli.main(["init-db", "--config", config]) == 0
    assert cli.main(["seed", "--config", config, "--registry", EXAMPLE_REGISTRY]) == 0
    capsys.readouterr()

    assert cli.main(["audit", "--config", config, "--outcome", "Failed"]) == 0
    assert capsys.readouterr().out == ""


def test_cancel_token_deadline():
    token = CancelToken.after(0)
    assert token.cancelled
    assert token.reason == "deadline exceeded"
    assert CancelToken.after(30).timeout_for(60) <= 30
    assert json.dumps({"ok": CancelToken().timeout_for(5)}) == '{"ok": 5.0}'


def test_empty_optional_sections_are_accepted(tmp_path):
    path = tmp_path / "minimal.yaml"
    path.write_text(
        "database:\n  url: sqlite://\nconversion:\n  url: http://conv\n"
        "indexing:\n  url: http://search\n  index: idx\nvalidation:\ndedup:\nnotifications:\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg["validation"] is None
    pipeline = Pipeline.from_config(cfg)
    assert pipeline.loader.hashes.lease_seconds == 900
    pipeline.close()
