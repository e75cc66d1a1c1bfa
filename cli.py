#!/usr/bin/env python3
import argparse
import json
import sys

from tracepipe.models import Outcome, Stage
from tracepipe.orchestrator import load_config, run_once
from tracepipe.storage import Database, OperationLedger, load_registry_file


def _cmd_init_db(args) -> int:
    cfg = load_config(args.config)
    db = Database.from_config(cfg)
    db.create_all()
    print(json.dumps({"database": db.url.split("@")[-1], "status": "ready"}))
    return 0


def _cmd_seed(args) -> int:
    cfg = load_config(args.config)
    db = Database.from_config(cfg)
    counts = load_registry_file(db, args.registry)
    print(json.dumps(counts))
    return 0


def _cmd_run(args) -> int:
    outcomes = run_once(
        args.config,
        args.documents,
        max_workers=args.max_workers,
        run_timeout=args.timeout,
        wait=args.wait,
    )
    for o in outcomes:
        print(json.dumps(o.as_dict(), ensure_ascii=False))
    return 0 if all(o.succeeded for o in outcomes) else 1


def _cmd_audit(args) -> int:
    cfg = load_config(args.config)
    ledger = OperationLedger(Database.from_config(cfg))
    entries = ledger.query(
        document_ref=args.document,
        stage=Stage(args.stage) if args.stage else None,
        outcome=Outcome(args.outcome) if args.outcome else None,
        run_id=args.run_id,
        limit=args.limit,
    )
    for e in entries:
        print(json.dumps(e.as_dict(), ensure_ascii=False))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Traceability document pipeline CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create database tables")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.set_defaults(func=_cmd_init_db)

    p = sub.add_parser("seed", help="Load business rules and routing configs from YAML")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--registry", required=True, help="Path to registry YAML")
    p.set_defaults(func=_cmd_seed)

    p = sub.add_parser("run", help="Process documents through the pipeline")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("documents", nargs="+", help="Document files to ingest")
    p.add_argument("--max-workers", dest="max_workers", type=int, help="Documents processed in parallel")
    p.add_argument("--timeout", type=float, help="Per-document deadline in seconds")
    p.add_argument("--no-wait", dest="wait", action="store_false", help="Skip infrastructure health checks")
    p.set_defaults(func=_cmd_run, wait=True)

    p = sub.add_parser("audit", help="Query operation records")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--document", help="Document reference (location/name)")
    p.add_argument("--stage", choices=[s.value for s in Stage], help="Stage name")
    p.add_argument("--outcome", choices=[o.value for o in Outcome], help="Outcome")
    p.add_argument("--run-id", dest="run_id", help="Run id")
    p.add_argument("--limit", type=int, help="Max records")
    p.set_defaults(func=_cmd_audit)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
