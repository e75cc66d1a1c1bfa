import time
import uuid
import yaml
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tracepipe import epcis
from tracepipe.errors import PipelineError, SchemaInvalid, StageOrderError
from tracepipe.models import (
    CancelToken,
    Document,
    Outcome,
    PipelineRun,
    RunOutcome,
    Stage,
    previous_stage,
)
from tracepipe.services.base import (
    Converter,
    CredentialStore,
    Forwarder,
    IndexStore,
    Notifier,
    SchemaValidator,
)
from tracepipe.services.converter import HttpConverter
from tracepipe.services.credentials import EnvCredentialStore
from tracepipe.services.forwarder import HttpForwarder
from tracepipe.services.index_store import BulkIndexStore
from tracepipe.services.notifier import LogNotifier, WebhookNotifier
from tracepipe.services.schema_validator import JsonSchemaValidator
from tracepipe.stages.authorize import authorize
from tracepipe.stages.load import LoadEngine
from tracepipe.stages.route import route
from tracepipe.stages.transform import transform
from tracepipe.stages.validate import validate
from tracepipe.storage import (
    Database,
    EventHashStore,
    OperationLedger,
    RoutingRegistry,
    RuleRegistry,
)
from tracepipe.utils import get_logger, validate_config, wait_for_service

logger = get_logger(__name__)

StageStep = Callable[[PipelineRun, CancelToken], Dict[str, Any]]


class Pipeline:
    """Drives one document at a time through the fixed stage sequence.

    Safe to share across threads: all per-document state lives on the
    ``PipelineRun`` created inside ``process``.
    """

    def __init__(
        self,
        *,
        ledger: OperationLedger,
        rules: RuleRegistry,
        routes: RoutingRegistry,
        hashes: EventHashStore,
        validator: SchemaValidator,
        converter: Converter,
        index_store: IndexStore,
        credentials: CredentialStore,
        forwarder: Forwarder,
        notifier: Optional[Notifier] = None,
        conversion_timeout: float = 120.0,
        index_timeout: float = 60.0,
        routing_timeout: float = 60.0,
    ):
        self.ledger = ledger
        self.rules = rules
        self.routes = routes
        self.validator = validator
        self.converter = converter
        self.credentials = credentials
        self.forwarder = forwarder
        self.notifier = notifier or LogNotifier()
        self.loader = LoadEngine(hashes, index_store, timeout=index_timeout)
        self.conversion_timeout = conversion_timeout
        self.routing_timeout = routing_timeout
        self._notify_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tracepipe-notify")

        self._steps: List[Tuple[Stage, StageStep]] = [
            (Stage.INGESTED, self._ingest),
            (Stage.AUTHORIZED, lambda run, token: authorize(run, self.rules)),
            (Stage.VALIDATED, lambda run, token: validate(run, self.validator)),
            (Stage.TRANSFORMED, lambda run, token: transform(
                run, self.converter, token=token, timeout=self.conversion_timeout)),
            (Stage.LOADED, self._load),
            (Stage.ROUTED, lambda run, token: route(
                run, self.routes, self.credentials, self.forwarder, token=token, timeout=self.routing_timeout)),
        ]

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], db: Optional[Database] = None) -> "Pipeline":
        db = db or Database.from_config(cfg)
        conv = cfg["conversion"]
        idx = cfg["indexing"]
        dedup = cfg.get("dedup") or {}
        routing = cfg.get("routing") or {}
        creds = cfg.get("credentials") or {}
        notif = cfg.get("notifications") or {}
        schema_file = (cfg.get("validation") or {}).get("schema_file")

        notifier: Notifier = LogNotifier()
        if notif.get("webhook_url"):
            notifier = WebhookNotifier(notif["webhook_url"], timeout=float(notif.get("timeout", 10)))

        return cls(
            ledger=OperationLedger(db),
            rules=RuleRegistry(db),
            routes=RoutingRegistry(db),
            hashes=EventHashStore(db, lease_seconds=dedup.get("claim_lease_seconds", 900)),
            validator=JsonSchemaValidator(schema_file),
            converter=HttpConverter(conv["url"], timeout=float(conv.get("timeout", 120))),
            index_store=BulkIndexStore(idx["url"], idx["index"], timeout=float(idx.get("timeout", 60))),
            credentials=EnvCredentialStore(
                env_prefix=creds.get("env_prefix", "TRACEPIPE_SECRET_"),
                secrets_file=creds.get("secrets_file"),
            ),
            forwarder=HttpForwarder(timeout=float(routing.get("timeout", 60))),
            notifier=notifier,
            conversion_timeout=float(conv.get("timeout", 120)),
            index_timeout=float(idx.get("timeout", 60)),
            routing_timeout=float(routing.get("timeout", 60)),
        )

    # ---------- stage steps ----------

    def _ingest(self, run: PipelineRun, token: CancelToken) -> Dict[str, Any]:
        try:
            run.body = epcis.parse_document(run.document.content)
            run.metadata = epcis.extract_metadata(run.body)
        except ValueError as e:
            raise SchemaInvalid([str(e)]) from e
        md = run.metadata
        return {
            "source": md.source_id,
            "destination": md.destination_id,
            "primary_product": md.primary_product_id,
        }

    def _load(self, run: PipelineRun, token: CancelToken) -> Dict[str, Any]:
        run.load_summary = self.loader.load(run, token)
        return run.load_summary.as_dict()

    # ---------- driving ----------

    def _require_predecessor(self, run: PipelineRun, stage: Stage) -> None:
        prev = previous_stage(stage)
        if prev is not None and not self.ledger.has_succeeded(run.run_id, prev):
            raise StageOrderError(f"run {run.run_id} entered {stage.value} without a Succeeded {prev.value}")

    def _send_notice(self, document_ref: str, stage: str, detail: str) -> None:
        try:
            self.notifier.notify(document_ref, stage, detail)
        except Exception as e:
            logger.error("notifier failed document=%s stage=%s: %s", document_ref, stage, e)

    def _notify(self, run: PipelineRun, stage: Stage, detail: str) -> None:
        """Queue the failure notice; the run never waits on the notifier."""
        try:
            self._notify_pool.submit(self._send_notice, run.document.ref, stage.value, detail)
        except RuntimeError as e:
            logger.error("notice dropped document=%s stage=%s: %s", run.document.ref, stage.value, e)

    def close(self) -> None:
        """Wait for queued notices to be sent."""
        self._notify_pool.shutdown(wait=True)

    def _fail(self, run: PipelineRun, stage: Stage, error: BaseException) -> RunOutcome:
        entry = self.ledger.append(
            run_id=run.run_id,
            document_ref=run.document.ref,
            stage=stage,
            outcome=Outcome.FAILED,
            metadata=run.metadata,
            error=error,
        )
        logger.warning("run=%s stage=%s failed code=%s", run.run_id, stage.value, entry.error_code)
        self._notify(run, stage, entry.error_detail or "")
        return RunOutcome(
            run_id=run.run_id,
            document_ref=run.document.ref,
            stage=stage,
            outcome=Outcome.FAILED,
            error_code=entry.error_code,
            error_detail=entry.error_detail,
        )

    def process(self, document: Document, token: Optional[CancelToken] = None) -> RunOutcome:
        token = token or CancelToken()
        run = PipelineRun(run_id=uuid.uuid4().hex, document=document)
        logger.info("=== run start id=%s document=%s ===", run.run_id, document.ref)

        try:
            for stage, step in self._steps:
                self._require_predecessor(run, stage)
                t0 = time.monotonic()
                try:
                    token.check()
                    details = step(run, token)
                except PipelineError as e:
                    return self._fail(run, stage, e)
                except Exception as e:
                    logger.exception("run=%s stage=%s unexpected error", run.run_id, stage.value)
                    e.run_outcome = self._fail(run, stage, e)
                    raise

                self.ledger.append(
                    run_id=run.run_id,
                    document_ref=document.ref,
                    stage=stage,
                    outcome=Outcome.SUCCEEDED,
                    metadata=run.metadata,
                    details=details,
                )
                logger.info("stage=%s ok took_ms=%d", stage.value, int((time.monotonic() - t0) * 1000))

            return RunOutcome(
                run_id=run.run_id,
                document_ref=document.ref,
                stage=Stage.ROUTED,
                outcome=Outcome.SUCCEEDED,
            )
        finally:
            logger.info("=== run end id=%s ===", run.run_id)

    def process_many(
        self,
        documents: Sequence[Document],
        *,
        max_workers: int = 4,
        run_timeout: Optional[float] = None,
    ) -> List[RunOutcome]:
        """Process documents concurrently; outcomes come back in input order."""
        if not documents:
            return []

        def _one(doc: Document) -> RunOutcome:
            return self.process(doc, CancelToken.after(run_timeout))

        outcomes: List[RunOutcome] = []
        with ThreadPoolExecutor(max_workers=max(1, int(max_workers))) as pool:
            futures = [pool.submit(_one, d) for d in documents]
            for doc, fut in zip(documents, futures):
                try:
                    outcomes.append(fut.result())
                except Exception as e:
                    logger.error("document=%s aborted: %s", doc.ref, e)
                    recorded = getattr(e, "run_outcome", None)
                    if recorded is not None:
                        outcomes.append(recorded)
                        continue
                    # Failed before any stage could be recorded
                    outcomes.append(RunOutcome(
                        run_id="",
                        document_ref=doc.ref,
                        stage=Stage.INGESTED,
                        outcome=Outcome.FAILED,
                        error_code=type(e).__name__,
                        error_detail=str(e),
                    ))
        return outcomes


# ---------- config-driven entry points ----------

def load_config(config_path: str) -> Dict[str, Any]:
    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    validate_config(cfg)
    return cfg


def wait_infra(cfg: Dict[str, Any]) -> None:
    """Wait for configured health endpoints before starting a batch."""
    for section in ("conversion", "indexing"):
        url = (cfg.get(section) or {}).get("health_url")
        if url:
            wait_for_service(url)


def read_document(path: str) -> Document:
    p = Path(path)
    return Document(name=p.name, location=str(p.parent.resolve()), content=p.read_text(encoding="utf-8"))


def run_once(
    config_path: str,
    paths: Sequence[str],
    *,
    max_workers: Optional[int] = None,
    run_timeout: Optional[float] = None,
    wait: bool = True,
) -> List[RunOutcome]:
    """Execute the pipeline once over the given document files."""
    batch_id = uuid.uuid4().hex[:8]
    logger.info("=== batch start id=%s documents=%d ===", batch_id, len(paths))
    try:
        cfg = load_config(config_path)
        if wait:
            wait_infra(cfg)
        conc = cfg.get("concurrency") or {}
        documents = [read_document(p) for p in paths]
        pipeline = Pipeline.from_config(cfg)
        try:
            outcomes = pipeline.process_many(
                documents,
                max_workers=max_workers or int(conc.get("max_workers", 4)),
                run_timeout=run_timeout if run_timeout is not None else conc.get("run_timeout_seconds"),
            )
        finally:
            pipeline.close()
        ok = sum(1 for o in outcomes if o.succeeded)
        logger.info("batch id=%s succeeded=%d failed=%d", batch_id, ok, len(outcomes) - ok)
        return outcomes
    except Exception as e:
        logger.error("Batch execution failed: %s", e)
        raise
    finally:
        logger.info("=== batch end id=%s ===", batch_id)
