from __future__ import annotations

from typing import Dict

from tracepipe import epcis
from tracepipe.errors import UnauthorizedCombination, UnauthorizedProduct
from tracepipe.models import PipelineRun
from tracepipe.storage.registry import RuleRegistry
from tracepipe.utils import get_logger

logger = get_logger(__name__)


def authorize(run: PipelineRun, rules: RuleRegistry) -> Dict[str, object]:
    """Check source/destination/product against Active business rules.

    All-or-nothing: one unauthorized product fails the whole document.
    """
    md = run.metadata
    allowed = rules.active_products(md.source_id, md.destination_id)
    if not allowed:
        raise UnauthorizedCombination(
            f"no active rule between {md.source_id} and {md.destination_id}"
        )
    if md.primary_product_id is not None and md.primary_product_id not in allowed:
        raise UnauthorizedCombination(
            f"no active rule for ({md.source_id}, {md.destination_id}, {md.primary_product_id})"
        )

    referenced = epcis.document_product_ids(run.body)
    missing = sorted(referenced - allowed)
    if missing:
        raise UnauthorizedProduct(missing, md.source_id, md.destination_id)

    logger.info("authorize: document=%s products=%d", run.document.ref, len(referenced))
    return {"products": sorted(referenced)}
