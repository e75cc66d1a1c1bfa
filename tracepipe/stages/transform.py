from __future__ import annotations

from typing import Optional

from tracepipe import epcis
from tracepipe.errors import ConversionFailed, EventCountMismatch
from tracepipe.models import CancelToken, PipelineRun
from tracepipe.services.base import Converter
from tracepipe.utils import get_logger

logger = get_logger(__name__)


def transform(
    run: PipelineRun,
    converter: Converter,
    *,
    token: Optional[CancelToken] = None,
    timeout: float = 120.0,
) -> dict:
    """Normalize the document and reconcile event counts.

    The raw content stays on ``run.document`` for routing; the normalized body
    becomes ``run.normalized``.
    """
    token = token or CancelToken()
    result = converter.convert(run.document.content, timeout=token.timeout_for(timeout))
    if not result.ok:
        raise ConversionFailed(result.detail or "conversion failed", status=result.status)

    expected = run.metadata.event_counts()
    actual = epcis.event_summary(result.content)
    if actual != expected:
        raise EventCountMismatch(expected, actual)

    run.normalized = result.content
    logger.info(
        "transform: document=%s object_events=%d aggregation_events=%d",
        run.document.ref,
        actual["object_events"],
        actual["aggregation_events"],
    )
    return {"converted": actual}
