from __future__ import annotations

import requests

from tracepipe.utils import get_logger, now_utc

logger = get_logger(__name__)


class LogNotifier:
    def notify(self, document_ref: str, stage: str, error_detail: str) -> None:
        logger.warning("pipeline failure document=%s stage=%s detail=%s", document_ref, stage, error_detail)


class WebhookNotifier:
    """POST a JSON failure notice to a webhook (chat ops, incident tooling)."""

    def __init__(self, url: str, *, timeout: float = 10.0):
        self.url = url
        self.timeout = float(timeout)

    def notify(self, document_ref: str, stage: str, error_detail: str) -> None:
        payload = {
            "document": document_ref,
            "stage": stage,
            "error": error_detail,
            "ts": now_utc().isoformat().replace("+00:00", "Z"),
        }
        r = requests.post(self.url, json=payload, timeout=self.timeout)
        r.raise_for_status()
