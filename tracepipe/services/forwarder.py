from __future__ import annotations

from typing import Optional

import requests

from tracepipe.models import ForwardResult
from tracepipe.utils import get_logger, redact_secrets, truncate

logger = get_logger(__name__)


class HttpForwarder:
    """Deliver the original document to a destination endpoint."""

    def __init__(self, *, timeout: float = 60.0, content_type: str = "application/json"):
        self.timeout = float(timeout)
        self.content_type = content_type

    def forward(self, url: str, content: str, secret: str, *, timeout: Optional[float] = None) -> ForwardResult:
        headers = {"Content-Type": self.content_type, "Authorization": f"Bearer {secret}"}
        try:
            r = requests.post(url, data=content.encode("utf-8"), headers=headers, timeout=timeout or self.timeout)
        except requests.RequestException as e:
            return ForwardResult(ok=False, detail=redact_secrets(f"forward request failed: {e}", [secret]))
        if 200 <= r.status_code < 300:
            return ForwardResult(ok=True, status=r.status_code)
        return ForwardResult(ok=False, status=r.status_code, detail=redact_secrets(truncate(r.text), [secret]))
