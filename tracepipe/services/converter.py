from __future__ import annotations

from typing import Dict, Optional

import requests

from tracepipe.models import ConversionResult
from tracepipe.utils import get_logger, truncate

logger = get_logger(__name__)


class HttpConverter:
    """Client for the format-conversion service.

    POSTs the raw document and expects the normalized document back as a JSON
    object. Anything else is reported as a failed ``ConversionResult``.
    """

    def __init__(self, url: str, *, timeout: float = 120.0, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.timeout = float(timeout)
        self.headers = {"Content-Type": "application/json", "Accept": "application/json"}
        self.headers.update(headers or {})

    def convert(self, content: str, *, timeout: Optional[float] = None) -> ConversionResult:
        try:
            r = requests.post(
                self.url,
                data=content.encode("utf-8"),
                headers=self.headers,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("converter: request failed url=%s err=%s", self.url, e)
            return ConversionResult(status=None, detail=f"conversion request failed: {e}")

        if not 200 <= r.status_code < 300:
            return ConversionResult(status=r.status_code, detail=truncate(r.text))

        try:
            body = r.json()
        except ValueError:
            return ConversionResult(status=r.status_code, detail="conversion service returned non-JSON body")
        if not isinstance(body, dict):
            return ConversionResult(status=r.status_code, detail="conversion service returned non-object JSON")
        return ConversionResult(content=body, status=r.status_code)
