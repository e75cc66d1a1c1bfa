"""Interfaces of the external capabilities the pipeline calls.

Implementations report service-level failures through the typed result values
in ``tracepipe.models`` instead of raising.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, Tuple

from tracepipe.models import BulkIndexResult, ConversionResult, ForwardResult


class SchemaValidator(Protocol):
    def validate(self, content: str) -> List[str]: ...


class Converter(Protocol):
    def convert(self, content: str, *, timeout: Optional[float] = None) -> ConversionResult: ...


class IndexStore(Protocol):
    def bulk_index(
        self, docs: Sequence[Tuple[str, dict]], *, timeout: Optional[float] = None
    ) -> BulkIndexResult: ...


class CredentialStore(Protocol):
    def resolve(self, credential_ref: str) -> Optional[str]: ...


class Forwarder(Protocol):
    def forward(
        self, url: str, content: str, secret: str, *, timeout: Optional[float] = None
    ) -> ForwardResult: ...


class Notifier(Protocol):
    def notify(self, document_ref: str, stage: str, error_detail: str) -> None: ...
