"""Failure taxonomy for pipeline stages.

Every class here is terminal for the run that raised it: the orchestrator
records a Failed operation record carrying ``code`` and ``detail`` and stops.
"""

from __future__ import annotations

from typing import List, Optional


class PipelineError(Exception):
    code = "PipelineError"

    def __init__(self, detail: str, *, status: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        self.status = status

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.code} (status={self.status}): {self.detail}"
        return f"{self.code}: {self.detail}"


class UnauthorizedCombination(PipelineError):
    code = "UnauthorizedCombination"


class UnauthorizedProduct(PipelineError):
    code = "UnauthorizedProduct"

    def __init__(self, products: List[str], source: str, destination: str):
        super().__init__(
            f"products not authorized between {source} and {destination}: {', '.join(products)}"
        )
        self.products = list(products)


class SchemaInvalid(PipelineError):
    code = "SchemaInvalid"

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class ConversionFailed(PipelineError):
    code = "ConversionFailed"


class EventCountMismatch(PipelineError):
    code = "EventCountMismatch"

    def __init__(self, expected: dict, actual: dict):
        super().__init__(f"expected {expected}, converted document has {actual}")
        self.expected = dict(expected)
        self.actual = dict(actual)


class IndexingFailed(PipelineError):
    code = "IndexingFailed"


class NoRoutingConfig(PipelineError):
    code = "NoRoutingConfig"


class CredentialUnavailable(PipelineError):
    code = "CredentialUnavailable"


class RoutingRejected(PipelineError):
    code = "RoutingRejected"


class Cancelled(PipelineError):
    code = "Cancelled"


class StageOrderError(RuntimeError):
    """A stage was entered without a Succeeded record for its predecessor."""
