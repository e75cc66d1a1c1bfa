from __future__ import annotations

from tracepipe.errors import SchemaInvalid
from tracepipe.models import PipelineRun
from tracepipe.services.base import SchemaValidator


def validate(run: PipelineRun, validator: SchemaValidator) -> dict:
    errors = validator.validate(run.document.content)
    if errors:
        raise SchemaInvalid(errors)
    return {}
