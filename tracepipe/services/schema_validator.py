from __future__ import annotations

import json
from typing import List, Optional

from jsonschema import Draft202012Validator

from tracepipe.utils import get_logger, load_file, load_schema

logger = get_logger(__name__)


def _format_path(path) -> str:
    return "/" + "/".join(str(p) for p in path) if path else "/"


class JsonSchemaValidator:
    """Structural check of a raw document against a JSON Schema.

    Defaults to the bundled ``epcis_document.schema.json``; a deployment can
    point ``validation.schema_file`` at its own schema.
    """

    def __init__(self, schema_file: Optional[str] = None):
        if schema_file:
            schema = json.loads(load_file(schema_file))
        else:
            schema = load_schema("epcis_document.schema.json")
        Draft202012Validator.check_schema(schema)
        self._validator = Draft202012Validator(schema)

    def validate(self, content: str) -> List[str]:
        try:
            instance = json.loads(content)
        except (TypeError, ValueError) as e:
            return [f"content is not valid JSON: {e}"]
        errors = sorted(self._validator.iter_errors(instance), key=lambda e: list(e.absolute_path))
        return [f"{e.message} at {_format_path(e.absolute_path)}" for e in errors]
