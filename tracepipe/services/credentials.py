from __future__ import annotations

import os
import re
from typing import Dict, Optional

import yaml

from tracepipe.utils import get_logger

logger = get_logger(__name__)


def env_key(prefix: str, credential_ref: str) -> str:
    return prefix + re.sub(r"[^A-Za-z0-9]+", "_", credential_ref).strip("_").upper()


class EnvCredentialStore:
    """Resolve credential references from the environment, then a YAML file.

    ``billing-api/token`` with prefix ``TRACEPIPE_SECRET_`` is looked up as
    ``TRACEPIPE_SECRET_BILLING_API_TOKEN``.
    """

    def __init__(self, *, env_prefix: str = "TRACEPIPE_SECRET_", secrets_file: Optional[str] = None):
        self.env_prefix = env_prefix
        self._file_secrets: Dict[str, str] = {}
        if secrets_file:
            with open(secrets_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"secrets file must be a mapping: {secrets_file}")
            self._file_secrets = {str(k): str(v) for k, v in data.items() if v is not None}

    def resolve(self, credential_ref: str) -> Optional[str]:
        value = os.getenv(env_key(self.env_prefix, credential_ref))
        if value:
            return value
        value = self._file_secrets.get(credential_ref)
        if not value:
            logger.info("credentials: no secret for ref=%s", credential_ref)
            return None
        return value
