"""Read-only lookups against the rule and routing registries.

The pipeline never writes here. ``load_registry_file`` is the administrative
seeding path used by the CLI.
"""

from __future__ import annotations

from typing import Optional, Set

import yaml
from sqlalchemy import select

from tracepipe.models import RouteConfig
from tracepipe.storage.engine import Database
from tracepipe.storage.tables import RULE_ACTIVE, BusinessRule, RoutingConfig
from tracepipe.utils import get_logger, validate_against

logger = get_logger(__name__)


class RuleRegistry:
    def __init__(self, db: Database):
        self._db = db

    def active_products(self, source: str, destination: str) -> Set[str]:
        stmt = select(BusinessRule.product_id).where(
            BusinessRule.source_location == source,
            BusinessRule.destination_location == destination,
            BusinessRule.status == RULE_ACTIVE,
        )
        with self._db.session_scope() as s:
            return set(s.scalars(stmt).all())

    def is_authorized(self, source: str, destination: str, product: str) -> bool:
        stmt = select(BusinessRule.id).where(
            BusinessRule.source_location == source,
            BusinessRule.destination_location == destination,
            BusinessRule.product_id == product,
            BusinessRule.status == RULE_ACTIVE,
        ).limit(1)
        with self._db.session_scope() as s:
            return s.scalars(stmt).first() is not None


class RoutingRegistry:
    def __init__(self, db: Database):
        self._db = db

    def active_config(self, destination: str) -> Optional[RouteConfig]:
        # Most recently registered active route wins
        stmt = (
            select(RoutingConfig)
            .where(RoutingConfig.destination_id == destination, RoutingConfig.active.is_(True))
            .order_by(RoutingConfig.id.desc())
            .limit(1)
        )
        with self._db.session_scope() as s:
            row = s.scalars(stmt).first()
            if row is None:
                return None
            return RouteConfig(
                destination_id=row.destination_id,
                credential_ref=row.credential_ref,
                endpoint_url=row.endpoint_url,
            )


def load_registry_file(db: Database, path: str) -> dict:
    """Upsert rules and routes from a YAML registry file.

    Rules are keyed by (source, destination, product) and routes by
    (destination, endpoint); existing rows get their status/credential updated.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    validate_against(data, "registry.schema.json", "Registry")

    rules = data.get("rules") or []
    routes = data.get("routes") or []
    with db.session_scope() as s:
        for r in rules:
            row = s.scalars(select(BusinessRule).where(
                BusinessRule.source_location == r["source"],
                BusinessRule.destination_location == r["destination"],
                BusinessRule.product_id == r["product"],
            )).first()
            if row is None:
                row = BusinessRule(
                    source_location=r["source"],
                    destination_location=r["destination"],
                    product_id=r["product"],
                )
                s.add(row)
            row.status = r.get("status", RULE_ACTIVE)
        for r in routes:
            row = s.scalars(select(RoutingConfig).where(
                RoutingConfig.destination_id == r["destination"],
                RoutingConfig.endpoint_url == r["endpoint"],
            )).first()
            if row is None:
                row = RoutingConfig(destination_id=r["destination"], endpoint_url=r["endpoint"])
                s.add(row)
            row.credential_ref = r["credential"]
            row.active = bool(r.get("active", True))

    logger.info("registry seeded rules=%d routes=%d from=%s", len(rules), len(routes), path)
    return {"rules": len(rules), "routes": len(routes)}
