"""Persistence: rule/routing registries, the event hash claim store and the
operation ledger, all on one SQLAlchemy database."""

from tracepipe.storage.engine import Base, Database
from tracepipe.storage.hash_store import EventHashStore
from tracepipe.storage.ledger import OperationLedger
from tracepipe.storage.registry import RoutingRegistry, RuleRegistry, load_registry_file

__all__ = [
    "Base",
    "Database",
    "EventHashStore",
    "OperationLedger",
    "RoutingRegistry",
    "RuleRegistry",
    "load_registry_file",
]
