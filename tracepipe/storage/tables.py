"""ORM tables.

``event_hashes.hash`` is the primary key: the storage layer, not the caller,
guarantees that at most one row exists per content hash.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Index, Integer, JSON, String, Text, UniqueConstraint,
)

from tracepipe.storage.engine import Base

RULE_ACTIVE = "Active"
RULE_INACTIVE = "Inactive"


def utc_now() -> datetime:
    """Naive UTC timestamp; SQLite does not keep offsets."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BusinessRule(Base):
    __tablename__ = "business_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_location = Column(String(255), nullable=False)
    destination_location = Column(String(255), nullable=False)
    product_id = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default=RULE_ACTIVE)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("source_location", "destination_location", "product_id", name="uq_rule_triple"),
        Index("idx_rules_pair_status", "source_location", "destination_location", "status"),
    )


class RoutingConfig(Base):
    __tablename__ = "routing_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    destination_id = Column(String(255), nullable=False, index=True)
    credential_ref = Column(String(255), nullable=False)
    endpoint_url = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("destination_id", "endpoint_url", name="uq_route_destination_endpoint"),
    )


class OperationRecord(Base):
    __tablename__ = "operation_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(32), nullable=False, index=True)
    document_ref = Column(Text, nullable=False)
    stage = Column(String(32), nullable=False)
    outcome = Column(String(16), nullable=False)
    object_event_count = Column(Integer, nullable=True)
    aggregation_event_count = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    error_code = Column(String(64), nullable=True)
    error_detail = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)

    __table_args__ = (
        Index("idx_ops_document", "document_ref", "id"),
        Index("idx_ops_stage_outcome", "stage", "outcome"),
    )


class EventHash(Base):
    __tablename__ = "event_hashes"

    hash = Column(String(64), primary_key=True)
    inserted_at = Column(DateTime, nullable=False, default=utc_now)
    claimed_by = Column(String(32), nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
