# copyflow/models.py
import uuid

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text,
    UniqueConstraint,
)

from copyflow.db import Base, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    plan = Column(String(32), nullable=False, default="free")
    owner_email = Column(String(320), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    name = Column(String(200), nullable=False)
    key_hash = Column(String(64), unique=True, index=True, nullable=False)  # sha256 hex
    key_prefix = Column(String(16), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ApiUsage(Base):
    __tablename__ = "api_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    api_key_id = Column(String(36), nullable=False)
    tenant_id = Column(String(36), nullable=False)
    endpoint = Column(String(200), nullable=False)
    method = Column(String(10), nullable=False)
    status = Column(Integer, nullable=False)
    metered = Column(Boolean, nullable=False, default=False)  # admitted by the rate limiter
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_api_usage_key_ts", "api_key_id", "timestamp"),
    )


class BulkJob(Base):
    __tablename__ = "bulk_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    api_key_id = Column(String(36), nullable=True)  # submitting credential
    name = Column(String(200), nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    total_items = Column(Integer, nullable=False)
    processed = Column(Integer, nullable=False, default=0)
    successful = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    input_data = Column(JSON, nullable=False)
    error_log = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    worker_token = Column(String(36), nullable=True)
    heartbeat_at = Column(DateTime, nullable=True)  # lease; refreshed on every checkpoint


class BulkJobItem(Base):
    """Outcome of one bulk item, keyed by its position in the input list."""
    __tablename__ = "bulk_job_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("bulk_jobs.id"), index=True, nullable=False)
    position = Column(Integer, nullable=False)
    success = Column(Boolean, nullable=False)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("job_id", "position", name="uq_bulk_job_item_position"),
    )


class Generation(Base):
    __tablename__ = "generations"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    api_key_id = Column(String(36), nullable=True, index=True)
    bulk_job_id = Column(String(36), ForeignKey("bulk_jobs.id"), nullable=True)
    kind = Column(String(32), nullable=False, default="product")
    product_name = Column(String(200), nullable=True)
    category = Column(String(32), nullable=True)
    writing_style = Column(String(32), nullable=True)
    language = Column(String(8), nullable=True)
    content = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
