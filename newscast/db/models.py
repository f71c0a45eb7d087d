"""
SQLAlchemy ORM models backing the workflow's durable stores.

Models:
    KeyValueEntry: JSON document keyed by string (job state, published records)
    ContinuationRecord: One requested workflow execution instance
    TimestampMixin: Automatic created_at/updated_at timestamps

Enums:
    ContinuationStatus: Lifecycle of a queued execution instance
"""

from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class TimestampMixin:
    """
    Mixin adding created_at/updated_at columns with database-level defaults.
    """

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )


class ContinuationStatus(str, PyEnum):
    """
    Lifecycle of a queued workflow execution instance.

    PENDING → RUNNING → FINISHED (or FAILED when the instance raised).
    """

    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"


class KeyValueEntry(Base, TimestampMixin):
    """
    A JSON document stored under a unique string key.

    Attributes:
        key: Primary key (e.g. "workflow:job:<id>:state")
        value: Serialized JSON document
    """

    __tablename__ = "kv_entries"

    key = Column(String(512), primary_key=True)
    value = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<KeyValueEntry(key='{self.key}')>"


class ContinuationRecord(Base, TimestampMixin):
    """
    A request to run one workflow execution instance.

    The instance id is deterministic (job id for the first run, "<job>-c<seq>"
    afterwards) so a retried create collides on the primary key instead of
    producing a second instance.

    Attributes:
        instance_id: Primary key, deterministic execution instance id
        job_id: Logical job the instance belongs to
        continuation_seq: Sequence number of this instance within the job
        params: JSON encoded run parameters (now, window mode, window hours, ...)
        status: ContinuationStatus
        error: Last error message when the instance failed
        queued_order: Monotonic insertion order for FIFO draining
    """

    __tablename__ = "continuations"

    instance_id = Column(String(255), primary_key=True)
    job_id = Column(String(255), nullable=False, index=True)
    continuation_seq = Column(Integer, nullable=False, default=0)
    params = Column(Text, nullable=False)
    status = Column(
        Enum(ContinuationStatus, name="continuation_status"),
        nullable=False,
        default=ContinuationStatus.PENDING,
        index=True,
    )
    error = Column(Text, nullable=True)
    queued_order = Column(Integer, nullable=False, default=0, index=True)

    def __repr__(self) -> str:
        return (
            f"<ContinuationRecord(instance_id='{self.instance_id}', "
            f"status='{self.status}')>"
        )
