"""
Operational ORM Models.

============================================================
PURPOSE
============================================================
Runtime state of the lifecycle engine: partition metadata
(including temperature and the busy lock), the evaluation
queue, the append-only execution log, terminal-failure blocks
and deferred merge candidates.

============================================================
DATA LIFECYCLE ROLE
============================================================
- PartitionModel: MUTABLE, single-row updates keyed by id
- EvaluationQueueModel: one row per (policy, partition),
  status changes by compare-and-set
- ExecutionLogModel: APPEND-ONLY, completed exactly once
- PolicyPartitionBlockModel: created on terminal failures
- MergeCandidateModel: consolidation retry bookkeeping

============================================================
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class PartitionModel(Base):
    """
    Partition metadata.

    ============================================================
    BUSY LOCK
    ============================================================
    busy_token is set by compare-and-set (only when NULL) before
    an action or merge starts, and cleared only after the audit
    row reaches a terminal state. Evaluation skips busy rows.
    ============================================================
    """

    __tablename__ = "partitions"
    __table_args__ = (
        UniqueConstraint("dataset", "name", name="uq_partitions_dataset_name"),
        Index("ix_partitions_dataset_lower", "dataset", "lower_bound"),
    )

    partition_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    dataset: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    lower_bound: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    upper_bound: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    high_value: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True, comment="Raw boundary expression"
    )

    location: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    codec: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    read_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    row_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    byte_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_write_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_read_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    read_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    write_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Classification
    temperature: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    temperature_source: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    temperature_refreshed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    classification_warning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Busy lock
    busy_token: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    busy_since: Mapped[Optional[datetime]] = mapped_column(nullable=True)


class EvaluationQueueModel(Base):
    """
    Result of matching one policy against one partition.

    Keyed by (policy_id, partition_id); re-evaluation updates the
    row in place. Status: PENDING/RUNNING/SUCCESS/FAILED/SKIPPED.
    """

    __tablename__ = "evaluation_queue"
    __table_args__ = (
        UniqueConstraint("policy_id", "partition_id", name="uq_evaluation_queue_pair"),
        Index("ix_evaluation_queue_status", "status"),
    )

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    policy_id: Mapped[int] = mapped_column(Integer, nullable=False)
    partition_id: Mapped[int] = mapped_column(Integer, nullable=False)

    eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    evaluated_at: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(10), nullable=False)

    execution_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_executed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ExecutionLogModel(Base):
    """
    Immutable audit record of one attempted action.

    Written RUNNING before the storage call and completed exactly
    once with SUCCESS/FAILED, metrics and duration.
    """

    __tablename__ = "execution_log"
    __table_args__ = (
        Index("ix_execution_log_dataset_status", "dataset", "status"),
        Index("ix_execution_log_started", "started_at"),
    )

    execution_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    policy_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    policy_name: Mapped[str] = mapped_column(String(100), nullable=False)
    partition_id: Mapped[int] = mapped_column(Integer, nullable=False)
    dataset: Mapped[str] = mapped_column(String(200), nullable=False)
    partition_name: Mapped[str] = mapped_column(String(200), nullable=False)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(10), nullable=False)

    size_before: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    size_after: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    space_saved: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    compression_ratio: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    location_before: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    location_after: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    codec_before: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    codec_after: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retryable: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    started_at: Mapped[datetime] = mapped_column(nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class PolicyPartitionBlockModel(Base):
    """
    Terminal failure marker for one (policy, partition) pair.

    Only effective while the policy is still at policy_version;
    correcting the policy (version bump) lifts it.
    """

    __tablename__ = "policy_partition_blocks"
    __table_args__ = (
        UniqueConstraint("policy_id", "partition_id", name="uq_policy_partition_blocks_pair"),
    )

    block_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    policy_id: Mapped[int] = mapped_column(Integer, nullable=False)
    partition_id: Mapped[int] = mapped_column(Integer, nullable=False)
    policy_version: Mapped[int] = mapped_column(Integer, nullable=False)

    error_code: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    execution_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    blocked_at: Mapped[datetime] = mapped_column(nullable=False)


class MergeCandidateModel(Base):
    """Fine partition awaiting consolidation into a coarse one."""

    __tablename__ = "merge_candidates"

    candidate_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    dataset: Mapped[str] = mapped_column(String(200), nullable=False)
    partition_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    partition_name: Mapped[str] = mapped_column(String(200), nullable=False)

    target_granularity: Mapped[str] = mapped_column(String(10), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(10), nullable=False, comment="DEFERRED/MERGED/FAILED"
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    merged_into: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
