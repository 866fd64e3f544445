"""
Definition ORM Models.

============================================================
PURPOSE
============================================================
Operator-maintained configuration: threshold profiles, tier
templates, registered datasets and lifecycle policies.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: MUTABLE (validated on every write)
- Source: Operators via the policy/template services
- Consumers: Classifier, evaluator, planner, execution engine

============================================================
MODELS
============================================================
- ThresholdProfileModel: (hot, warm, cold) day triples
- TierTemplateModel / TierDefinitionModel: load-time layouts
- DatasetModel: registered datasets
- PolicyModel: lifecycle policies

============================================================
"""

from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import DEFAULT_PRIORITY, PRIORITY_MAX, PRIORITY_MIN
from storage.models.base import Base, TimestampMixin


class ThresholdProfileModel(Base, TimestampMixin):
    """Named temperature thresholds, strictly ascending."""

    __tablename__ = "threshold_profiles"
    __table_args__ = (
        CheckConstraint(
            "hot_days < warm_days AND warm_days < cold_days",
            name="ck_threshold_profiles_ascending",
        ),
        CheckConstraint("hot_days > 0", name="ck_threshold_profiles_positive"),
    )

    profile_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True, comment="Profile name"
    )

    hot_days: Mapped[int] = mapped_column(Integer, nullable=False)
    warm_days: Mapped[int] = mapped_column(Integer, nullable=False)
    cold_days: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class TierTemplateModel(Base, TimestampMixin):
    """
    Reusable tier layout for initial partition planning.

    ============================================================
    DATA LIFECYCLE
    ============================================================
    - Consumed by the boundary planner at load time
    - Consulted by the execution engine on MOVE (target location
      must belong to a tier) and by the merge scheduler (target
      granularity)
    ============================================================
    """

    __tablename__ = "tier_templates"

    template_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    tiers: Mapped[List["TierDefinitionModel"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class TierDefinitionModel(Base):
    """One HOT/WARM/COLD tier inside a template."""

    __tablename__ = "tier_definitions"
    __table_args__ = (
        UniqueConstraint("template_id", "tier", name="uq_tier_definitions_template_tier"),
    )

    tier_definition_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    template_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tier_templates.template_id", ondelete="CASCADE"),
        nullable=False,
    )

    tier: Mapped[str] = mapped_column(String(10), nullable=False, comment="HOT/WARM/COLD")

    granularity: Mapped[str] = mapped_column(String(10), nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    codec: Mapped[str] = mapped_column(String(100), nullable=False)

    age_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    age_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    template: Mapped[TierTemplateModel] = relationship(back_populates="tiers")


class DatasetModel(Base, TimestampMixin):
    """A registered time-partitioned dataset."""

    __tablename__ = "datasets"

    dataset_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    partition_column: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    template_name: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, comment="Tier template used at load time"
    )

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class PolicyModel(Base, TimestampMixin):
    """
    Lifecycle policy.

    ============================================================
    PURPOSE
    ============================================================
    Trigger conditions (all optional, conjunctive) mapped to one
    action. `version` increases on every update; blocks recorded
    after terminal failures apply to a single version only.
    ============================================================
    """

    __tablename__ = "lifecycle_policies"
    __table_args__ = (
        CheckConstraint(
            f"priority >= {PRIORITY_MIN} AND priority <= {PRIORITY_MAX}",
            name="ck_lifecycle_policies_priority",
        ),
    )

    policy_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    dataset: Mapped[str] = mapped_column(String(200), nullable=False, index=True)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_PRIORITY)

    # Conditions
    age_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    age_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    temperature: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    size_threshold_mb: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    size_comparison: Mapped[str] = mapped_column(String(2), nullable=False, default=">=")
    custom_predicate: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Action
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    codec: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    custom_action: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    rebuild_indexes: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    gather_stats: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    parallel_degree: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    profile_name: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, comment="Threshold profile; NULL = global default"
    )

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
