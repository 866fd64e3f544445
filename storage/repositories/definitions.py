"""
Definition Repositories.

============================================================
PURPOSE
============================================================
Persistence for threshold profiles, tier templates, datasets
and policies. Rows are converted to the core dataclasses on the
way out, so engines never touch ORM objects for definitions.

Validation happens before these methods are called (builders
and services); the database check constraints are the last
line, not the first.

============================================================
"""

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from core.types import (
    ActionParameters,
    ActionType,
    Dataset,
    Granularity,
    Policy,
    PolicyConditions,
    SizeComparison,
    Temperature,
    ThresholdProfile,
    TierDefinition,
    TierTemplate,
)
from storage.models import (
    DatasetModel,
    PolicyModel,
    ThresholdProfileModel,
    TierDefinitionModel,
    TierTemplateModel,
)
from storage.repositories.base import BaseRepository


# ============================================================
# THRESHOLD PROFILES
# ============================================================

class ThresholdProfileRepository(BaseRepository[ThresholdProfileModel]):
    """Threshold profiles keyed by name."""

    def __init__(self, session: Session):
        super().__init__(session, ThresholdProfileModel, "ThresholdProfileRepository")

    def save(self, profile: ThresholdProfile) -> ThresholdProfile:
        """Insert or update a profile by name."""
        model = self._model_by_name(profile.name)
        if model is None:
            model = ThresholdProfileModel(name=profile.name)
        model.hot_days = profile.hot_days
        model.warm_days = profile.warm_days
        model.cold_days = profile.cold_days
        model.description = profile.description
        self._save(model, "save_profile", {"field": "name", "value": profile.name})
        self._logger.info(
            f"Saved threshold profile {profile.name} "
            f"({profile.hot_days}/{profile.warm_days}/{profile.cold_days})"
        )
        return profile

    def get(self, name: str) -> Optional[ThresholdProfile]:
        model = self._model_by_name(name)
        return self._to_record(model) if model else None

    def exists(self, name: str) -> bool:
        return self._model_by_name(name) is not None

    def list_all(self) -> List[ThresholdProfile]:
        stmt = select(ThresholdProfileModel).order_by(ThresholdProfileModel.name)
        return [self._to_record(m) for m in self._execute_query(stmt)]

    def _model_by_name(self, name: str) -> Optional[ThresholdProfileModel]:
        stmt = select(ThresholdProfileModel).where(ThresholdProfileModel.name == name)
        return self._execute_scalar(stmt)

    @staticmethod
    def _to_record(model: ThresholdProfileModel) -> ThresholdProfile:
        return ThresholdProfile(
            name=model.name,
            hot_days=model.hot_days,
            warm_days=model.warm_days,
            cold_days=model.cold_days,
            description=model.description or "",
        )


# ============================================================
# TIER TEMPLATES
# ============================================================

class TierTemplateRepository(BaseRepository[TierTemplateModel]):
    """Tier templates with their three tier definitions."""

    def __init__(self, session: Session):
        super().__init__(session, TierTemplateModel, "TierTemplateRepository")

    def save(self, template: TierTemplate) -> TierTemplate:
        """
        Insert or replace a template by name.

        The template must already have passed validate_template().
        """
        model = self._model_by_name(template.name)
        if model is None:
            model = TierTemplateModel(name=template.name)
        model.description = template.description
        existing = {row.tier: row for row in model.tiers}
        for definition in template.tiers.values():
            row = existing.get(definition.tier.value)
            if row is None:
                row = TierDefinitionModel(tier=definition.tier.value)
                model.tiers.append(row)
            row.granularity = definition.granularity.value
            row.location = definition.location
            row.codec = definition.codec
            row.age_days = definition.age_days
            row.age_months = definition.age_months
        self._save(model, "save_template", {"field": "name", "value": template.name})
        self._logger.info(f"Saved tier template {template.name}")
        return template

    def get(self, name: str) -> Optional[TierTemplate]:
        model = self._model_by_name(name)
        return self._to_record(model) if model else None

    def list_all(self) -> List[TierTemplate]:
        stmt = select(TierTemplateModel).order_by(TierTemplateModel.name)
        return [self._to_record(m) for m in self._execute_query(stmt)]

    def _model_by_name(self, name: str) -> Optional[TierTemplateModel]:
        stmt = select(TierTemplateModel).where(TierTemplateModel.name == name)
        return self._execute_scalar(stmt)

    @staticmethod
    def _to_record(model: TierTemplateModel) -> TierTemplate:
        tiers = {}
        for row in model.tiers:
            tier = Temperature(row.tier)
            tiers[tier] = TierDefinition(
                tier=tier,
                granularity=Granularity(row.granularity),
                location=row.location,
                codec=row.codec,
                age_days=row.age_days,
                age_months=row.age_months,
            )
        return TierTemplate(name=model.name, tiers=tiers, description=model.description or "")


# ============================================================
# DATASETS
# ============================================================

class DatasetRepository(BaseRepository[DatasetModel]):
    """Registered datasets."""

    def __init__(self, session: Session):
        super().__init__(session, DatasetModel, "DatasetRepository")

    def register(self, dataset: Dataset) -> Dataset:
        """Insert or update a dataset registration."""
        model = self._model_by_name(dataset.name)
        if model is None:
            model = DatasetModel(name=dataset.name)
        model.partition_column = dataset.partition_column
        model.template_name = dataset.template_name
        model.description = dataset.description
        self._save(model, "register_dataset", {"field": "name", "value": dataset.name})
        return dataset

    def get(self, name: str) -> Optional[Dataset]:
        model = self._model_by_name(name)
        if model is None:
            return None
        return Dataset(
            name=model.name,
            partition_column=model.partition_column,
            template_name=model.template_name,
            description=model.description or "",
        )

    def exists(self, name: str) -> bool:
        return self._model_by_name(name) is not None

    def list_names(self) -> List[str]:
        stmt = select(DatasetModel).order_by(DatasetModel.name)
        return [m.name for m in self._execute_query(stmt)]

    def _model_by_name(self, name: str) -> Optional[DatasetModel]:
        stmt = select(DatasetModel).where(DatasetModel.name == name)
        return self._execute_scalar(stmt)


# ============================================================
# POLICIES
# ============================================================

class PolicyRepository(BaseRepository[PolicyModel]):
    """
    Lifecycle policies.

    Policies are never deleted; they are paused (enabled=False).
    """

    def __init__(self, session: Session):
        super().__init__(session, PolicyModel, "PolicyRepository")

    def create(self, policy: Policy) -> Policy:
        """Persist a new policy and return it with its id."""
        model = PolicyModel(name=policy.name, version=1)
        self._apply(model, policy)
        self._save(model, "create_policy", {"field": "name", "value": policy.name})
        self._logger.info(
            f"Created policy {policy.name} (id={model.policy_id}, "
            f"{policy.action.value} on {policy.dataset}, priority={policy.priority})"
        )
        return self._to_record(model)

    def update(self, policy: Policy) -> Policy:
        """
        Overwrite a policy and bump its version.

        Raises:
            RecordNotFoundError: If policy_id is unknown
        """
        model = self._get_by_id_or_raise(policy.policy_id, "policy_id")
        self._apply(model, policy)
        model.version = model.version + 1
        self._save(model, "update_policy", {"field": "name", "value": policy.name})
        self._logger.info(f"Updated policy {model.name} to version {model.version}")
        return self._to_record(model)

    def set_enabled(self, policy_id: int, enabled: bool) -> bool:
        """Pause or resume a policy; returns False if it does not exist."""
        stmt = (
            update(PolicyModel)
            .where(PolicyModel.policy_id == policy_id)
            .values(enabled=enabled)
        )
        return self._execute_update(stmt, "set_enabled") == 1

    def get(self, policy_id: int) -> Optional[Policy]:
        model = self._get_by_id(policy_id)
        return self._to_record(model) if model else None

    def get_or_raise(self, policy_id: int) -> Policy:
        return self._to_record(self._get_by_id_or_raise(policy_id, "policy_id"))

    def get_by_name(self, name: str) -> Optional[Policy]:
        stmt = select(PolicyModel).where(PolicyModel.name == name)
        model = self._execute_scalar(stmt)
        return self._to_record(model) if model else None

    def list_all(self, dataset: Optional[str] = None) -> List[Policy]:
        """All policies in evaluation order (priority, then id)."""
        stmt = select(PolicyModel).order_by(PolicyModel.priority, PolicyModel.policy_id)
        if dataset is not None:
            stmt = stmt.where(PolicyModel.dataset == dataset)
        return [self._to_record(m) for m in self._execute_query(stmt)]

    def list_enabled(self, dataset: Optional[str] = None) -> List[Policy]:
        return [p for p in self.list_all(dataset) if p.enabled]

    def current_version(self, policy_id: int) -> Optional[int]:
        model = self._get_by_id(policy_id)
        return model.version if model else None

    # --------------------------------------------------------
    # CONVERSION
    # --------------------------------------------------------

    @staticmethod
    def _apply(model: PolicyModel, policy: Policy) -> None:
        conditions = policy.conditions
        params = policy.params
        model.name = policy.name
        model.dataset = policy.dataset
        model.enabled = policy.enabled
        model.priority = policy.priority
        model.age_days = conditions.age_days
        model.age_months = conditions.age_months
        model.temperature = conditions.temperature.value if conditions.temperature else None
        model.size_threshold_mb = conditions.size_threshold_mb
        model.size_comparison = conditions.size_comparison.value
        model.custom_predicate = conditions.custom_predicate
        model.action_type = policy.action.value
        model.codec = params.codec
        model.location = params.location
        model.custom_action = params.custom_action
        model.rebuild_indexes = params.rebuild_indexes
        model.gather_stats = params.gather_stats
        model.parallel_degree = params.parallel_degree
        model.profile_name = policy.profile_name
        model.description = policy.description

    @staticmethod
    def _to_record(model: PolicyModel) -> Policy:
        return Policy(
            policy_id=model.policy_id,
            name=model.name,
            dataset=model.dataset,
            action=ActionType(model.action_type),
            conditions=PolicyConditions(
                age_days=model.age_days,
                age_months=model.age_months,
                temperature=Temperature(model.temperature) if model.temperature else None,
                size_threshold_mb=model.size_threshold_mb,
                size_comparison=SizeComparison(model.size_comparison),
                custom_predicate=model.custom_predicate,
            ),
            params=ActionParameters(
                codec=model.codec,
                location=model.location,
                custom_action=model.custom_action,
                rebuild_indexes=model.rebuild_indexes,
                gather_stats=model.gather_stats,
                parallel_degree=model.parallel_degree,
            ),
            priority=model.priority,
            enabled=model.enabled,
            profile_name=model.profile_name,
            description=model.description or "",
            version=model.version,
        )
