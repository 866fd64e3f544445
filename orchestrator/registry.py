"""
Orchestrator - Component Registry.

============================================================
RESPONSIBILITY
============================================================
Wires the lifecycle components over one metadata session.

- Creates every repository on the shared session
- Builds the services in dependency order
- Hands the same EngineConfig and clock to all of them

Startup order:
    repositories -> profiles/templates -> refresher -> evaluator
    -> merge scheduler -> execution service

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, SystemClock
from execution_engine.actions import CustomActionRegistry
from execution_engine.adapters.base import MetadataProvider, StorageEngine
from execution_engine.alerting import TelegramAlerter, TelegramAlerterConfig
from execution_engine.config import EngineConfig
from execution_engine.execution_service import ExecutionService
from merge_scheduler.scheduler import MergeScheduler
from policy_engine.conditions import PredicateRegistry
from policy_engine.evaluator import PolicyEvaluator
from policy_engine.service import PolicyService
from storage.repositories.definitions import (
    DatasetRepository,
    PolicyRepository,
    ThresholdProfileRepository,
    TierTemplateRepository,
)
from storage.repositories.execution import (
    EvaluationQueueRepository,
    ExecutionLogRepository,
    PolicyPartitionBlockRepository,
)
from storage.repositories.merges import MergeCandidateRepository
from storage.repositories.partitions import PartitionRepository
from temperature.classifier import TemperatureClassifier
from temperature.profiles import ProfileService, seed_default_profiles
from temperature.refresher import TemperatureRefresher
from tier_planner.templates import TemplateService


logger = logging.getLogger(__name__)


# ============================================================
# COMPONENTS
# ============================================================

@dataclass
class Repositories:
    """Every repository, bound to one session."""

    partitions: PartitionRepository
    queue: EvaluationQueueRepository
    logs: ExecutionLogRepository
    blocks: PolicyPartitionBlockRepository
    merges: MergeCandidateRepository
    policies: PolicyRepository
    datasets: DatasetRepository
    profiles: ThresholdProfileRepository
    templates: TierTemplateRepository

    @classmethod
    def from_session(cls, session: Session) -> "Repositories":
        return cls(
            partitions=PartitionRepository(session),
            queue=EvaluationQueueRepository(session),
            logs=ExecutionLogRepository(session),
            blocks=PolicyPartitionBlockRepository(session),
            merges=MergeCandidateRepository(session),
            policies=PolicyRepository(session),
            datasets=DatasetRepository(session),
            profiles=ThresholdProfileRepository(session),
            templates=TierTemplateRepository(session),
        )


@dataclass
class LifecycleComponents:
    """The wired engine: repositories, services and shared settings."""

    config: EngineConfig
    clock: ClockProtocol
    repositories: Repositories
    storage_engine: StorageEngine
    metadata_provider: MetadataProvider
    alerter: TelegramAlerter
    profile_service: ProfileService
    template_service: TemplateService
    policy_service: PolicyService
    refresher: TemperatureRefresher
    evaluator: PolicyEvaluator
    merge_scheduler: MergeScheduler
    execution_service: ExecutionService


def build_components(
    session: Session,
    storage_engine: StorageEngine,
    metadata_provider: Optional[MetadataProvider] = None,
    config: Optional[EngineConfig] = None,
    clock: Optional[ClockProtocol] = None,
    alerter: Optional[TelegramAlerter] = None,
    custom_actions: Optional[CustomActionRegistry] = None,
    predicates: Optional[PredicateRegistry] = None,
) -> LifecycleComponents:
    """
    Build the full component graph.

    Args:
        session: Metadata store session shared by all repositories
        storage_engine: Engine that performs partition operations
        metadata_provider: Partition listing source; defaults to the
            storage engine when it also implements MetadataProvider
        config: Engine configuration (production defaults if None)
        clock: Time source (SystemClock if None)
        alerter: Alert channel (built from config if None)
        custom_actions: Registered custom action blocks
        predicates: Registered custom conditions
    """
    config = config or EngineConfig.for_production()
    clock = clock or SystemClock()

    if metadata_provider is None:
        if not isinstance(storage_engine, MetadataProvider):
            raise TypeError(
                f"{type(storage_engine).__name__} is not a MetadataProvider; pass one explicitly"
            )
        metadata_provider = storage_engine

    if alerter is None:
        alerter = TelegramAlerter(
            TelegramAlerterConfig(enabled=config.alerting.telegram_enabled),
            clock=clock,
        )

    repos = Repositories.from_session(session)
    seed_default_profiles(repos.profiles)

    refresher = TemperatureRefresher(
        metadata_provider,
        repos.partitions,
        repos.datasets,
        repos.profiles,
        clock,
        classifier=TemperatureClassifier(config.evaluation.use_access_recency),
        staleness_bound_seconds=config.evaluation.access_staleness_bound_seconds,
        default_profile_name=config.evaluation.default_profile_name,
    )
    evaluator = PolicyEvaluator(
        repos.policies,
        repos.partitions,
        repos.queue,
        repos.blocks,
        repos.profiles,
        clock,
        config,
        predicates=predicates,
    )
    merge_scheduler = MergeScheduler(
        storage_engine,
        repos.partitions,
        repos.merges,
        repos.datasets,
        repos.templates,
        repos.queue,
        clock,
        config,
    )
    execution_service = ExecutionService(
        storage_engine,
        repos.policies,
        repos.partitions,
        repos.queue,
        repos.logs,
        repos.blocks,
        repos.datasets,
        repos.templates,
        clock,
        config,
        alerter=alerter,
        merge_scheduler=merge_scheduler if config.merge.enabled else None,
        custom_actions=custom_actions,
    )

    return LifecycleComponents(
        config=config,
        clock=clock,
        repositories=repos,
        storage_engine=storage_engine,
        metadata_provider=metadata_provider,
        alerter=alerter,
        profile_service=ProfileService(repos.profiles),
        template_service=TemplateService(repos.templates),
        policy_service=PolicyService(repos.policies, repos.datasets, repos.profiles, repos.blocks),
        refresher=refresher,
        evaluator=evaluator,
        merge_scheduler=merge_scheduler,
        execution_service=execution_service,
    )
