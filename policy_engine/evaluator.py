"""
Policy Engine - Evaluator.

============================================================
PURPOSE
============================================================
Match partitions against policies and maintain the evaluation
queue.

FLOW (per pass):
1. Purge PENDING entries older than the queue retention
2. Load policies in evaluation order (priority, policy id)
3. For each enabled policy, resolve its threshold profile and
   check every partition of its dataset
4. Upsert one queue row per (policy, partition)

QUEUE RULES:
- Busy partitions are skipped and counted, never evaluated
- RUNNING entries are never touched
- Blocked pairs (terminal failure under the current policy
  version) never become PENDING; the reason records the block
- SUCCESS and FAILED entries return to PENDING only after the
  minimum re-evaluation interval since their last execution
- Ineligible and blocked results move PENDING and FAILED entries
  to SKIPPED with the reason; SUCCESS entries keep their status

A failure on one partition is logged and counted; the pass
continues. Failure to read policies is a configuration error.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.clock import ClockProtocol
from core.exceptions import ConfigurationError
from core.types import Partition, Policy, QueueStatus
from execution_engine.config import EngineConfig
from execution_engine.state_machine import TransitionGuard
from policy_engine.conditions import PredicateRegistry, check_conditions
from storage.repositories.definitions import PolicyRepository, ThresholdProfileRepository
from storage.repositories.exceptions import RepositoryException
from storage.repositories.execution import (
    EvaluationQueueRepository,
    PolicyPartitionBlockRepository,
)
from storage.repositories.partitions import PartitionRepository
from temperature.classifier import TemperatureClassifier
from temperature.profiles import resolve_profile


logger = logging.getLogger(__name__)

DISABLED_REASON = "Policy is disabled"


# ============================================================
# SUMMARY
# ============================================================

@dataclass
class EvaluationSummary:
    """Counters of one evaluation pass."""

    policies: int = 0
    evaluated: int = 0
    eligible: int = 0
    queued: int = 0
    ineligible: int = 0
    skipped_busy: int = 0
    skipped_blocked: int = 0
    skipped_interval: int = 0
    skipped_running: int = 0
    errors: int = 0
    purged: int = 0
    skipped_policies: Dict[str, str] = field(default_factory=dict)
    """Policy name -> reason it was not evaluated."""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def absorb(self, other: "EvaluationSummary") -> None:
        for name in (
            "policies", "evaluated", "eligible", "queued", "ineligible",
            "skipped_busy", "skipped_blocked", "skipped_interval",
            "skipped_running", "errors", "purged",
        ):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.skipped_policies.update(other.skipped_policies)

    def to_dict(self) -> Dict:
        return {
            "policies": self.policies,
            "evaluated": self.evaluated,
            "eligible": self.eligible,
            "queued": self.queued,
            "ineligible": self.ineligible,
            "skipped_busy": self.skipped_busy,
            "skipped_blocked": self.skipped_blocked,
            "skipped_interval": self.skipped_interval,
            "skipped_running": self.skipped_running,
            "errors": self.errors,
            "purged": self.purged,
            "skipped_policies": dict(self.skipped_policies),
        }


# ============================================================
# EVALUATOR
# ============================================================

class PolicyEvaluator:
    """Evaluates policies and fills the queue."""

    def __init__(
        self,
        policy_repo: PolicyRepository,
        partition_repo: PartitionRepository,
        queue_repo: EvaluationQueueRepository,
        block_repo: PolicyPartitionBlockRepository,
        profile_repo: ThresholdProfileRepository,
        clock: ClockProtocol,
        config: EngineConfig,
        predicates: Optional[PredicateRegistry] = None,
    ):
        self._policies = policy_repo
        self._partitions = partition_repo
        self._queue = queue_repo
        self._blocks = block_repo
        self._profiles = profile_repo
        self._clock = clock
        self._config = config
        self._predicates = predicates or PredicateRegistry()

    @property
    def predicates(self) -> PredicateRegistry:
        return self._predicates

    # --------------------------------------------------------
    # ENTRY POINTS
    # --------------------------------------------------------

    def evaluate_all(self) -> EvaluationSummary:
        """Evaluate every policy."""
        summary = self._begin_pass()
        for policy in self._load_policies():
            summary.absorb(self._evaluate_policy(policy))
        return self._finish_pass(summary, "all policies")

    def evaluate_dataset(self, dataset: str) -> EvaluationSummary:
        """Evaluate the policies of one dataset."""
        summary = self._begin_pass()
        for policy in self._load_policies(dataset):
            summary.absorb(self._evaluate_policy(policy))
        return self._finish_pass(summary, f"dataset {dataset}")

    def evaluate_policy(self, policy: Policy) -> EvaluationSummary:
        """Evaluate a single policy."""
        summary = self._begin_pass()
        summary.absorb(self._evaluate_policy(policy))
        return self._finish_pass(summary, f"policy {policy.name}")

    # --------------------------------------------------------
    # PASS
    # --------------------------------------------------------

    def _begin_pass(self) -> EvaluationSummary:
        now = self._clock.now()
        summary = EvaluationSummary(started_at=now)
        retention = timedelta(days=self._config.evaluation.queue_retention_days)
        summary.purged = self._queue.purge_stale(now - retention)
        return summary

    def _finish_pass(self, summary: EvaluationSummary, scope: str) -> EvaluationSummary:
        summary.completed_at = self._clock.now()
        logger.info(
            f"Evaluated {scope}: {summary.policies} policies, {summary.evaluated} partitions, "
            f"{summary.eligible} eligible, {summary.queued} queued, "
            f"skipped busy={summary.skipped_busy} blocked={summary.skipped_blocked} "
            f"interval={summary.skipped_interval}, errors={summary.errors}"
        )
        return summary

    def _load_policies(self, dataset: Optional[str] = None) -> List[Policy]:
        try:
            return self._policies.list_all(dataset)
        except RepositoryException as e:
            raise ConfigurationError(
                f"Cannot read lifecycle policies: {e}",
                config_key="lifecycle_policies",
                cause=e,
            ) from e

    def _evaluate_policy(self, policy: Policy) -> EvaluationSummary:
        summary = EvaluationSummary()
        if not policy.enabled:
            summary.skipped_policies[policy.name] = DISABLED_REASON
            logger.debug(f"Skipping policy {policy.name}: {DISABLED_REASON}")
            return summary

        summary.policies = 1
        profile = resolve_profile(
            policy, self._profiles, self._config.evaluation.default_profile_name
        )
        classifier = TemperatureClassifier(self._config.evaluation.use_access_recency)

        for partition in self._partitions.list_for_dataset(policy.dataset):
            if partition.busy:
                summary.skipped_busy += 1
                logger.debug(
                    f"Skipping busy partition {partition.dataset}.{partition.name} "
                    f"for policy {policy.name}"
                )
                continue
            try:
                self._evaluate_pair(policy, partition, profile, classifier, summary)
            except Exception as e:
                summary.errors += 1
                logger.error(
                    f"Evaluation of policy {policy.name} on {partition.dataset}.{partition.name} "
                    f"failed: {e}",
                    exc_info=True,
                )
        return summary

    def _evaluate_pair(
        self,
        policy: Policy,
        partition: Partition,
        profile,
        classifier: TemperatureClassifier,
        summary: EvaluationSummary,
    ) -> None:
        now = self._clock.now()
        existing = self._queue.get(policy.policy_id, partition.partition_id)
        current = QueueStatus(existing.status) if existing else None

        if current == QueueStatus.RUNNING:
            summary.skipped_running += 1
            return

        classification = classifier.classify(partition, profile, now)
        eligible, reason = check_conditions(
            policy, partition, classification, profile, self._predicates
        )
        summary.evaluated += 1

        block = self._blocks.active_block(policy.policy_id, partition.partition_id, policy.version)
        if block is not None:
            summary.skipped_blocked += 1
            desired = QueueStatus.SKIPPED
            eligible = False
            reason = f"Blocked after {block.error_code}: {block.reason}"
        elif not eligible:
            summary.ineligible += 1
            desired = QueueStatus.SKIPPED
        else:
            summary.eligible += 1
            desired = QueueStatus.PENDING
            if current in (QueueStatus.SUCCESS, QueueStatus.FAILED):
                last = existing.last_executed_at
                interval = timedelta(hours=self._config.evaluation.min_reevaluation_hours)
                if last is not None and now - last < interval:
                    summary.skipped_interval += 1
                    desired = current
                    reason = (
                        f"Re-evaluation interval not elapsed "
                        f"(last execution {last.isoformat()})"
                    )

        status = self._guarded(current, desired)
        if status == QueueStatus.PENDING:
            summary.queued += 1
        self._queue.record(
            policy.policy_id,
            partition.partition_id,
            eligible,
            reason,
            status,
            now,
        )

    @staticmethod
    def _guarded(current: Optional[QueueStatus], desired: QueueStatus) -> QueueStatus:
        """desired when the transition is allowed, else the current status."""
        if current is None:
            return desired
        allowed, _ = TransitionGuard.can_transition(current, desired)
        return desired if allowed else current
