"""
Policy Engine - Policy Service.

Validated write interface for policies. Policies are never
deleted, only paused; every update bumps the version, which
lifts terminal-failure blocks recorded under earlier versions.
"""

import logging
from typing import List, Optional

from core.types import Policy
from policy_engine.builder import validate_policy
from storage.repositories.definitions import (
    DatasetRepository,
    PolicyRepository,
    ThresholdProfileRepository,
)
from storage.repositories.exceptions import DuplicateRecordError, RecordNotFoundError
from storage.repositories.execution import PolicyPartitionBlockRepository


logger = logging.getLogger(__name__)


class PolicyService:
    """Create, update, pause and resume policies."""

    def __init__(
        self,
        policy_repo: PolicyRepository,
        dataset_repo: DatasetRepository,
        profile_repo: ThresholdProfileRepository,
        block_repo: PolicyPartitionBlockRepository,
    ):
        self._policies = policy_repo
        self._datasets = dataset_repo
        self._profiles = profile_repo
        self._blocks = block_repo

    def _validate(self, policy: Policy) -> None:
        validate_policy(
            policy,
            dataset_exists=self._datasets.exists,
            profile_exists=self._profiles.exists,
        )

    def create_policy(self, policy: Policy) -> Policy:
        """
        Validate and persist a new policy.

        Raises:
            PolicyValidationError: If the policy is invalid
            DuplicateRecordError: If the name is taken
        """
        self._validate(policy)
        if self._policies.get_by_name(policy.name) is not None:
            raise DuplicateRecordError("PolicyRepository", "name", policy.name)
        return self._policies.create(policy)

    def update_policy(self, policy: Policy) -> Policy:
        """
        Validate and overwrite an existing policy.

        Raises:
            PolicyValidationError: If the policy is invalid
            RecordNotFoundError: If the policy does not exist
        """
        self._validate(policy)
        updated = self._policies.update(policy)
        cleared = self._blocks.clear(updated.policy_id)
        if cleared:
            logger.info(
                f"Policy {updated.name} corrected to v{updated.version}; "
                f"{cleared} block(s) lifted"
            )
        return updated

    def pause_policy(self, policy_id: int) -> None:
        self._set_enabled(policy_id, False)

    def resume_policy(self, policy_id: int) -> None:
        self._set_enabled(policy_id, True)

    def _set_enabled(self, policy_id: int, enabled: bool) -> None:
        if not self._policies.set_enabled(policy_id, enabled):
            raise RecordNotFoundError("PolicyRepository", policy_id, "policy_id")
        logger.info(f"Policy {policy_id} {'resumed' if enabled else 'paused'}")

    def clear_block(self, policy_id: int, partition_id: Optional[int] = None) -> int:
        return self._blocks.clear(policy_id, partition_id)

    def get_policy(self, policy_id: int) -> Optional[Policy]:
        return self._policies.get(policy_id)

    def list_policies(self, dataset: Optional[str] = None) -> List[Policy]:
        return self._policies.list_all(dataset)
