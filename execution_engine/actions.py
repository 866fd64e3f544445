"""
Execution Engine - Action Dispatch.

============================================================
PURPOSE
============================================================
Translate a policy action into the storage-engine call that
performs it.

    COMPRESS  -> set_codec(codec)
    MOVE      -> relocate(location, codec)
    READ_ONLY -> seal_read_only()
    DROP      -> drop()
    TRUNCATE  -> truncate()
    CUSTOM    -> run_custom(block of a registered custom action)

Checks before dispatch (terminal errors):
- Required action parameters present (INVALID_PARAMETERS)
- MOVE target belongs to the dataset's tier template, when the
  dataset has one (INVALID_TARGET_LOCATION)
- CUSTOM action registered (ACTION_MISMATCH)

============================================================
"""

import logging
from typing import Dict, List, Optional

from core.exceptions import ActionError
from core.types import ActionType, Partition, Policy
from storage.repositories.definitions import DatasetRepository, TierTemplateRepository

from .adapters.base import StorageEngine
from .types import ActionResult


logger = logging.getLogger(__name__)


# ============================================================
# CUSTOM ACTIONS
# ============================================================

class CustomActionRegistry:
    """Operator-supplied action blocks, by name."""

    def __init__(self):
        self._blocks: Dict[str, str] = {}

    def register(self, name: str, block: str) -> None:
        if not name or not block:
            raise ValueError("Custom action needs a name and a block")
        self._blocks[name] = block
        logger.info(f"Registered custom action {name}")

    def unregister(self, name: str) -> None:
        self._blocks.pop(name, None)

    def get(self, name: str) -> Optional[str]:
        return self._blocks.get(name)

    def names(self) -> List[str]:
        return sorted(self._blocks)

    def __contains__(self, name: str) -> bool:
        return name in self._blocks


# ============================================================
# DISPATCHER
# ============================================================

class ActionDispatcher:
    """Runs the storage-engine call for a policy's action."""

    def __init__(
        self,
        storage_engine: StorageEngine,
        dataset_repo: DatasetRepository,
        template_repo: TierTemplateRepository,
        custom_actions: Optional[CustomActionRegistry] = None,
    ):
        self._engine = storage_engine
        self._datasets = dataset_repo
        self._templates = template_repo
        self._custom = custom_actions or CustomActionRegistry()

    @property
    def custom_actions(self) -> CustomActionRegistry:
        return self._custom

    def check(self, policy: Policy, partition: Partition) -> None:
        """
        Validate the action against the partition before anything runs.

        Raises:
            ActionError: With a terminal error code
        """
        params = policy.params
        action = policy.action

        if action == ActionType.COMPRESS and not params.codec:
            raise self._error(policy, partition, "INVALID_PARAMETERS", "COMPRESS requires a codec")
        if action == ActionType.MOVE:
            if not params.location:
                raise self._error(policy, partition, "INVALID_PARAMETERS", "MOVE requires a location")
            allowed = self._template_locations(partition.dataset)
            if allowed is not None and params.location not in allowed:
                raise self._error(
                    policy,
                    partition,
                    "INVALID_TARGET_LOCATION",
                    f"Location {params.location} is not part of the tier template "
                    f"of {partition.dataset} ({', '.join(allowed) or 'no locations'})",
                )
        if action == ActionType.CUSTOM:
            name = params.custom_action
            if not name or name not in self._custom:
                raise self._error(
                    policy, partition, "ACTION_MISMATCH", f"Custom action {name!r} is not registered",
                )

    async def dispatch(self, policy: Policy, partition: Partition) -> ActionResult:
        """
        Perform the policy's action on a partition.

        Raises:
            ActionError: From the checks or from the storage engine
        """
        self.check(policy, partition)
        params = policy.params
        action = policy.action
        logger.info(
            f"Dispatching {action.value} on {partition.dataset}.{partition.name} "
            f"for policy {policy.name}"
        )

        if action == ActionType.COMPRESS:
            return await self._engine.set_codec(partition, params.codec, params)
        if action == ActionType.MOVE:
            return await self._engine.relocate(partition, params.location, params.codec, params)
        if action == ActionType.READ_ONLY:
            return await self._engine.seal_read_only(partition)
        if action == ActionType.DROP:
            result = await self._engine.drop(partition)
            result.removed = True
            return result
        if action == ActionType.TRUNCATE:
            return await self._engine.truncate(partition)
        if action == ActionType.CUSTOM:
            block = self._custom.get(params.custom_action)
            return await self._engine.run_custom(partition, params.custom_action, block)

        raise self._error(policy, partition, "ACTION_MISMATCH", f"Unsupported action {action.value}")

    def _template_locations(self, dataset: str) -> Optional[List[str]]:
        registered = self._datasets.get(dataset)
        if registered is None or not registered.template_name:
            return None
        template = self._templates.get(registered.template_name)
        if template is None:
            return None
        return template.locations

    @staticmethod
    def _error(policy: Policy, partition: Partition, code: str, message: str) -> ActionError:
        return ActionError(
            message,
            error_code=code,
            partition_id=partition.partition_id,
            policy_id=policy.policy_id,
        )
