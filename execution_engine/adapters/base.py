"""
Execution Engine - Storage Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interfaces to the systems the lifecycle engine drives.

StorageEngine
    Performs partition DDL-equivalents: create, recompress,
    relocate, seal, drop, truncate, merge, custom blocks.

MetadataProvider
    Lists partitions and reports their size and access recency.

DESIGN PRINCIPLES:
- Engine-agnostic interface
- Failures are raised as ActionError with a registry code
- Fully testable with the in-memory adapter

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from core.types import AccessRecency, ActionParameters, Partition, PartitionMetrics
from tier_planner.planner import PlannedPartition

from ..types import ActionResult


logger = logging.getLogger(__name__)


# ============================================================
# STORAGE ENGINE
# ============================================================

class StorageEngine(ABC):
    """
    Abstract storage engine.

    Every action method receives the partition as last recorded
    in the metadata store and returns its state afterwards.

    Raises (all actions):
        ActionError: With an error code from execution_engine.errors
    """

    @property
    @abstractmethod
    def engine_id(self) -> str:
        """Get engine identifier."""
        pass

    @abstractmethod
    async def create_partitions(
        self,
        dataset: str,
        planned: List[PlannedPartition],
    ) -> List[Partition]:
        """
        Create the partitions of a boundary plan.

        Returns:
            The created partitions as the engine reports them
        """
        pass

    @abstractmethod
    async def set_codec(
        self,
        partition: Partition,
        codec: str,
        options: ActionParameters,
    ) -> ActionResult:
        """Recompress a partition in place."""
        pass

    @abstractmethod
    async def relocate(
        self,
        partition: Partition,
        location: str,
        codec: Optional[str],
        options: ActionParameters,
    ) -> ActionResult:
        """Move a partition to another location, optionally recompressing."""
        pass

    @abstractmethod
    async def seal_read_only(self, partition: Partition) -> ActionResult:
        """Make a partition read-only."""
        pass

    @abstractmethod
    async def drop(self, partition: Partition) -> ActionResult:
        """Remove a partition and its data."""
        pass

    @abstractmethod
    async def truncate(self, partition: Partition) -> ActionResult:
        """Remove a partition's rows, keeping its structure."""
        pass

    @abstractmethod
    async def merge(self, coarse: Partition, fine: Partition) -> ActionResult:
        """
        Absorb a boundary-adjacent fine partition into a coarse one.

        Returns:
            State of the coarse partition after the merge
        """
        pass

    @abstractmethod
    async def run_custom(self, partition: Partition, name: str, block: str) -> ActionResult:
        """Run an operator-supplied action block against a partition."""
        pass


# ============================================================
# METADATA PROVIDER
# ============================================================

class MetadataProvider(ABC):
    """Abstract source of partition metadata."""

    @abstractmethod
    async def list_partitions(self, dataset: str) -> List[Partition]:
        """Partitions of a dataset with their current location, codec and size."""
        pass

    @abstractmethod
    async def partition_metrics(self, dataset: str, name: str) -> Optional[PartitionMetrics]:
        """Row and byte counts, or None if the partition is unknown."""
        pass

    @abstractmethod
    async def access_recency(self, dataset: str, name: str) -> Optional[AccessRecency]:
        """Last read/write times, or None when access is not tracked."""
        pass
