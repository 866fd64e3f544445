"""
Temperature Classifier - Scheduled Refresh.

============================================================
PURPOSE
============================================================
Keep partition metadata and temperatures current.

A refresh pass, per dataset:
1. Lists partitions from the metadata provider and upserts them
2. Pulls access recency for each partition
3. Classifies under the global default profile and records
   temperature, source and refresh time

Access-based temperatures are only as fresh as the last pass;
staleness() reports time since refresh against the configured
bound so operators can see it.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from core.clock import ClockProtocol
from core.constants import DEFAULT_PROFILE_NAME
from core.types import AccessKind, Partition
from storage.repositories.definitions import DatasetRepository, ThresholdProfileRepository
from storage.repositories.partitions import PartitionRepository
from temperature.classifier import TemperatureClassifier
from temperature.profiles import default_profile


logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Outcome of one refresh pass."""

    datasets: int = 0
    partitions: int = 0
    access_signals: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    refreshed_at: Optional[datetime] = None


@dataclass
class Staleness:
    """Time since the last access refresh."""

    last_refresh_at: Optional[datetime]
    seconds_since_refresh: Optional[float]
    bound_seconds: int
    is_stale: bool


class TemperatureRefresher:
    """Periodic metadata and temperature refresh."""

    def __init__(
        self,
        metadata_provider,
        partition_repo: PartitionRepository,
        dataset_repo: DatasetRepository,
        profile_repo: ThresholdProfileRepository,
        clock: ClockProtocol,
        classifier: Optional[TemperatureClassifier] = None,
        staleness_bound_seconds: int = 86400,
        default_profile_name: str = DEFAULT_PROFILE_NAME,
    ):
        self._provider = metadata_provider
        self._partitions = partition_repo
        self._datasets = dataset_repo
        self._profiles = profile_repo
        self._clock = clock
        self._classifier = classifier or TemperatureClassifier()
        self._staleness_bound = staleness_bound_seconds
        self.default_profile_name = default_profile_name
        self._last_refresh_at: Optional[datetime] = None

    async def refresh(self, dataset: Optional[str] = None) -> RefreshResult:
        """
        Refresh one dataset, or every registered dataset.

        A dataset that fails is recorded in the result; the pass
        carries on with the rest.
        """
        result = RefreshResult()
        names = [dataset] if dataset else self._datasets.list_names()
        profile = default_profile(self._profiles, self.default_profile_name)

        for name in names:
            try:
                await self._refresh_dataset(name, profile, result)
                result.datasets += 1
            except Exception as e:
                logger.error(f"Temperature refresh failed for {name}: {e}", exc_info=True)
                result.errors.append(f"{name}: {e}")

        now = self._clock.now()
        result.refreshed_at = now
        self._last_refresh_at = now
        logger.info(
            f"Temperature refresh: {result.partitions} partitions in {result.datasets} datasets, "
            f"{result.access_signals} with access recency, {len(result.warnings)} warnings"
        )
        return result

    async def _refresh_dataset(self, dataset: str, profile, result: RefreshResult) -> None:
        reported: List[Partition] = await self._provider.list_partitions(dataset)
        for partition in reported:
            recency = await self._provider.access_recency(dataset, partition.name)
            if recency is not None:
                partition.last_read_at = recency.last_read or partition.last_read_at
                partition.last_write_at = recency.last_write or partition.last_write_at
                if recency.last_read or recency.last_write:
                    result.access_signals += 1

            stored = self._partitions.upsert(partition)
            classification = self._classifier.classify(stored, profile, self._clock.now())
            self._partitions.set_temperature(
                stored.partition_id,
                classification.temperature,
                classification.source,
                self._clock.now(),
                classification.warning,
            )
            if classification.warning:
                result.warnings.append(classification.warning)
            result.partitions += 1

    def record_access(self, partition_id: int, kind: AccessKind) -> bool:
        """Record a read or write; the partition becomes HOT immediately."""
        recorded = self._partitions.record_access(partition_id, kind, self._clock.now())
        if not recorded:
            logger.warning(f"Access recorded for unknown partition {partition_id}")
        return recorded

    def staleness(self) -> Staleness:
        last = self._last_refresh_at or self._partitions.last_temperature_refresh()
        if last is None:
            return Staleness(None, None, self._staleness_bound, True)
        seconds = (self._clock.now() - last).total_seconds()
        return Staleness(last, seconds, self._staleness_bound, seconds > self._staleness_bound)
