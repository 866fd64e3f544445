"""
Execution Engine - In-Memory Storage Engine.

============================================================
PURPOSE
============================================================
Storage engine and metadata provider kept entirely in memory,
for tests and dry runs.

FEATURES:
- Configurable latency
- Error injection (next call, or per action)
- Per-codec compression ratios
- In-flight tracking (max concurrency, per-partition overlap)
- Full call history

============================================================
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from core.exceptions import ActionError
from core.types import AccessRecency, ActionParameters, Partition, PartitionMetrics
from tier_planner.planner import PlannedPartition

from ..types import ActionResult
from .base import MetadataProvider, StorageEngine


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class InMemoryEngineConfig:
    """Configuration for the in-memory engine."""

    min_latency_ms: float = 0.0
    """Minimum simulated latency."""

    max_latency_ms: float = 0.0
    """Maximum simulated latency."""

    codec_ratios: Dict[str, float] = field(default_factory=lambda: {
        "LZ4": 0.6,
        "ZSTD": 0.4,
        "GZIP": 0.35,
        "QUERY_HIGH": 0.25,
        "ARCHIVE_HIGH": 0.1,
    })
    """Size factor applied when a partition is compressed with a codec."""

    default_ratio: float = 0.5
    """Size factor for codecs not in codec_ratios."""

    failure_probability: float = 0.0
    """Probability of a STORAGE_BUSY failure on any action."""


# ============================================================
# IN-MEMORY STORAGE ENGINE
# ============================================================

class InMemoryStorageEngine(StorageEngine, MetadataProvider):
    """
    In-memory storage engine for testing.

    Partitions are plain records keyed by (dataset, name);
    sizes are the uncompressed size times the codec ratio.
    """

    def __init__(self, config: Optional[InMemoryEngineConfig] = None):
        self._config = config or InMemoryEngineConfig()

        self._partitions: Dict[Tuple[str, str], Partition] = {}
        self._raw_sizes: Dict[Tuple[str, str], int] = {}
        self._access: Dict[Tuple[str, str], AccessRecency] = {}

        # Error injection
        self._next_error: Optional[Tuple[str, str]] = None
        self._action_errors: Dict[str, Tuple[str, str]] = {}
        self._delays: Dict[str, float] = {}

        # Tracking
        self._calls: List[Tuple[str, str, str]] = []
        self._in_flight: Set[Tuple[str, str]] = set()
        self._in_flight_count = 0
        self.max_in_flight = 0
        self.overlaps: List[Tuple[str, str]] = []

    @property
    def engine_id(self) -> str:
        return "memory"

    # --------------------------------------------------------
    # STORAGE ENGINE
    # --------------------------------------------------------

    async def create_partitions(
        self,
        dataset: str,
        planned: List[PlannedPartition],
    ) -> List[Partition]:
        await self._simulate_latency()
        created = []
        for item in planned:
            partition = Partition(
                dataset=dataset,
                name=item.name,
                lower_bound=item.lower,
                upper_bound=item.upper,
                high_value=item.upper.isoformat(),
                location=item.location or "",
                codec=item.codec,
            )
            self.add_partition(partition)
            created.append(replace(partition))
        self._calls.append(("create_partitions", dataset, str(len(planned))))
        logger.info(f"Created {len(created)} partitions for {dataset}")
        return created

    async def set_codec(
        self,
        partition: Partition,
        codec: str,
        options: ActionParameters,
    ) -> ActionResult:
        async with self._operation("set_codec", partition) as stored:
            stored.codec = codec
            stored.byte_size = self._compressed_size(partition, codec)
            return ActionResult(codec=codec, byte_size=stored.byte_size)

    async def relocate(
        self,
        partition: Partition,
        location: str,
        codec: Optional[str],
        options: ActionParameters,
    ) -> ActionResult:
        async with self._operation("relocate", partition) as stored:
            stored.location = location
            if codec:
                stored.codec = codec
                stored.byte_size = self._compressed_size(partition, codec)
            return ActionResult(location=location, codec=stored.codec, byte_size=stored.byte_size)

    async def seal_read_only(self, partition: Partition) -> ActionResult:
        async with self._operation("seal_read_only", partition) as stored:
            stored.read_only = True
            return ActionResult(read_only=True, byte_size=stored.byte_size)

    async def drop(self, partition: Partition) -> ActionResult:
        async with self._operation("drop", partition):
            key = (partition.dataset, partition.name)
            self._partitions.pop(key, None)
            self._raw_sizes.pop(key, None)
            self._access.pop(key, None)
            return ActionResult(byte_size=0, row_count=0, removed=True)

    async def truncate(self, partition: Partition) -> ActionResult:
        async with self._operation("truncate", partition) as stored:
            stored.byte_size = 0
            stored.row_count = 0
            self._raw_sizes[(partition.dataset, partition.name)] = 0
            return ActionResult(byte_size=0, row_count=0)

    async def merge(self, coarse: Partition, fine: Partition) -> ActionResult:
        async with self._operation("merge", coarse) as stored:
            fine_key = (fine.dataset, fine.name)
            absorbed = self._partitions.get(fine_key)
            if absorbed is None:
                raise ActionError(
                    f"Partition {fine.dataset}.{fine.name} not found",
                    error_code="PARTITION_NOT_FOUND",
                )
            stored.lower_bound = min(stored.lower_bound, absorbed.lower_bound)
            stored.upper_bound = max(stored.upper_bound, absorbed.upper_bound)
            stored.high_value = stored.upper_bound.isoformat()
            stored.row_count += absorbed.row_count
            coarse_key = (coarse.dataset, coarse.name)
            self._raw_sizes[coarse_key] = (
                self._raw_sizes.get(coarse_key, 0) + self._raw_sizes.pop(fine_key, 0)
            )
            stored.byte_size = self._size_for(coarse_key, stored.codec)
            del self._partitions[fine_key]
            self._access.pop(fine_key, None)
            return ActionResult(byte_size=stored.byte_size, row_count=stored.row_count)

    async def run_custom(self, partition: Partition, name: str, block: str) -> ActionResult:
        async with self._operation(f"custom:{name}", partition) as stored:
            return ActionResult(byte_size=stored.byte_size, details={"block": block})

    # --------------------------------------------------------
    # METADATA PROVIDER
    # --------------------------------------------------------

    async def list_partitions(self, dataset: str) -> List[Partition]:
        await self._simulate_latency()
        found = [replace(p) for (ds, _), p in self._partitions.items() if ds == dataset]
        return sorted(found, key=lambda p: (p.lower_bound is not None, p.lower_bound, p.name))

    async def partition_metrics(self, dataset: str, name: str) -> Optional[PartitionMetrics]:
        partition = self._partitions.get((dataset, name))
        if partition is None:
            return None
        return PartitionMetrics(rows=partition.row_count, bytes=partition.byte_size)

    async def access_recency(self, dataset: str, name: str) -> Optional[AccessRecency]:
        return self._access.get((dataset, name))

    # --------------------------------------------------------
    # TEST HELPERS
    # --------------------------------------------------------

    def add_partition(self, partition: Partition) -> None:
        """Register a partition; its byte_size is taken as uncompressed size."""
        key = (partition.dataset, partition.name)
        self._partitions[key] = replace(partition, partition_id=None, busy=False)
        self._raw_sizes[key] = partition.byte_size

    def get_partition(self, dataset: str, name: str) -> Optional[Partition]:
        partition = self._partitions.get((dataset, name))
        return replace(partition) if partition else None

    def set_access(
        self,
        dataset: str,
        name: str,
        last_read: Optional[datetime] = None,
        last_write: Optional[datetime] = None,
    ) -> None:
        self._access[(dataset, name)] = AccessRecency(last_read=last_read, last_write=last_write)

    def inject_error(self, error_code: str, message: str = "", action: Optional[str] = None) -> None:
        """
        Fail the next call (or every call of one action) with an error code.

        Per-action errors persist until clear_errors().
        """
        error = (error_code, message or f"Injected error: {error_code}")
        if action is None:
            self._next_error = error
        else:
            self._action_errors[action] = error

    def clear_errors(self) -> None:
        self._next_error = None
        self._action_errors.clear()

    def set_delay(self, action: str, seconds: float) -> None:
        """Make an action take at least this long."""
        self._delays[action] = seconds

    def get_calls(self, action: Optional[str] = None) -> List[Tuple[str, str, str]]:
        """Recorded (action, dataset, partition) calls."""
        if action is None:
            return list(self._calls)
        return [call for call in self._calls if call[0] == action]

    def reset(self) -> None:
        self._partitions.clear()
        self._raw_sizes.clear()
        self._access.clear()
        self._calls.clear()
        self.clear_errors()
        self._delays.clear()
        self.max_in_flight = 0
        self.overlaps.clear()

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _operation(self, action: str, partition: Partition) -> "_Operation":
        return _Operation(self, action, partition)

    def _enter(self, action: str, partition: Partition) -> None:
        key = (partition.dataset, partition.name)
        self._calls.append((action, partition.dataset, partition.name))
        if key in self._in_flight:
            self.overlaps.append(key)
        self._in_flight.add(key)
        self._in_flight_count += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight_count)

    def _exit(self, partition: Partition) -> None:
        self._in_flight.discard((partition.dataset, partition.name))
        self._in_flight_count -= 1

    def _raise_injected(self, action: str) -> None:
        error = None
        if self._next_error is not None:
            error, self._next_error = self._next_error, None
        elif action in self._action_errors:
            error = self._action_errors[action]
        elif self._config.failure_probability and random.random() < self._config.failure_probability:
            error = ("STORAGE_BUSY", "Simulated storage contention")
        if error is not None:
            raise ActionError(error[1], error_code=error[0])

    def _stored(self, partition: Partition) -> Partition:
        stored = self._partitions.get((partition.dataset, partition.name))
        if stored is None:
            raise ActionError(
                f"Partition {partition.dataset}.{partition.name} not found",
                error_code="PARTITION_NOT_FOUND",
            )
        return stored

    def _compressed_size(self, partition: Partition, codec: str) -> int:
        return self._size_for((partition.dataset, partition.name), codec)

    def _size_for(self, key: Tuple[str, str], codec: Optional[str]) -> int:
        raw = self._raw_sizes.get(key, 0)
        if not codec:
            return raw
        return int(raw * self._config.codec_ratios.get(codec, self._config.default_ratio))

    async def _simulate_latency(self) -> None:
        if self._config.max_latency_ms <= 0:
            return
        latency_ms = random.uniform(self._config.min_latency_ms, self._config.max_latency_ms)
        await asyncio.sleep(latency_ms / 1000)


class _Operation:
    """Async context around one engine action: tracking, latency, errors."""

    def __init__(self, engine: InMemoryStorageEngine, action: str, partition: Partition):
        self._engine = engine
        self._action = action
        self._partition = partition

    async def __aenter__(self) -> Partition:
        engine = self._engine
        engine._enter(self._action, self._partition)
        try:
            await engine._simulate_latency()
            delay = engine._delays.get(self._action)
            if delay:
                await asyncio.sleep(delay)
            engine._raise_injected(self._action)
            return engine._stored(self._partition)
        except BaseException:
            engine._exit(self._partition)
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._engine._exit(self._partition)
