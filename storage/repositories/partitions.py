"""
Partition Repository.

============================================================
PURPOSE
============================================================
Partition metadata store shared by every loop.

RESPONSIBILITIES:
- Upsert partitions reported by the metadata provider
- Record temperature and access recency
- Apply action results (location, codec, size, seal)
- Widen boundaries after a merge
- Busy lock: compare-and-set on busy_token

CRITICAL REQUIREMENTS:
- Every write is a single-row statement keyed by partition_id
  or (dataset, name)
- The busy lock is only ever taken when busy_token IS NULL and
  only released by the token holder

============================================================
"""

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from core.types import AccessKind, Partition, Temperature, TemperatureSource
from storage.models import PartitionModel
from storage.repositories.base import BaseRepository


class PartitionRepository(BaseRepository[PartitionModel]):
    """Repository for partition metadata."""

    def __init__(self, session: Session):
        super().__init__(session, PartitionModel, "PartitionRepository")

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def get(self, partition_id: int) -> Optional[Partition]:
        model = self._get_by_id(partition_id)
        return self._to_record(model) if model else None

    def get_by_name(self, dataset: str, name: str) -> Optional[Partition]:
        model = self._model_by_name(dataset, name)
        return self._to_record(model) if model else None

    def list_for_dataset(self, dataset: str) -> List[Partition]:
        """Partitions of a dataset, oldest boundary first."""
        stmt = (
            select(PartitionModel)
            .where(PartitionModel.dataset == dataset)
            .order_by(PartitionModel.lower_bound.asc().nulls_first(), PartitionModel.name)
        )
        return [self._to_record(m) for m in self._execute_query(stmt)]

    def list_all(self) -> List[Partition]:
        stmt = select(PartitionModel).order_by(
            PartitionModel.dataset, PartitionModel.lower_bound.asc().nulls_first()
        )
        return [self._to_record(m) for m in self._execute_query(stmt)]

    def find_overlapping(self, dataset: str, start: date, end: date) -> List[Partition]:
        """Partitions whose range intersects [start, end)."""
        stmt = (
            select(PartitionModel)
            .where(
                PartitionModel.dataset == dataset,
                PartitionModel.lower_bound < end,
                PartitionModel.upper_bound > start,
            )
            .order_by(PartitionModel.lower_bound)
        )
        return [self._to_record(m) for m in self._execute_query(stmt)]

    def list_busy(self) -> List[Partition]:
        stmt = select(PartitionModel).where(PartitionModel.busy_token.is_not(None))
        return [self._to_record(m) for m in self._execute_query(stmt)]

    def last_temperature_refresh(self) -> Optional[datetime]:
        """Most recent access-based refresh time across all partitions."""
        stmt = (
            select(PartitionModel)
            .where(PartitionModel.temperature_refreshed_at.is_not(None))
            .order_by(PartitionModel.temperature_refreshed_at.desc())
            .limit(1)
        )
        model = self._execute_scalar(stmt)
        return model.temperature_refreshed_at if model else None

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    def upsert(self, partition: Partition) -> Partition:
        """
        Insert or refresh a partition by (dataset, name).

        Temperature, counters and the busy lock are left untouched
        for existing rows.
        """
        model = self._model_by_name(partition.dataset, partition.name)
        if model is None:
            model = PartitionModel(
                dataset=partition.dataset,
                name=partition.name,
                created_at=partition.created_at,
                read_count=0,
                write_count=0,
            )
        model.lower_bound = partition.lower_bound
        model.upper_bound = partition.upper_bound
        model.high_value = partition.high_value
        model.location = partition.location
        model.codec = partition.codec
        model.read_only = partition.read_only
        model.row_count = partition.row_count
        model.byte_size = partition.byte_size
        if partition.last_write_at is not None:
            model.last_write_at = partition.last_write_at
        if partition.last_read_at is not None:
            model.last_read_at = partition.last_read_at
        self._save(model, "upsert", {"field": "name", "value": partition.name})
        return self._to_record(model)

    def apply_action_result(
        self,
        partition_id: int,
        location: Optional[str] = None,
        codec: Optional[str] = None,
        byte_size: Optional[int] = None,
        row_count: Optional[int] = None,
        read_only: Optional[bool] = None,
    ) -> None:
        values = {}
        if location is not None:
            values["location"] = location
        if codec is not None:
            values["codec"] = codec
        if byte_size is not None:
            values["byte_size"] = byte_size
        if row_count is not None:
            values["row_count"] = row_count
        if read_only is not None:
            values["read_only"] = read_only
        if not values:
            return
        stmt = (
            update(PartitionModel)
            .where(PartitionModel.partition_id == partition_id)
            .values(**values)
        )
        self._execute_update(stmt, "apply_action_result")

    def set_bounds(
        self,
        partition_id: int,
        lower_bound: date,
        upper_bound: date,
        byte_size: Optional[int] = None,
        row_count: Optional[int] = None,
    ) -> None:
        values = {"lower_bound": lower_bound, "upper_bound": upper_bound}
        if byte_size is not None:
            values["byte_size"] = byte_size
        if row_count is not None:
            values["row_count"] = row_count
        stmt = (
            update(PartitionModel)
            .where(PartitionModel.partition_id == partition_id)
            .values(**values)
        )
        self._execute_update(stmt, "set_bounds")

    def set_temperature(
        self,
        partition_id: int,
        temperature: Temperature,
        source: TemperatureSource,
        refreshed_at: datetime,
        warning: Optional[str] = None,
    ) -> None:
        stmt = (
            update(PartitionModel)
            .where(PartitionModel.partition_id == partition_id)
            .values(
                temperature=temperature.value,
                temperature_source=source.value,
                temperature_refreshed_at=refreshed_at,
                classification_warning=warning,
            )
        )
        self._execute_update(stmt, "set_temperature")

    def record_access(self, partition_id: int, kind: AccessKind, at: datetime) -> bool:
        """Record a read or write; the partition becomes HOT."""
        if kind == AccessKind.READ:
            values = {
                "last_read_at": at,
                "read_count": PartitionModel.read_count + 1,
            }
        else:
            values = {
                "last_write_at": at,
                "write_count": PartitionModel.write_count + 1,
            }
        values.update(
            temperature=Temperature.HOT.value,
            temperature_source=TemperatureSource.ACCESS.value,
            temperature_refreshed_at=at,
        )
        stmt = (
            update(PartitionModel)
            .where(PartitionModel.partition_id == partition_id)
            .values(**values)
        )
        return self._execute_update(stmt, "record_access") == 1

    def delete(self, partition_id: int) -> bool:
        stmt = delete(PartitionModel).where(PartitionModel.partition_id == partition_id)
        deleted = self._execute_update(stmt, "delete") == 1
        if deleted:
            self._logger.info(f"Removed partition metadata {partition_id}")
        return deleted

    # --------------------------------------------------------
    # BUSY LOCK
    # --------------------------------------------------------

    def try_acquire(self, partition_id: int, token: str, at: datetime) -> bool:
        """Set busy_token if nobody holds it. Returns whether we got it."""
        stmt = (
            update(PartitionModel)
            .where(
                PartitionModel.partition_id == partition_id,
                PartitionModel.busy_token.is_(None),
            )
            .values(busy_token=token, busy_since=at)
        )
        acquired = self._execute_update(stmt, "try_acquire") == 1
        if acquired:
            self._logger.debug(f"Partition {partition_id} locked by {token}")
        return acquired

    def release(self, partition_id: int, token: str) -> bool:
        """Clear busy_token if we hold it."""
        stmt = (
            update(PartitionModel)
            .where(
                PartitionModel.partition_id == partition_id,
                PartitionModel.busy_token == token,
            )
            .values(busy_token=None, busy_since=None)
        )
        released = self._execute_update(stmt, "release") == 1
        if not released:
            self._logger.warning(
                f"Partition {partition_id} was not held by {token} at release"
            )
        return released

    def holder(self, partition_id: int) -> Optional[str]:
        model = self._get_by_id(partition_id)
        return model.busy_token if model else None

    # --------------------------------------------------------
    # CONVERSION
    # --------------------------------------------------------

    def _model_by_name(self, dataset: str, name: str) -> Optional[PartitionModel]:
        stmt = select(PartitionModel).where(
            PartitionModel.dataset == dataset,
            PartitionModel.name == name,
        )
        return self._execute_scalar(stmt)

    @staticmethod
    def _to_record(model: PartitionModel) -> Partition:
        return Partition(
            partition_id=model.partition_id,
            dataset=model.dataset,
            name=model.name,
            lower_bound=model.lower_bound,
            upper_bound=model.upper_bound,
            high_value=model.high_value,
            location=model.location,
            codec=model.codec,
            read_only=model.read_only,
            row_count=model.row_count,
            byte_size=model.byte_size,
            created_at=model.created_at,
            last_write_at=model.last_write_at,
            last_read_at=model.last_read_at,
            temperature=Temperature(model.temperature) if model.temperature else None,
            busy=model.busy_token is not None,
        )
