"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The only gateway to the lifecycle metadata store. Sessions are
injected; every database error surfaces as a RepositoryException.

============================================================
REPOSITORY GROUPS
============================================================

DEFINITIONS
-----------
- ThresholdProfileRepository
- TierTemplateRepository
- DatasetRepository
- PolicyRepository

OPERATIONS
----------
- PartitionRepository (metadata, temperature, busy lock)
- EvaluationQueueRepository (compare-and-set claims)
- ExecutionLogRepository (append-only audit)
- PolicyPartitionBlockRepository (terminal failures)
- MergeCandidateRepository (deferred consolidation)

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.definitions import (
    DatasetRepository,
    PolicyRepository,
    ThresholdProfileRepository,
    TierTemplateRepository,
)
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    ImmutableRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    TransactionError,
)
from storage.repositories.execution import (
    EvaluationQueueRepository,
    ExecutionLogRepository,
    PolicyPartitionBlockRepository,
)
from storage.repositories.merges import MergeCandidateRepository
from storage.repositories.partitions import PartitionRepository


__all__ = [
    "BaseRepository",
    "DatasetRepository",
    "PolicyRepository",
    "ThresholdProfileRepository",
    "TierTemplateRepository",
    "ConnectionError",
    "DuplicateRecordError",
    "ImmutableRecordError",
    "IntegrityError",
    "QueryError",
    "RecordNotFoundError",
    "RepositoryException",
    "TransactionError",
    "EvaluationQueueRepository",
    "ExecutionLogRepository",
    "PolicyPartitionBlockRepository",
    "MergeCandidateRepository",
    "PartitionRepository",
]
