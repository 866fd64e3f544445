"""
Storage Models Package.

ORM models for the lifecycle engine database, grouped by role.

============================================================
MODEL ORGANIZATION
============================================================

Definitions (definitions.py)
- ThresholdProfileModel
- TierTemplateModel
- TierDefinitionModel
- DatasetModel
- PolicyModel

Operations (operations.py)
- PartitionModel
- EvaluationQueueModel
- ExecutionLogModel
- PolicyPartitionBlockModel
- MergeCandidateModel

============================================================
"""

from storage.models.base import Base, TimestampMixin, UTCDateTime
from storage.models.definitions import (
    DatasetModel,
    PolicyModel,
    ThresholdProfileModel,
    TierDefinitionModel,
    TierTemplateModel,
)
from storage.models.operations import (
    EvaluationQueueModel,
    ExecutionLogModel,
    MergeCandidateModel,
    PartitionModel,
    PolicyPartitionBlockModel,
)


__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "DatasetModel",
    "PolicyModel",
    "ThresholdProfileModel",
    "TierDefinitionModel",
    "TierTemplateModel",
    "EvaluationQueueModel",
    "ExecutionLogModel",
    "MergeCandidateModel",
    "PartitionModel",
    "PolicyPartitionBlockModel",
]
