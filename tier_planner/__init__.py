"""
Tier Boundary Planner Package.

Initial partition layout for bulk loads of historical data.

Modules:
- periods: Granularity-aware date arithmetic and naming
- templates: Tier template validation and persistence
- planner: Boundary planning and plan application
- column_selection: Partitioning column heuristic
"""

from tier_planner.column_selection import (
    ColumnSelection,
    ColumnSelectionWeights,
    DateColumnCandidate,
    select_partition_column,
)
from tier_planner.planner import (
    AutoExtension,
    PartitionPlan,
    PlannedPartition,
    TierBoundaryPlanner,
    plan_and_create,
)
from tier_planner.templates import (
    TemplateService,
    collect_template_issues,
    template_from_dict,
    templates_from_yaml,
    validate_template,
)


__all__ = [
    "ColumnSelection",
    "ColumnSelectionWeights",
    "DateColumnCandidate",
    "select_partition_column",
    "AutoExtension",
    "PartitionPlan",
    "PlannedPartition",
    "TierBoundaryPlanner",
    "plan_and_create",
    "TemplateService",
    "collect_template_issues",
    "template_from_dict",
    "templates_from_yaml",
    "validate_template",
]
