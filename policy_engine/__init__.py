"""
Policy Evaluation Engine Package.

Declarative policies, eligibility checks and queue maintenance.
"""

from policy_engine.builder import PolicyBuilder, collect_policy_issues, validate_policy
from policy_engine.conditions import ELIGIBLE_REASON, PredicateRegistry, check_conditions
from policy_engine.evaluator import DISABLED_REASON, EvaluationSummary, PolicyEvaluator
from policy_engine.service import PolicyService


__all__ = [
    "PolicyBuilder",
    "collect_policy_issues",
    "validate_policy",
    "ELIGIBLE_REASON",
    "PredicateRegistry",
    "check_conditions",
    "DISABLED_REASON",
    "EvaluationSummary",
    "PolicyEvaluator",
    "PolicyService",
]
