"""
Tier Planner - Tier Templates.

============================================================
PURPOSE
============================================================
Validation, parsing and persistence of tier templates.

A template is valid only when all three tiers are present, each
with an age threshold, granularity, location and codec, and the
thresholds ascend HOT < WARM < COLD. Every defect gets its own
error code so an operator can fix a template without guesswork:

    TIER_<T>_MISSING
    TIER_<T>_AGE_MISSING
    TIER_<T>_AGE_NOT_POSITIVE
    TIER_<T>_GRANULARITY_MISSING
    TIER_<T>_GRANULARITY_INVALID
    TIER_<T>_LOCATION_MISSING
    TIER_<T>_CODEC_MISSING
    TIER_HOT_NOT_BELOW_WARM
    TIER_WARM_NOT_BELOW_COLD

============================================================
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from core.exceptions import TemplateValidationError, ValidationIssue
from core.types import Granularity, Temperature, TierDefinition, TierTemplate
from storage.repositories.definitions import TierTemplateRepository


logger = logging.getLogger(__name__)

TIER_ORDER = (Temperature.HOT, Temperature.WARM, Temperature.COLD)

# Interval spellings accepted in template payloads
GRANULARITY_ALIASES: Dict[str, Granularity] = {
    "DAY": Granularity.DAY,
    "DAILY": Granularity.DAY,
    "WEEK": Granularity.WEEK,
    "WEEKLY": Granularity.WEEK,
    "MONTH": Granularity.MONTH,
    "MONTHLY": Granularity.MONTH,
    "QUARTER": Granularity.QUARTER,
    "QUARTERLY": Granularity.QUARTER,
    "YEAR": Granularity.YEAR,
    "YEARLY": Granularity.YEAR,
}


# ============================================================
# VALIDATION
# ============================================================

def collect_template_issues(template: TierTemplate) -> List[ValidationIssue]:
    """All defects of a template, in tier order."""
    issues: List[ValidationIssue] = []

    for tier in TIER_ORDER:
        prefix = f"TIER_{tier.value}"
        definition = template.tiers.get(tier)
        if definition is None:
            issues.append(ValidationIssue(
                f"{prefix}_MISSING",
                f"Template {template.name} has no {tier.value} tier",
                tier.value.lower(),
            ))
            continue

        if definition.age_days is None and definition.age_months is None:
            issues.append(ValidationIssue(
                f"{prefix}_AGE_MISSING",
                f"{tier.value} tier requires age_months or age_days",
                f"{tier.value.lower()}.age",
            ))
        elif (definition.threshold_days or 0) <= 0:
            issues.append(ValidationIssue(
                f"{prefix}_AGE_NOT_POSITIVE",
                f"{tier.value} tier age threshold must be positive",
                f"{tier.value.lower()}.age",
            ))

        if definition.granularity is None:
            issues.append(ValidationIssue(
                f"{prefix}_GRANULARITY_MISSING",
                f"{tier.value} tier requires a partition granularity",
                f"{tier.value.lower()}.granularity",
            ))

        if not definition.location:
            issues.append(ValidationIssue(
                f"{prefix}_LOCATION_MISSING",
                f"{tier.value} tier requires a storage location",
                f"{tier.value.lower()}.location",
            ))

        if not definition.codec:
            issues.append(ValidationIssue(
                f"{prefix}_CODEC_MISSING",
                f"{tier.value} tier requires a compression codec",
                f"{tier.value.lower()}.codec",
            ))

    hot, warm, cold = (template.tiers.get(t) for t in TIER_ORDER)
    if _has_threshold(hot) and _has_threshold(warm):
        if hot.threshold_days >= warm.threshold_days:
            issues.append(ValidationIssue(
                "TIER_HOT_NOT_BELOW_WARM",
                f"HOT age threshold ({hot.threshold_days} days) must be below "
                f"WARM ({warm.threshold_days} days)",
                "hot.age",
            ))
    if _has_threshold(warm) and _has_threshold(cold):
        if warm.threshold_days >= cold.threshold_days:
            issues.append(ValidationIssue(
                "TIER_WARM_NOT_BELOW_COLD",
                f"WARM age threshold ({warm.threshold_days} days) must be below "
                f"COLD ({cold.threshold_days} days)",
                "warm.age",
            ))

    return issues


def validate_template(template: TierTemplate) -> None:
    """
    Validate a template.

    Raises:
        TemplateValidationError: With every defect found
    """
    issues = collect_template_issues(template)
    if issues:
        logger.warning(
            f"Tier template {template.name} rejected: "
            f"{', '.join(issue.code for issue in issues)}"
        )
        raise TemplateValidationError(issues, subject=template.name)


def _has_threshold(definition: Optional[TierDefinition]) -> bool:
    return definition is not None and (definition.threshold_days or 0) > 0


# ============================================================
# PARSING
# ============================================================

def template_from_dict(name: str, data: Dict[str, Any], description: str = "") -> TierTemplate:
    """
    Build a template from a JSON-shaped payload.

    Payload shape:
        {"hot":  {"age_months": 12, "interval": "MONTHLY",
                  "location": "TBS_HOT", "codec": "QUERY HIGH"},
         "warm": {...}, "cold": {...}}

    `interval` and `granularity` are synonyms, as are `location`
    and `tablespace`, `codec` and `compression`. Unknown interval
    spellings are reported as TIER_<T>_GRANULARITY_INVALID.

    Raises:
        TemplateValidationError: If the payload is invalid
    """
    tiers: Dict[Temperature, TierDefinition] = {}
    issues: List[ValidationIssue] = []

    for tier in TIER_ORDER:
        raw = data.get(tier.value.lower()) or data.get(tier.value)
        if raw is None:
            continue
        granularity = None
        interval = raw.get("granularity") or raw.get("interval")
        if interval is not None:
            granularity = GRANULARITY_ALIASES.get(str(interval).upper())
            if granularity is None:
                issues.append(ValidationIssue(
                    f"TIER_{tier.value}_GRANULARITY_INVALID",
                    f"{tier.value} tier granularity {interval!r} is not one of "
                    f"{sorted(GRANULARITY_ALIASES)}",
                    f"{tier.value.lower()}.granularity",
                ))
        tiers[tier] = TierDefinition(
            tier=tier,
            granularity=granularity,
            location=raw.get("location") or raw.get("tablespace"),
            codec=raw.get("codec") or raw.get("compression"),
            age_days=raw.get("age_days"),
            age_months=raw.get("age_months"),
        )

    template = TierTemplate(name=name, tiers=tiers, description=description)
    issues.extend(
        issue for issue in collect_template_issues(template)
        if not any(issue.field == existing.field for existing in issues)
    )
    if issues:
        raise TemplateValidationError(issues, subject=name)
    return template


def templates_from_yaml(path: Union[str, Path]) -> List[TierTemplate]:
    """
    Load templates from a YAML file.

    The file maps template names to payloads in the shape accepted
    by template_from_dict, with an optional `description` key:

        STANDARD:
          description: Monthly hot, yearly warm and cold
          hot:  {age_months: 12, interval: MONTHLY, location: TBS_HOT, codec: NONE}
          warm: {age_months: 36, interval: YEARLY, location: TBS_WARM, codec: BASIC}
          cold: {age_months: 84, interval: YEARLY, location: TBS_COLD, codec: ZSTD}

    Raises:
        TemplateValidationError: If any template is invalid
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    templates = []
    for name, payload in data.items():
        payload = dict(payload or {})
        description = payload.pop("description", "")
        templates.append(template_from_dict(str(name), payload, description))

    logger.info(f"Loaded {len(templates)} tier template(s) from {path}")
    return templates


# ============================================================
# TEMPLATE SERVICE
# ============================================================

class TemplateService:
    """Validated write interface for tier templates."""

    def __init__(self, repository: TierTemplateRepository):
        self._repository = repository

    def save(self, template: TierTemplate) -> TierTemplate:
        """Validate then persist; invalid templates are never stored."""
        validate_template(template)
        return self._repository.save(template)

    def save_from_dict(self, name: str, data: Dict[str, Any], description: str = "") -> TierTemplate:
        return self._repository.save(template_from_dict(name, data, description))

    def load_file(self, path: Union[str, Path]) -> List[TierTemplate]:
        """Persist every template in a YAML file; nothing is stored if one is invalid."""
        return [self._repository.save(template) for template in templates_from_yaml(path)]

    def get(self, name: str) -> Optional[TierTemplate]:
        return self._repository.get(name)
