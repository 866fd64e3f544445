"""
Temperature Classifier - Threshold Profiles.

============================================================
PURPOSE
============================================================
The threshold profile catalogue and per-policy resolution.

- ProfileService: validated create/update of profiles
- seed_default_profiles: install the built-in catalogue
- resolve_profile: the profile a policy classifies with
- effective_thresholds: per-policy view for operators

A policy that names a profile uses it; otherwise the global
default profile applies.

============================================================
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from core.constants import BUILTIN_PROFILES, DEFAULT_PROFILE_NAME
from core.types import Policy, ThresholdProfile
from storage.repositories.definitions import ThresholdProfileRepository


logger = logging.getLogger(__name__)

SOURCE_CUSTOM = "CUSTOM"
SOURCE_DEFAULT = "DEFAULT"


@dataclass(frozen=True)
class EffectiveThreshold:
    """Thresholds a policy actually classifies with."""

    policy_id: Optional[int]
    policy_name: str
    profile_name: str
    hot_days: int
    warm_days: int
    cold_days: int
    source: str
    """CUSTOM when the policy names a profile, DEFAULT otherwise."""


def builtin_profile(name: str) -> ThresholdProfile:
    hot, warm, cold, description = BUILTIN_PROFILES[name]
    return ThresholdProfile(name, hot, warm, cold, description)


def seed_default_profiles(repository: ThresholdProfileRepository) -> List[str]:
    """Install built-in profiles that are not present yet. Returns names added."""
    added = []
    for name in BUILTIN_PROFILES:
        if not repository.exists(name):
            repository.save(builtin_profile(name))
            added.append(name)
    if added:
        logger.info(f"Seeded threshold profiles: {', '.join(added)}")
    return added


def resolve_profile(
    policy: Policy,
    repository: ThresholdProfileRepository,
    default_name: str = DEFAULT_PROFILE_NAME,
) -> ThresholdProfile:
    """
    Profile for a policy: its own when set and present, else the default.

    Falls back to the built-in DEFAULT when the default profile
    has not been stored.
    """
    if policy.profile_name:
        profile = repository.get(policy.profile_name)
        if profile is not None:
            return profile
        logger.warning(
            f"Policy {policy.name} references missing profile {policy.profile_name}; "
            f"using {default_name}"
        )
    return default_profile(repository, default_name)


def default_profile(
    repository: ThresholdProfileRepository,
    default_name: str = DEFAULT_PROFILE_NAME,
) -> ThresholdProfile:
    profile = repository.get(default_name)
    if profile is not None:
        return profile
    if default_name in BUILTIN_PROFILES:
        return builtin_profile(default_name)
    return builtin_profile(DEFAULT_PROFILE_NAME)


def effective_thresholds(
    policies: List[Policy],
    repository: ThresholdProfileRepository,
    default_name: str = DEFAULT_PROFILE_NAME,
) -> List[EffectiveThreshold]:
    view = []
    for policy in policies:
        profile = resolve_profile(policy, repository, default_name)
        custom = bool(policy.profile_name) and profile.name == policy.profile_name
        view.append(EffectiveThreshold(
            policy_id=policy.policy_id,
            policy_name=policy.name,
            profile_name=profile.name,
            hot_days=profile.hot_days,
            warm_days=profile.warm_days,
            cold_days=profile.cold_days,
            source=SOURCE_CUSTOM if custom else SOURCE_DEFAULT,
        ))
    return view


class ProfileService:
    """Write interface for threshold profiles."""

    def __init__(self, repository: ThresholdProfileRepository):
        self._repository = repository

    def save_profile(
        self,
        name: str,
        hot_days: int,
        warm_days: int,
        cold_days: int,
        description: str = "",
    ) -> ThresholdProfile:
        """
        Create or update a profile.

        Raises:
            ThresholdProfileError: If the thresholds are not strictly ascending
        """
        profile = ThresholdProfile(name, hot_days, warm_days, cold_days, description)
        return self._repository.save(profile)

    def get_profile(self, name: str) -> Optional[ThresholdProfile]:
        return self._repository.get(name)

    def list_profiles(self) -> List[ThresholdProfile]:
        return self._repository.list_all()
