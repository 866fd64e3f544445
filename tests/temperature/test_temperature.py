"""
Temperature Classifier Tests.

============================================================
PURPOSE
============================================================
Classification of partitions into HOT/WARM/COLD, threshold
profiles and the scheduled refresh.

TEST CATEGORIES:
- Step function tests: Boundary ages
- Classifier tests: Age, access recency, unparseable boundaries
- Profile tests: Validation, resolution, effective thresholds
- Refresh tests: Metadata sync, access tracking, staleness

============================================================
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import DATASET, NOW, make_partition
from core.exceptions import ThresholdProfileError
from core.types import (
    AccessKind,
    ActionType,
    Partition,
    Policy,
    PolicyConditions,
    Temperature,
    TemperatureSource,
    ThresholdProfile,
)
from temperature import (
    TemperatureClassifier,
    classify_age,
    effective_thresholds,
    parse_boundary,
    partition_age_days,
    resolve_profile,
    seed_default_profiles,
)
from temperature.profiles import SOURCE_CUSTOM, SOURCE_DEFAULT, builtin_profile


DEFAULT = ThresholdProfile("DEFAULT", 90, 365, 1095)
FAST_AGING = ThresholdProfile("FAST_AGING", 30, 90, 180)


def aged(days: int, **kwargs) -> Partition:
    """Partition whose upper boundary is `days` before NOW."""
    upper = NOW.date() - timedelta(days=days)
    return make_partition("P_AGED", upper - timedelta(days=30), upper, **kwargs)


# ============================================================
# STEP FUNCTION TESTS
# ============================================================

class TestClassifyAge:
    """Tests for the age step function."""

    def test_ranges(self):
        """Test each tier range."""
        assert classify_age(0, DEFAULT) == Temperature.HOT
        assert classify_age(89, DEFAULT) == Temperature.HOT
        assert classify_age(200, DEFAULT) == Temperature.WARM
        assert classify_age(5000, DEFAULT) == Temperature.COLD

    def test_boundary_resolves_to_older_tier(self):
        """Test an age equal to a threshold lands in the older tier."""
        assert classify_age(90, DEFAULT) == Temperature.WARM
        assert classify_age(365, DEFAULT) == Temperature.COLD


# ============================================================
# CLASSIFIER TESTS
# ============================================================

class TestTemperatureClassifier:
    """Tests for TemperatureClassifier."""

    def test_same_age_differs_by_profile(self):
        """Test a 100-day-old partition is COLD for fast aging and WARM by default."""
        partition = aged(100)
        classifier = TemperatureClassifier()

        fast = classifier.classify(partition, FAST_AGING, NOW)
        default = classifier.classify(partition, DEFAULT, NOW)

        assert fast.age_days == 100
        assert fast.temperature == Temperature.COLD
        assert default.temperature == Temperature.WARM
        assert default.source == TemperatureSource.AGE

    def test_future_boundary_floors_at_zero(self):
        """Test a boundary in the future gives age zero."""
        upper = NOW.date() + timedelta(days=20)
        partition = make_partition("P_FUTURE", NOW.date(), upper)

        assert partition_age_days(partition, NOW) == 0

    def test_access_recency_wins(self):
        """Test a recently read old partition is HOT."""
        partition = aged(1000, last_read_at=NOW - timedelta(days=2))

        result = TemperatureClassifier().classify(partition, DEFAULT, NOW)

        assert result.temperature == Temperature.HOT
        assert result.source == TemperatureSource.ACCESS
        assert result.access_days == 2
        assert result.age_days == 1000

    def test_access_recency_disabled(self):
        """Test age is used when access tracking is off."""
        partition = aged(1000, last_read_at=NOW - timedelta(days=2))

        result = TemperatureClassifier(use_access_recency=False).classify(partition, DEFAULT, NOW)

        assert result.temperature == Temperature.COLD
        assert result.source == TemperatureSource.AGE

    def test_latest_access_is_used(self):
        """Test the newer of last read and last write counts."""
        partition = aged(
            1000,
            last_read_at=NOW - timedelta(days=400),
            last_write_at=NOW - timedelta(days=120),
        )

        result = TemperatureClassifier().classify(partition, DEFAULT, NOW)

        assert result.access_days == 120
        assert result.temperature == Temperature.WARM

    def test_unparseable_boundary_is_cold(self):
        """Test a boundary expression without a date."""
        partition = Partition(dataset=DATASET, name="P_MAXVALUE", high_value="MAXVALUE")

        result = TemperatureClassifier().classify(partition, DEFAULT, NOW)

        assert result.temperature == Temperature.COLD
        assert result.age_days is None
        assert "P_MAXVALUE" in result.warning

    def test_parse_boundary_expressions(self):
        """Test dates are found inside raw boundary expressions."""
        assert parse_boundary("TO_DATE(' 2024-01-01 00:00:00', 'SYYYY-MM-DD')") == date(2024, 1, 1)
        assert parse_boundary("2025-02-30") is None
        assert parse_boundary(None) is None

    def test_boundary_from_high_value(self):
        """Test high_value is used when bounds are unknown."""
        partition = Partition(dataset=DATASET, name="P_RAW", high_value="'2025-08-02'")

        assert partition_age_days(partition, NOW) == 100


# ============================================================
# PROFILE TESTS
# ============================================================

class TestThresholdProfiles:
    """Tests for threshold profiles."""

    def test_thresholds_must_strictly_ascend(self):
        """Test equal thresholds are rejected."""
        with pytest.raises(ThresholdProfileError) as exc_info:
            ThresholdProfile("BAD", 90, 90, 365)

        assert exc_info.value.error_code == "PROFILE_HOT_NOT_BELOW_WARM"

    def test_non_positive_thresholds(self):
        """Test zero days is rejected."""
        with pytest.raises(ThresholdProfileError) as exc_info:
            ThresholdProfile("BAD", 0, 90, 365)

        assert "PROFILE_THRESHOLD_NOT_POSITIVE" in exc_info.value.codes

    def test_builtins_are_seeded(self, components):
        """Test the built-in profiles exist after wiring."""
        names = {p.name for p in components.profile_service.list_profiles()}

        assert {"DEFAULT", "FAST_AGING", "SLOW_AGING", "AGGRESSIVE_ARCHIVE"} <= names
        assert seed_default_profiles(components.repositories.profiles) == []

    def test_invalid_profile_is_not_stored(self, components):
        """Test rejected profiles leave nothing behind."""
        with pytest.raises(ThresholdProfileError):
            components.profile_service.save_profile("BROKEN", 100, 50, 400)

        assert components.profile_service.get_profile("BROKEN") is None

    def test_update_existing_profile(self, components):
        """Test saving a profile under an existing name replaces it."""
        components.profile_service.save_profile("FAST_AGING", 20, 60, 120, "faster")

        profile = components.profile_service.get_profile("FAST_AGING")
        assert (profile.hot_days, profile.warm_days, profile.cold_days) == (20, 60, 120)

    def test_resolve_falls_back_to_default(self, repositories):
        """Test a missing profile resolves to the default."""
        policy = Policy(
            name="p", dataset=DATASET, action=ActionType.READ_ONLY,
            conditions=PolicyConditions(age_days=1), profile_name="MISSING",
        )

        profile = resolve_profile(policy, repositories.profiles)

        assert profile.name == "DEFAULT"
        assert profile.hot_days == builtin_profile("DEFAULT").hot_days

    def test_effective_thresholds(self, components):
        """Test the view distinguishes custom and default thresholds."""
        policies = [
            Policy(name="custom", dataset=DATASET, action=ActionType.READ_ONLY,
                   conditions=PolicyConditions(age_days=1), profile_name="FAST_AGING", policy_id=1),
            Policy(name="plain", dataset=DATASET, action=ActionType.READ_ONLY,
                   conditions=PolicyConditions(age_days=1), policy_id=2),
        ]

        view = effective_thresholds(policies, components.repositories.profiles)

        assert view[0].source == SOURCE_CUSTOM
        assert (view[0].hot_days, view[0].warm_days) == (30, 90)
        assert view[1].source == SOURCE_DEFAULT
        assert view[1].profile_name == "DEFAULT"


# ============================================================
# REFRESH TESTS
# ============================================================

class TestTemperatureRefresher:
    """Tests for TemperatureRefresher."""

    @pytest.mark.asyncio
    async def test_refresh_syncs_metadata_and_temperature(self, components, storage_engine):
        """Test partitions reported by the engine are recorded and classified."""
        storage_engine.add_partition(make_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1)))
        storage_engine.add_partition(make_partition("P_2025_10", date(2025, 10, 1), date(2025, 11, 1)))

        result = await components.refresher.refresh()

        assert result.datasets == 1
        assert result.partitions == 2
        partitions = components.repositories.partitions
        assert partitions.get_by_name(DATASET, "P_2019").temperature == Temperature.COLD
        assert partitions.get_by_name(DATASET, "P_2025_10").temperature == Temperature.HOT

    @pytest.mark.asyncio
    async def test_refresh_uses_access_recency(self, components, storage_engine):
        """Test engine-reported access makes an old partition HOT."""
        storage_engine.add_partition(make_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1)))
        storage_engine.set_access(DATASET, "P_2019", last_read=NOW - timedelta(days=1))

        result = await components.refresher.refresh()

        assert result.access_signals == 1
        assert components.repositories.partitions.get_by_name(DATASET, "P_2019").temperature == Temperature.HOT

    @pytest.mark.asyncio
    async def test_refresh_keeps_going_after_dataset_failure(self, components, storage_engine):
        """Test one failing dataset does not stop the pass."""
        storage_engine.add_partition(make_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1)))
        original = storage_engine.list_partitions

        async def flaky(dataset):
            if dataset == "broken":
                raise RuntimeError("metadata unavailable")
            return await original(dataset)

        storage_engine.list_partitions = flaky
        result = await components.refresher.refresh()
        assert result.partitions == 1

        result = await components.refresher.refresh("broken")
        assert result.datasets == 0
        assert result.errors == ["broken: metadata unavailable"]

    def test_record_access(self, components, add_partition):
        """Test a recorded access makes the partition HOT immediately."""
        partition = add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))

        assert components.refresher.record_access(partition.partition_id, AccessKind.WRITE) is True

        stored = components.repositories.partitions.get(partition.partition_id)
        assert stored.temperature == Temperature.HOT
        assert stored.last_write_at == NOW
        assert components.refresher.record_access(9999, AccessKind.READ) is False

    @pytest.mark.asyncio
    async def test_staleness(self, components, clock, storage_engine):
        """Test access temperatures go stale after the configured bound."""
        assert components.refresher.staleness().is_stale is True

        storage_engine.add_partition(make_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1)))
        await components.refresher.refresh()

        fresh = components.refresher.staleness()
        assert fresh.is_stale is False
        assert fresh.last_refresh_at == NOW

        clock.advance(days=3)
        stale = components.refresher.staleness()
        assert stale.is_stale is True
        assert stale.seconds_since_refresh == pytest.approx(3 * 86400)
        assert stale.last_refresh_at.tzinfo == timezone.utc
        assert isinstance(stale.last_refresh_at, datetime)
