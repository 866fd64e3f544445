"""
Policy Evaluation Engine Tests.

============================================================
PURPOSE
============================================================
Policy validation, condition checks and queue maintenance.

TEST CATEGORIES:
- Builder tests: Validation codes at write time
- Condition tests: Eligibility and reasons
- Evaluator tests: Queue states, idempotence, skips
- Service tests: Create, update, pause, resume

============================================================
"""

from datetime import date, timedelta

import pytest

from conftest import DATASET, NOW, make_partition
from core.exceptions import PolicyValidationError
from core.types import (
    ActionType,
    QueueStatus,
    Temperature,
    TemperatureSource,
    ThresholdProfile,
)
from policy_engine import (
    DISABLED_REASON,
    ELIGIBLE_REASON,
    PolicyBuilder,
    PredicateRegistry,
    check_conditions,
)
from storage.repositories.exceptions import DuplicateRecordError, RecordNotFoundError
from temperature import Classification


DEFAULT = ThresholdProfile("DEFAULT", 90, 365, 1095)


def classification(age_days, temperature=Temperature.COLD):
    return Classification(temperature=temperature, age_days=age_days, source=TemperatureSource.AGE)


def move_policy(name="archive-old", days=365, location="TBS_WARM"):
    return PolicyBuilder(name).for_dataset(DATASET).move(location).when_age_days(days)


# ============================================================
# BUILDER TESTS
# ============================================================

class TestPolicyBuilder:
    """Tests for PolicyBuilder validation."""

    def test_valid_policy(self):
        """Test a complete policy builds."""
        policy = (
            PolicyBuilder("compress-warm")
            .for_dataset(DATASET)
            .compress("ZSTD")
            .when_temperature(Temperature.WARM)
            .with_priority(10)
            .with_options(parallel_degree=4)
            .describe("Compress warm partitions")
            .build(dataset_exists=lambda name: name == DATASET)
        )

        assert policy.action == ActionType.COMPRESS
        assert policy.params.codec == "ZSTD"
        assert policy.params.parallel_degree == 4
        assert policy.priority == 10
        assert policy.enabled is True

    def test_builds_do_not_share_state(self):
        """Test policies built from one builder are independent."""
        builder = PolicyBuilder("compress-old").for_dataset(DATASET).compress("ZSTD").when_age_days(365)

        first = builder.build()
        first.conditions.age_days = 10
        first.params.codec = "LZ4"
        second = builder.build()

        assert second.conditions.age_days == 365
        assert second.params.codec == "ZSTD"
        assert first.conditions is not second.conditions

    def test_no_conditions(self):
        """Test a policy without any condition is rejected."""
        with pytest.raises(PolicyValidationError) as exc_info:
            PolicyBuilder("p").for_dataset(DATASET).read_only().build()

        assert exc_info.value.codes == ["POLICY_NO_CONDITIONS"]

    def test_missing_action_and_name(self):
        """Test every defect is reported at once."""
        with pytest.raises(PolicyValidationError) as exc_info:
            PolicyBuilder("").for_dataset(DATASET).when_age_days(10).build()

        assert "POLICY_NAME_MISSING" in exc_info.value.codes
        assert "POLICY_ACTION_MISSING" in exc_info.value.codes

    def test_action_parameters_required(self):
        """Test MOVE, COMPRESS and CUSTOM parameters."""
        cases = [
            (PolicyBuilder("m").move(""), "POLICY_LOCATION_REQUIRED"),
            (PolicyBuilder("c").compress(""), "POLICY_CODEC_REQUIRED"),
            (PolicyBuilder("x").custom(""), "POLICY_CUSTOM_ACTION_REQUIRED"),
        ]
        for builder, code in cases:
            with pytest.raises(PolicyValidationError) as exc_info:
                builder.for_dataset(DATASET).when_age_days(1).build()
            assert code in exc_info.value.codes

    def test_ranges(self):
        """Test priority, age and size ranges."""
        with pytest.raises(PolicyValidationError) as exc_info:
            (
                PolicyBuilder("p").for_dataset(DATASET).drop()
                .when_age_days(-1).when_size_at_least(-5).with_priority(1000)
                .build()
            )

        codes = exc_info.value.codes
        assert "POLICY_AGE_NEGATIVE" in codes
        assert "POLICY_SIZE_NEGATIVE" in codes
        assert "POLICY_PRIORITY_OUT_OF_RANGE" in codes

    def test_unknown_references(self):
        """Test unknown dataset and profile."""
        with pytest.raises(PolicyValidationError) as exc_info:
            (
                PolicyBuilder("p").for_dataset("nope").truncate().when_age_days(1)
                .with_profile("MISSING")
                .build(dataset_exists=lambda _: False, profile_exists=lambda _: False)
            )

        assert exc_info.value.codes == ["POLICY_DATASET_UNKNOWN", "POLICY_PROFILE_UNKNOWN"]


# ============================================================
# CONDITION TESTS
# ============================================================

class TestConditions:
    """Tests for check_conditions."""

    def test_eligible(self):
        """Test all conditions met."""
        policy = move_policy().build()
        partition = make_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))

        eligible, reason = check_conditions(policy, partition, classification(2140), DEFAULT)

        assert eligible is True
        assert reason == ELIGIBLE_REASON

    def test_too_young(self):
        """Test the age reason names both values."""
        policy = move_policy().build()
        partition = make_partition("P_2025_10", date(2025, 10, 1), date(2025, 11, 1))

        eligible, reason = check_conditions(policy, partition, classification(9), DEFAULT)

        assert eligible is False
        assert reason == "Partition age 9 days is less than threshold 365 days"

    def test_unknown_age_fails(self):
        """Test a partition without a known age never meets an age condition."""
        policy = move_policy().build()
        partition = make_partition("P_X", date(2019, 1, 1), date(2020, 1, 1))

        eligible, reason = check_conditions(policy, partition, classification(None), DEFAULT)

        assert eligible is False
        assert "unknown" in reason

    def test_age_in_months(self):
        """Test month conditions use thirty-day months."""
        policy = PolicyBuilder("p").for_dataset(DATASET).read_only().when_age_months(6).build()
        partition = make_partition("P_X", date(2025, 7, 1), date(2025, 8, 1))

        eligible, reason = check_conditions(policy, partition, classification(100), DEFAULT)

        assert eligible is False
        assert reason == "Partition age 3 months is less than threshold 6 months"

    def test_size_conditions(self):
        """Test at-least and at-most size conditions."""
        partition = make_partition("P_X", date(2019, 1, 1), date(2020, 1, 1), size_mb=100)
        at_least = PolicyBuilder("a").for_dataset(DATASET).read_only().when_size_at_least(200).build()
        at_most = PolicyBuilder("b").for_dataset(DATASET).read_only().when_size_at_most(50).build()

        eligible, reason = check_conditions(at_least, partition, classification(10), DEFAULT)
        assert eligible is False
        assert reason == "Partition size 100 MB is less than threshold 200 MB"

        eligible, reason = check_conditions(at_most, partition, classification(10), DEFAULT)
        assert eligible is False
        assert "greater than threshold 50 MB" in reason

    def test_temperature_mismatch_names_thresholds(self):
        """Test the reason carries the thresholds used."""
        policy = PolicyBuilder("p").for_dataset(DATASET).compress("ZSTD").when_temperature(Temperature.COLD).build()
        partition = make_partition("P_X", date(2025, 6, 1), date(2025, 7, 1))

        eligible, reason = check_conditions(
            policy, partition, classification(132, Temperature.WARM), DEFAULT
        )

        assert eligible is False
        assert reason == (
            "Partition temperature (WARM) does not match required COLD "
            "[thresholds: HOT<90, WARM<365]"
        )

    def test_already_in_target_state(self):
        """Test actions that would change nothing are ineligible."""
        partition = make_partition(
            "P_X", date(2019, 1, 1), date(2020, 1, 1),
            location="TBS_WARM", codec="ZSTD", read_only=True,
        )
        compress = PolicyBuilder("c").for_dataset(DATASET).compress("ZSTD").when_age_days(1).build()
        seal = PolicyBuilder("r").for_dataset(DATASET).read_only().when_age_days(1).build()

        assert check_conditions(move_policy(days=1).build(), partition, classification(2000), DEFAULT) == (
            False, "Partition already in target location TBS_WARM",
        )
        assert check_conditions(compress, partition, classification(2000), DEFAULT) == (
            False, "Partition already compressed with ZSTD",
        )
        assert check_conditions(seal, partition, classification(2000), DEFAULT) == (
            False, "Partition already read-only",
        )

    def test_custom_predicates(self):
        """Test registered, missing and failing predicates."""
        policy = PolicyBuilder("p").for_dataset(DATASET).read_only().when_custom("has_rows").build()
        partition = make_partition("P_X", date(2019, 1, 1), date(2020, 1, 1))
        predicates = PredicateRegistry()

        eligible, reason = check_conditions(policy, partition, classification(10), DEFAULT, predicates)
        assert eligible is False
        assert reason == "Custom condition has_rows is not registered"

        predicates.register("has_rows", lambda p, c: p.row_count > 0)
        assert check_conditions(policy, partition, classification(10), DEFAULT, predicates)[0] is True

        predicates.register("has_rows", lambda p, c: 1 / 0)
        eligible, reason = check_conditions(policy, partition, classification(10), DEFAULT, predicates)
        assert eligible is False
        assert reason.startswith("Error evaluating custom condition has_rows")


# ============================================================
# EVALUATOR TESTS
# ============================================================

class TestPolicyEvaluator:
    """Tests for PolicyEvaluator."""

    @pytest.fixture
    def old_partition(self, add_partition):
        return add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))

    @pytest.fixture
    def young_partition(self, add_partition):
        return add_partition("P_2025_10", date(2025, 10, 1), date(2025, 11, 1))

    @pytest.fixture
    def policy(self, components):
        return components.policy_service.create_policy(move_policy().build())

    def test_eligible_pair_is_queued(self, components, policy, old_partition, young_partition):
        """Test eligible pairs become PENDING and ineligible ones SKIPPED with a reason."""
        summary = components.evaluator.evaluate_all()

        assert summary.policies == 1
        assert summary.evaluated == 2
        assert summary.queued == 1
        assert summary.ineligible == 1

        queue = components.repositories.queue
        pending = queue.get(policy.policy_id, old_partition.partition_id)
        skipped = queue.get(policy.policy_id, young_partition.partition_id)
        assert pending.status == QueueStatus.PENDING.value
        assert pending.reason == ELIGIBLE_REASON
        assert skipped.status == QueueStatus.SKIPPED.value
        assert skipped.reason == "Partition age 9 days is less than threshold 365 days"

    def test_reevaluation_is_idempotent(self, components, policy, old_partition):
        """Test evaluating twice keeps a single entry."""
        components.evaluator.evaluate_all()
        components.evaluator.evaluate_all()

        entries = components.repositories.queue.list_entries(policy_id=policy.policy_id)
        assert len(entries) == 1
        assert entries[0].status == QueueStatus.PENDING.value

    def test_skipped_entry_becomes_pending_once_eligible(self, components, clock, add_partition):
        """Test an entry moves from SKIPPED to PENDING as the partition ages."""
        policy = components.policy_service.create_policy(move_policy(days=30).build())
        partition = add_partition("P_2025_10", date(2025, 10, 1), date(2025, 11, 1))

        components.evaluator.evaluate_all()
        queue = components.repositories.queue
        assert queue.get(policy.policy_id, partition.partition_id).status == QueueStatus.SKIPPED.value

        clock.advance(days=30)
        components.evaluator.evaluate_all()
        assert queue.get(policy.policy_id, partition.partition_id).status == QueueStatus.PENDING.value

    def test_busy_partition_is_skipped(self, components, policy, old_partition):
        """Test partitions with an operation in flight are not evaluated."""
        components.repositories.partitions.try_acquire(old_partition.partition_id, "merge-1", NOW)

        summary = components.evaluator.evaluate_all()

        assert summary.skipped_busy == 1
        assert components.repositories.queue.get(policy.policy_id, old_partition.partition_id) is None

    def test_running_entry_untouched(self, components, policy, old_partition):
        """Test a RUNNING entry is left to its worker."""
        components.evaluator.evaluate_all()
        queue = components.repositories.queue
        entry = queue.get(policy.policy_id, old_partition.partition_id)
        assert queue.claim(entry.entry_id) is True

        summary = components.evaluator.evaluate_all()

        assert summary.skipped_running == 1
        assert queue.get_entry(entry.entry_id).status == QueueStatus.RUNNING.value

    def test_failed_entry_is_skipped_once_blocked(self, components, policy, old_partition):
        """Test a FAILED entry moves to SKIPPED when its pair becomes blocked."""
        components.evaluator.evaluate_all()
        queue = components.repositories.queue
        entry = queue.get(policy.policy_id, old_partition.partition_id)
        queue.claim(entry.entry_id)
        queue.transition(
            entry.entry_id, QueueStatus.RUNNING, QueueStatus.FAILED,
            "INVALID_TARGET_LOCATION: not in template", executed_at=NOW,
        )
        components.repositories.blocks.block(
            policy.policy_id, old_partition.partition_id, policy.version,
            "INVALID_TARGET_LOCATION", "not in template", NOW,
        )

        summary = components.evaluator.evaluate_all()

        entry = queue.get_entry(entry.entry_id)
        assert summary.skipped_blocked == 1
        assert summary.queued == 0
        assert entry.status == QueueStatus.SKIPPED.value
        assert entry.reason == "Blocked after INVALID_TARGET_LOCATION: not in template"

    def test_blocked_pair_until_policy_corrected(self, components, policy, old_partition):
        """Test a block holds at the failing version and lifts on update."""
        components.repositories.blocks.block(
            policy.policy_id, old_partition.partition_id, policy.version,
            "INVALID_TARGET_LOCATION", "Location TBS_WARM is not part of the tier template", NOW,
        )

        summary = components.evaluator.evaluate_all()
        entry = components.repositories.queue.get(policy.policy_id, old_partition.partition_id)
        assert summary.skipped_blocked == 1
        assert entry.status == QueueStatus.SKIPPED.value
        assert entry.reason.startswith("Blocked after INVALID_TARGET_LOCATION")

        policy.description = "corrected"
        updated = components.policy_service.update_policy(policy)
        assert updated.version == policy.version + 1

        components.evaluator.evaluate_all()
        entry = components.repositories.queue.get(policy.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.PENDING.value

    def test_minimum_reevaluation_interval(self, components, clock, config, policy, old_partition):
        """Test an executed pair is not requeued before the interval elapses."""
        config.evaluation.min_reevaluation_hours = 24
        components.evaluator.evaluate_all()
        queue = components.repositories.queue
        entry = queue.get(policy.policy_id, old_partition.partition_id)
        queue.claim(entry.entry_id)
        queue.transition(entry.entry_id, QueueStatus.RUNNING, QueueStatus.FAILED, "STORAGE_BUSY", executed_at=NOW)

        clock.advance(hours=2)
        summary = components.evaluator.evaluate_all()
        entry = queue.get_entry(entry.entry_id)
        assert summary.skipped_interval == 1
        assert entry.status == QueueStatus.FAILED.value
        assert entry.reason.startswith("Re-evaluation interval not elapsed")

        clock.advance(hours=23)
        components.evaluator.evaluate_all()
        assert queue.get_entry(entry.entry_id).status == QueueStatus.PENDING.value

    def test_disabled_policy_not_evaluated(self, components, old_partition):
        """Test paused policies are reported and skipped."""
        policy = components.policy_service.create_policy(move_policy().disabled().build())

        summary = components.evaluator.evaluate_all()

        assert summary.policies == 0
        assert summary.skipped_policies == {policy.name: DISABLED_REASON}

    def test_policy_profile_changes_eligibility(self, components, add_partition):
        """Test the same partition is COLD under fast aging and WARM by default."""
        upper = NOW.date() - timedelta(days=100)
        partition = add_partition("P_AGED", upper - timedelta(days=30), upper)
        service = components.policy_service
        fast = service.create_policy(
            PolicyBuilder("fast").for_dataset(DATASET).compress("ZSTD")
            .when_temperature(Temperature.COLD).with_profile("FAST_AGING").build()
        )
        default = service.create_policy(
            PolicyBuilder("default").for_dataset(DATASET).compress("GZIP")
            .when_temperature(Temperature.COLD).build()
        )

        components.evaluator.evaluate_all()

        queue = components.repositories.queue
        assert queue.get(fast.policy_id, partition.partition_id).status == QueueStatus.PENDING.value
        skipped = queue.get(default.policy_id, partition.partition_id)
        assert skipped.status == QueueStatus.SKIPPED.value
        assert "(WARM)" in skipped.reason

    def test_evaluate_dataset_scope(self, components, policy, old_partition):
        """Test evaluation limited to one dataset."""
        assert components.evaluator.evaluate_dataset("other").policies == 0
        assert components.evaluator.evaluate_dataset(DATASET).queued == 1

    def test_custom_predicate_from_registry(self, components, old_partition):
        """Test evaluator predicates are used for custom conditions."""
        components.evaluator.predicates.register("large", lambda p, c: p.size_mb >= 50)
        policy = components.policy_service.create_policy(
            PolicyBuilder("large").for_dataset(DATASET).read_only().when_custom("large").build()
        )

        assert components.evaluator.evaluate_policy(policy).queued == 1


# ============================================================
# SERVICE TESTS
# ============================================================

class TestPolicyService:
    """Tests for PolicyService."""

    def test_duplicate_name(self, components):
        """Test policy names are unique."""
        components.policy_service.create_policy(move_policy().build())

        with pytest.raises(DuplicateRecordError):
            components.policy_service.create_policy(move_policy().build())

    def test_unknown_dataset_rejected(self, components):
        """Test policies must target a registered dataset."""
        policy = PolicyBuilder("p").for_dataset("unknown").read_only().when_age_days(1).build()

        with pytest.raises(PolicyValidationError):
            components.policy_service.create_policy(policy)

        assert components.policy_service.list_policies() == []

    def test_pause_and_resume(self, components):
        """Test pause and resume toggle enabled."""
        policy = components.policy_service.create_policy(move_policy().build())

        components.policy_service.pause_policy(policy.policy_id)
        assert components.policy_service.get_policy(policy.policy_id).enabled is False

        components.policy_service.resume_policy(policy.policy_id)
        assert components.policy_service.get_policy(policy.policy_id).enabled is True

        with pytest.raises(RecordNotFoundError):
            components.policy_service.pause_policy(9999)
