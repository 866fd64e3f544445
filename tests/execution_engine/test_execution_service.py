"""
Execution Service Tests.

============================================================
PURPOSE
============================================================
End-to-end execution of queued actions against the in-memory
storage engine.

TEST CATEGORIES:
- Success tests: Metadata, audit log, queue state
- Concurrency tests: Pool bound, one action per partition
- Failure tests: Retryable, terminal, timeout
- Control tests: Window, stop, background loop

============================================================
"""

import asyncio
from datetime import date, time

import pytest

from conftest import DATASET, MB
from core.types import ExecutionStatus, QueueStatus
from execution_engine import AlertType, ExecutionWindow, OutcomeStatus
from policy_engine import PolicyBuilder


def compress_policy(name="compress-old", codec="ZSTD", priority=100):
    return (
        PolicyBuilder(name).for_dataset(DATASET).compress(codec)
        .when_age_days(365).with_priority(priority).build()
    )


@pytest.fixture
def old_partition(add_partition):
    return add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))


def queue_policy(components, policy):
    """Create a policy and evaluate it so its eligible pairs are PENDING."""
    created = components.policy_service.create_policy(policy)
    components.evaluator.evaluate_all()
    return created


# ============================================================
# SUCCESS TESTS
# ============================================================

class TestSuccessfulExecution:
    """Tests for actions that complete."""

    @pytest.mark.asyncio
    async def test_compress(self, components, storage_engine, old_partition):
        """Test a compression updates metadata, log and queue."""
        policy = queue_policy(components, compress_policy())

        result = await components.execution_service.run_pass()

        assert result.succeeded == 1
        assert result.started == 1

        partition = components.repositories.partitions.get(old_partition.partition_id)
        assert partition.codec == "ZSTD"
        assert partition.byte_size == int(100 * MB * 0.4)
        assert partition.busy is False

        logs = components.repositories.logs.query(policy_id=policy.policy_id)
        assert len(logs) == 1
        log = logs[0]
        assert log.status == ExecutionStatus.SUCCESS.value
        assert log.size_before == 100 * MB
        assert log.size_after == partition.byte_size
        assert log.space_saved == 100 * MB - partition.byte_size
        assert log.codec_after == "ZSTD"

        entry = components.repositories.queue.get(policy.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.SUCCESS.value
        assert entry.execution_id == log.execution_id
        assert storage_engine.get_partition(DATASET, "P_2019").codec == "ZSTD"

    @pytest.mark.asyncio
    async def test_executed_pair_is_not_requeued(self, components, old_partition):
        """Test a completed compression is ineligible on the next evaluation."""
        policy = queue_policy(components, compress_policy())
        await components.execution_service.run_pass()

        components.evaluator.evaluate_all()

        entry = components.repositories.queue.get(policy.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.SUCCESS.value
        assert entry.reason == "Partition already compressed with ZSTD"

    @pytest.mark.asyncio
    async def test_drop_removes_partition(self, components, storage_engine, old_partition):
        """Test a DROP removes the partition and its queue rows."""
        policy = queue_policy(
            components,
            PolicyBuilder("purge").for_dataset(DATASET).drop().when_age_days(365).build(),
        )

        result = await components.execution_service.run_pass()

        assert result.succeeded == 1
        assert components.repositories.partitions.get(old_partition.partition_id) is None
        assert components.repositories.queue.get(policy.policy_id, old_partition.partition_id) is None
        assert storage_engine.get_partition(DATASET, "P_2019") is None
        log = components.repositories.logs.query(policy_id=policy.policy_id)[0]
        assert log.status == ExecutionStatus.SUCCESS.value
        assert log.size_after == 0

    @pytest.mark.asyncio
    async def test_custom_action(self, components, storage_engine, old_partition):
        """Test a registered custom action runs its block."""
        components.execution_service.custom_actions.register("purge_pii", "UPDATE ... SET email = NULL")
        queue_policy(
            components,
            PolicyBuilder("pii").for_dataset(DATASET).custom("purge_pii").when_age_days(365).build(),
        )

        result = await components.execution_service.run_pass()

        assert result.succeeded == 1
        assert storage_engine.get_calls("custom:purge_pii") == [("custom:purge_pii", DATASET, "P_2019")]

    @pytest.mark.asyncio
    async def test_priority_then_oldest_first(self, components, storage_engine, add_partition):
        """Test execution order when only one action may start."""
        add_partition("P_2020", date(2020, 1, 1), date(2021, 1, 1))
        add_partition("P_2018", date(2018, 1, 1), date(2019, 1, 1))
        queue_policy(components, compress_policy())

        result = await components.execution_service.run_pass(max_operations=1)

        assert result.started == 1
        assert storage_engine.get_calls("set_codec") == [("set_codec", DATASET, "P_2018")]


# ============================================================
# CONCURRENCY TESTS
# ============================================================

class TestConcurrency:
    """Tests for the worker pool and partition exclusivity."""

    @pytest.mark.asyncio
    async def test_pool_bounds_in_flight_actions(self, components, config, storage_engine, add_partition):
        """Test no more than max_concurrent_operations actions run at once."""
        for year in range(2010, 2016):
            add_partition(f"P_{year}", date(year, 1, 1), date(year + 1, 1, 1))
        queue_policy(components, compress_policy())
        storage_engine.set_delay("set_codec", 0.05)
        config.execution.max_concurrent_operations = 3

        result = await components.execution_service.run_pass()

        assert result.succeeded == 6
        assert storage_engine.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_one_action_per_partition(self, components, storage_engine, old_partition):
        """Test two policies on one partition never overlap."""
        compress = queue_policy(components, compress_policy(priority=10))
        seal = queue_policy(
            components,
            PolicyBuilder("seal").for_dataset(DATASET).read_only().when_age_days(365)
            .with_priority(20).build(),
        )
        storage_engine.set_delay("set_codec", 0.05)

        first = await components.execution_service.run_pass()

        statuses = {o.policy_id: o.status for o in first.outcomes}
        assert statuses[compress.policy_id] == OutcomeStatus.SUCCEEDED
        assert statuses[seal.policy_id] == OutcomeStatus.BUSY
        assert storage_engine.overlaps == []
        entry = components.repositories.queue.get(seal.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.PENDING.value

        second = await components.execution_service.run_pass()
        assert second.succeeded == 1
        assert components.repositories.partitions.get(old_partition.partition_id).read_only is True

    @pytest.mark.asyncio
    async def test_locked_partition_stays_pending(self, components, old_partition):
        """Test a partition locked by another operation is left for a later pass."""
        policy = queue_policy(components, compress_policy())
        partitions = components.repositories.partitions
        partitions.try_acquire(old_partition.partition_id, "merge-abc", components.clock.now())

        result = await components.execution_service.run_pass()

        assert result.count(OutcomeStatus.BUSY) == 1
        assert partitions.holder(old_partition.partition_id) == "merge-abc"
        entry = components.repositories.queue.get(policy.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.PENDING.value


# ============================================================
# FAILURE TESTS
# ============================================================

class TestFailures:
    """Tests for failed and timed-out actions."""

    @pytest.mark.asyncio
    async def test_retryable_failure(self, components, storage_engine, old_partition):
        """Test a retryable failure is logged and requeued by the next evaluation."""
        policy = queue_policy(components, compress_policy())
        storage_engine.inject_error("STORAGE_BUSY", "temp space exhausted")

        result = await components.execution_service.run_pass()

        assert result.failed == 1
        queue = components.repositories.queue
        entry = queue.get(policy.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.FAILED.value
        assert entry.reason == "STORAGE_BUSY: temp space exhausted"

        log = components.repositories.logs.query(policy_id=policy.policy_id)[0]
        assert log.status == ExecutionStatus.FAILED.value
        assert log.error_code == "STORAGE_BUSY"
        assert log.retryable is True
        assert components.repositories.blocks.list_blocks() == []
        assert components.repositories.partitions.holder(old_partition.partition_id) is None

        components.evaluator.evaluate_all()
        assert queue.get(policy.policy_id, old_partition.partition_id).status == QueueStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_no_retry_within_a_pass(self, components, storage_engine, old_partition):
        """Test a failed entry is not attempted again in the same pass."""
        queue_policy(components, compress_policy())
        storage_engine.inject_error("STORAGE_BUSY")

        await components.execution_service.run_pass()
        second = await components.execution_service.run_pass()

        assert second.outcomes == []
        assert len(storage_engine.get_calls("set_codec")) == 1

    @pytest.mark.asyncio
    async def test_terminal_failure_blocks_pair(self, components, storage_engine, old_partition):
        """Test a move to a location outside the template blocks the pair."""
        policy = queue_policy(
            components,
            PolicyBuilder("bad-move").for_dataset(DATASET).move("TBS_NOWHERE").when_age_days(365).build(),
        )

        result = await components.execution_service.run_pass()

        outcome = result.outcomes[0]
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_code == "INVALID_TARGET_LOCATION"
        assert storage_engine.get_calls("relocate") == []

        block = components.repositories.blocks.active_block(
            policy.policy_id, old_partition.partition_id, policy.version
        )
        assert block.error_code == "INVALID_TARGET_LOCATION"
        assert components.execution_service.get_statistics()["blocked"] == 1

        alerts = components.alerter.get_history()
        assert alerts[-1].alert_type == AlertType.ACTION_FAILED
        assert alerts[-1].partition == "P_2019"

        components.evaluator.evaluate_all()
        entry = components.repositories.queue.get(policy.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.SKIPPED.value
        assert entry.reason.startswith("Blocked after INVALID_TARGET_LOCATION")

    @pytest.mark.asyncio
    async def test_unregistered_custom_action(self, components, old_partition):
        """Test a custom action that is not registered fails terminally."""
        queue_policy(
            components,
            PolicyBuilder("ghost").for_dataset(DATASET).custom("ghost").when_age_days(365).build(),
        )

        result = await components.execution_service.run_pass()

        assert result.outcomes[0].error_code == "ACTION_MISMATCH"

    @pytest.mark.asyncio
    async def test_timeout(self, components, config, storage_engine, old_partition):
        """Test a timed-out action is recorded and its late result applied."""
        policy = queue_policy(components, compress_policy())
        config.timeout.default_seconds = 0.05
        storage_engine.set_delay("set_codec", 0.3)

        result = await components.execution_service.run_pass()

        assert result.count(OutcomeStatus.TIMED_OUT) == 1
        log = components.repositories.logs.query(policy_id=policy.policy_id)[0]
        assert log.status == ExecutionStatus.FAILED.value
        assert log.error_code == "TIMEOUT"
        assert log.retryable is True

        partitions = components.repositories.partitions
        assert partitions.get(old_partition.partition_id).busy is True
        assert components.execution_service.get_statistics()["orphaned_actions"] == 1
        assert components.alerter.get_history()[-1].alert_type == AlertType.ACTION_TIMEOUT

        await asyncio.sleep(0.5)

        partition = partitions.get(old_partition.partition_id)
        assert partition.busy is False
        assert partition.codec == "ZSTD"
        assert components.execution_service.get_statistics()["orphaned_actions"] == 0


# ============================================================
# CONTROL TESTS
# ============================================================

class TestExecutionControls:
    """Tests for window, stop and the background loop."""

    @pytest.mark.asyncio
    async def test_outside_window_starts_nothing(self, components, config, storage_engine, old_partition):
        """Test no action starts outside the execution window."""
        policy = queue_policy(components, compress_policy())
        config.execution.window = ExecutionWindow(start=time(22, 0), end=time(6, 0))

        result = await components.execution_service.run_pass()

        assert result.outside_window is True
        assert result.outcomes == []
        assert storage_engine.get_calls() == []
        entry = components.repositories.queue.get(policy.policy_id, old_partition.partition_id)
        assert entry.status == QueueStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_window_opens_later(self, components, config, clock, old_partition):
        """Test work starts once the clock enters the window."""
        queue_policy(components, compress_policy())
        config.execution.window = ExecutionWindow(start=time(22, 0), end=time(6, 0))

        clock.advance(hours=11)
        result = await components.execution_service.run_pass()

        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_closed_weekday_starts_nothing(self, components, config, clock, storage_engine, old_partition):
        """Test a weekday closed for execution, then the next open day."""
        queue_policy(components, compress_policy())
        config.execution.set_weekday_window("monday", None)

        result = await components.execution_service.run_pass()

        assert result.outside_window is True
        assert storage_engine.get_calls() == []

        clock.advance(days=1)
        result = await components.execution_service.run_pass()
        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_full_batch_is_followed_after_cooldown(self, components, config, storage_engine, add_partition):
        """Test the loop runs the next batch after the cooldown when work remains."""
        add_partition("P_2017", date(2017, 1, 1), date(2018, 1, 1))
        add_partition("P_2018", date(2018, 1, 1), date(2019, 1, 1))
        add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))
        queue_policy(components, compress_policy())
        config.execution.auto_execution = True
        config.execution.batch_cooldown_seconds = 0.01
        config.scheduler.execution_max_operations = 1
        service = components.execution_service

        await service.start()
        await asyncio.sleep(0.3)
        await service.stop()

        assert len(storage_engine.get_calls("set_codec")) == 3
        assert service.pending_count() == 0

    @pytest.mark.asyncio
    async def test_stop_prevents_new_work(self, components, storage_engine, old_partition):
        """Test a stopped service starts nothing."""
        queue_policy(components, compress_policy())
        await components.execution_service.start()
        await components.execution_service.stop()

        result = await components.execution_service.run_pass()

        assert result.stopped is True
        assert storage_engine.get_calls() == []

    @pytest.mark.asyncio
    async def test_stop_before_start_keeps_manual_passes(self, components, old_partition):
        """Test stopping a service that never started leaves manual passes working."""
        queue_policy(components, compress_policy())
        service = components.execution_service

        await service.stop()
        result = await service.run_pass()

        assert result.stopped is False
        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_stop_during_manual_pass(self, components, config, storage_engine, add_partition):
        """Test stop ends a manual pass early and the next pass picks up the rest."""
        add_partition("P_2018", date(2018, 1, 1), date(2019, 1, 1))
        add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))
        queue_policy(components, compress_policy())
        config.execution.max_concurrent_operations = 1
        storage_engine.set_delay("set_codec", 0.1)
        service = components.execution_service

        running = asyncio.create_task(service.run_pass())
        await asyncio.sleep(0.02)
        await service.stop()
        first = await running

        assert first.succeeded == 1
        assert first.count(OutcomeStatus.DEFERRED) == 1
        second = await service.run_pass()
        assert second.succeeded == 1

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_action_finish(self, components, config, storage_engine, old_partition):
        """Test stop waits for the running pass."""
        policy = queue_policy(components, compress_policy())
        config.execution.auto_execution = True
        storage_engine.set_delay("set_codec", 0.1)

        service = components.execution_service
        await service.start()
        await asyncio.sleep(0.02)
        await service.stop()

        assert service.is_running is False
        log = components.repositories.logs.query(policy_id=policy.policy_id)[0]
        assert log.status == ExecutionStatus.SUCCESS.value

    @pytest.mark.asyncio
    async def test_auto_execution_disabled(self, components, storage_engine, old_partition):
        """Test the loop idles while automatic execution is off."""
        queue_policy(components, compress_policy())
        service = components.execution_service

        await service.start()
        await asyncio.sleep(0.02)
        await service.stop()

        assert storage_engine.get_calls() == []
        assert service.pending_count() == 1
