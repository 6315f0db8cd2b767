"""Tests for sequential batch execution."""

import pytest

from relational_mcp_server.batch_executor import (
    BatchOptions,
    benchmark_batch_execution,
    chunk_items,
    execute_batched_task,
)
from relational_mcp_server.exceptions import QueryValidationError

from fixtures import FakeClock


class TestBatchOptions:
    """Test cases for BatchOptions validation."""

    def test_defaults(self):
        """Test default settings."""
        options = BatchOptions()
        assert options.batch_size == 100
        assert options.continue_on_error is True
        assert options.max_retries == 0
        assert options.retry_delay_ms == 0

    @pytest.mark.parametrize("kwargs,field", [
        ({"batch_size": 0}, "batchSize"),
        ({"batch_size": 5001}, "batchSize"),
        ({"batch_size": 2.5}, "batchSize"),
        ({"max_retries": 6}, "maxRetries"),
        ({"max_retries": -1}, "maxRetries"),
        ({"retry_delay_ms": 60001}, "retryDelayMs"),
    ])
    def test_bounds(self, kwargs, field):
        """Test that out-of-range values name the offending field."""
        with pytest.raises(QueryValidationError, match=field):
            BatchOptions(**kwargs)

    def test_from_dict(self):
        """Test camelCase construction."""
        options = BatchOptions.from_dict({"batchSize": 10, "continueOnError": False, "maxRetries": 2})
        assert options == BatchOptions(batch_size=10, continue_on_error=False, max_retries=2)


class TestChunkItems:
    """Test cases for chunk_items."""

    def test_chunks(self):
        """Test consecutive chunking with a short tail."""
        assert chunk_items([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunk_items([], 3) == []


class TestExecuteBatchedTask:
    """Test cases for execute_batched_task."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sleeps = []
        self.clock = FakeClock()

    def run(self, items, execute_batch, **options):
        return execute_batched_task(
            "update",
            items,
            execute_batch,
            BatchOptions(**options),
            sleep=self.sleeps.append,
            clock=self.clock,
        )

    def test_all_batches_succeed(self):
        """Test counts when every chunk succeeds."""
        calls = []

        def execute_batch(chunk, index):
            calls.append((index, list(chunk)))
            return len(chunk)

        result = self.run(list(range(5)), execute_batch, batch_size=2)

        assert calls == [(0, [0, 1]), (1, [2, 3]), (2, [4])]
        assert result.total_items == 5
        assert result.total_batches == 3
        assert result.successful_items == 5
        assert result.failed_items == 0
        assert result.results == [2, 2, 1]
        assert not result.partial_success

    def test_failure_recorded_and_processing_continues(self):
        """Test continue_on_error records the failure and runs later chunks."""
        def execute_batch(chunk, index):
            if index == 1:
                raise RuntimeError("batch 1 broke")
            return chunk

        result = self.run([1, 2, 3, 4, 5], execute_batch, batch_size=2)

        assert result.successful_items == 3
        assert result.failed_items == 2
        assert result.processed_items == 5
        assert result.partial_success
        assert len(result.failures) == 1
        failure = result.failures[0].to_dict()
        assert failure == {
            "operation": "update",
            "batchIndex": 1,
            "batchSize": 2,
            "attempts": 1,
            "error": "batch 1 broke",
        }

    def test_stop_on_error_reraises_original(self):
        """Test that continue_on_error=False re-raises the chunk's own exception."""
        class Broken(Exception):
            pass

        calls = []

        def execute_batch(chunk, index):
            calls.append(index)
            raise Broken("first batch")

        with pytest.raises(Broken, match="first batch"):
            self.run([1, 2, 3], execute_batch, batch_size=1, continue_on_error=False)
        assert calls == [0]

    def test_retries_with_delay(self):
        """Test that a flaky chunk is retried and eventually succeeds."""
        attempts = {"count": 0}

        def execute_batch(chunk, index):
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise RuntimeError("flaky")
            return chunk

        result = self.run([1], execute_batch, max_retries=2, retry_delay_ms=250)

        assert result.retries == 2
        assert result.successful_items == 1
        assert result.failures == []
        assert self.sleeps == [0.25, 0.25]

    def test_retries_exhausted(self):
        """Test that attempts are recorded once retries run out."""
        def execute_batch(chunk, index):
            raise RuntimeError("always")

        result = self.run([1, 2], execute_batch, batch_size=2, max_retries=1)

        assert result.retries == 1
        assert result.failures[0].attempts == 2
        assert result.failed_items == 2
        assert self.sleeps == []

    def test_success_counter_and_progress(self):
        """Test partial success within a chunk and progress callbacks."""
        progress = []

        result = execute_batched_task(
            "delete",
            ["a", "b", "c"],
            lambda chunk, index: {"ok": len(chunk) - 1},
            BatchOptions(batch_size=3),
            success_counter=lambda batch_result, chunk: batch_result["ok"],
            on_progress=progress.append,
            clock=self.clock,
        )

        assert result.successful_items == 2
        assert result.failed_items == 1
        assert result.partial_success
        assert len(progress) == 1
        assert progress[0].processed_items == 3
        assert progress[0].last_batch_succeeded

    def test_execution_time(self):
        """Test execution time from the injected clock."""
        def execute_batch(chunk, index):
            self.clock.advance_ms(40)
            return chunk

        result = self.run([1, 2], execute_batch, batch_size=1)
        assert result.execution_time_ms == pytest.approx(80)
        assert result.to_dict()["executionTime"] == pytest.approx(80)


class TestBenchmark:
    """Test cases for benchmark_batch_execution."""

    def test_benchmark_timing(self):
        """Test the individual versus batched comparison."""
        clock = FakeClock()

        def run_individual(item, index):
            clock.advance_ms(10)

        def run_batch(chunk, index):
            clock.advance_ms(15)

        result = benchmark_batch_execution(
            list(range(6)), run_individual, run_batch, batch_size=3, clock=clock,
        )

        assert result.batch_count == 2
        assert result.individual_execution_time_ms == pytest.approx(60)
        assert result.batched_execution_time_ms == pytest.approx(30)
        assert result.time_saved_ms == pytest.approx(30)
        assert result.speedup_ratio == pytest.approx(2)
        assert result.speedup_percent == pytest.approx(50)
        assert result.to_dict()["itemCount"] == 6

    def test_benchmark_with_no_time(self):
        """Test that zero timings do not divide by zero."""
        result = benchmark_batch_execution([1], lambda item, index: None, lambda chunk, index: None, clock=lambda: 0.0)
        assert result.speedup_ratio == 0.0
        assert result.speedup_percent == 0.0
