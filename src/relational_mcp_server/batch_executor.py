"""
Sequential batch execution with per-batch retries.

Items are split into chunks and each chunk is handed to a caller-supplied
function. Chunks run strictly one after another on the caller's thread.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .exceptions import QueryValidationError

logger = logging.getLogger(__name__)

TItem = TypeVar("TItem")

DEFAULT_BATCH_SIZE = 100
MAX_BATCH_SIZE = 5000
MAX_RETRY_ATTEMPTS = 5
MAX_RETRY_DELAY_MS = 60000


def _bounded_int(value: Any, field_name: str, minimum: int, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not minimum <= value <= maximum:
        raise QueryValidationError(f"{field_name} must be an integer between {minimum} and {maximum}")
    return value


@dataclass(frozen=True)
class BatchOptions:
    """Batch execution settings."""

    batch_size: int = DEFAULT_BATCH_SIZE
    continue_on_error: bool = True
    max_retries: int = 0
    retry_delay_ms: int = 0

    def __post_init__(self):
        _bounded_int(self.batch_size, "batchSize", 1, MAX_BATCH_SIZE)
        _bounded_int(self.max_retries, "maxRetries", 0, MAX_RETRY_ATTEMPTS)
        _bounded_int(self.retry_delay_ms, "retryDelayMs", 0, MAX_RETRY_DELAY_MS)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BatchOptions":
        data = data or {}
        defaults = cls()
        return cls(
            batch_size=data.get("batchSize", data.get("batch_size", defaults.batch_size)),
            continue_on_error=bool(data.get("continueOnError", data.get("continue_on_error", True))),
            max_retries=data.get("maxRetries", data.get("max_retries", defaults.max_retries)),
            retry_delay_ms=data.get("retryDelayMs", data.get("retry_delay_ms", defaults.retry_delay_ms)),
        )


@dataclass(frozen=True)
class BatchFailure:
    """A batch that still failed after its retries."""

    operation: str
    batch_index: int
    batch_size: int
    attempts: int
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "batchIndex": self.batch_index,
            "batchSize": self.batch_size,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass(frozen=True)
class BatchProgress:
    """Progress snapshot emitted after each batch."""

    operation: str
    batch_index: int
    total_batches: int
    batch_size: int
    processed_items: int
    total_items: int
    successful_items: int
    failed_items: int
    last_batch_succeeded: bool


@dataclass
class BatchResult:
    """Summary of a batched run."""

    results: List[Any] = field(default_factory=list)
    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    total_batches: int = 0
    retries: int = 0
    partial_success: bool = False
    execution_time_ms: float = 0.0
    failures: List[BatchFailure] = field(default_factory=list)

    def to_dict(self, include_results: bool = False) -> Dict[str, Any]:
        data = {
            "totalItems": self.total_items,
            "processedItems": self.processed_items,
            "successfulItems": self.successful_items,
            "failedItems": self.failed_items,
            "totalBatches": self.total_batches,
            "retries": self.retries,
            "partialSuccess": self.partial_success,
            "executionTime": self.execution_time_ms,
            "failures": [failure.to_dict() for failure in self.failures],
        }
        if include_results:
            data["results"] = list(self.results)
        return data


@dataclass(frozen=True)
class BatchBenchmarkResult:
    """Individual versus batched timing comparison."""

    item_count: int
    batch_size: int
    batch_count: int
    individual_execution_time_ms: float
    batched_execution_time_ms: float
    time_saved_ms: float
    speedup_ratio: float
    speedup_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemCount": self.item_count,
            "batchSize": self.batch_size,
            "batchCount": self.batch_count,
            "individualExecutionTime": self.individual_execution_time_ms,
            "batchedExecutionTime": self.batched_execution_time_ms,
            "timeSavedMs": self.time_saved_ms,
            "speedupRatio": self.speedup_ratio,
            "speedupPercent": self.speedup_percent,
        }


def chunk_items(items: Sequence[TItem], chunk_size: int) -> List[List[TItem]]:
    """Split items into consecutive chunks of at most `chunk_size`."""
    _bounded_int(chunk_size, "batchSize", 1, MAX_BATCH_SIZE)
    items = list(items)
    return [items[start:start + chunk_size] for start in range(0, len(items), chunk_size)]


def execute_batched_task(
    operation: str,
    items: Sequence[TItem],
    execute_batch: Callable[[List[TItem], int], Any],
    options: Optional[BatchOptions] = None,
    success_counter: Optional[Callable[[Any, List[TItem]], int]] = None,
    on_progress: Optional[Callable[[BatchProgress], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> BatchResult:
    """
    Run `execute_batch(chunk, index)` for each chunk of `items`.

    A failing chunk is retried up to `max_retries` times. If it still fails and
    `continue_on_error` is False, the chunk's last exception propagates
    unchanged; otherwise the failure is recorded and the next chunk runs.

    Args:
        operation: Label used in logs and failure records
        items: Items to process
        execute_batch: Callable processing one chunk
        options: BatchOptions (defaults apply when None)
        success_counter: Returns how many items of a chunk succeeded; defaults to the chunk length
        on_progress: Called with a BatchProgress after each chunk
        sleep: Sleep function used between retries, in seconds
        clock: Monotonic clock in seconds

    Returns:
        BatchResult
    """
    options = options or BatchOptions()
    start_time = clock()
    items = list(items)
    batches = chunk_items(items, options.batch_size)
    result = BatchResult(total_items=len(items), total_batches=len(batches))

    logger.debug(
        f"Starting batched {operation}: {len(items)} items in {len(batches)} batches",
        extra={
            "operation": operation,
            "batch_size": options.batch_size,
            "continue_on_error": options.continue_on_error,
            "max_retries": options.max_retries,
        },
    )

    def report(batch_index: int, batch_size: int, succeeded: bool) -> None:
        if on_progress is None:
            return
        on_progress(BatchProgress(
            operation=operation,
            batch_index=batch_index,
            total_batches=len(batches),
            batch_size=batch_size,
            processed_items=result.processed_items,
            total_items=result.total_items,
            successful_items=result.successful_items,
            failed_items=result.failed_items,
            last_batch_succeeded=succeeded,
        ))

    for batch_index, batch_items in enumerate(batches):
        attempts = 0
        while True:
            attempts += 1
            try:
                batch_result = execute_batch(batch_items, batch_index)
            except Exception as e:
                if attempts <= options.max_retries:
                    result.retries += 1
                    logger.warning(
                        f"Batch {batch_index + 1}/{len(batches)} of {operation} failed, retrying: {e}",
                        extra={"operation": operation, "batch_index": batch_index, "attempts": attempts},
                    )
                    if options.retry_delay_ms > 0:
                        sleep(options.retry_delay_ms / 1000)
                    continue

                result.failures.append(BatchFailure(
                    operation=operation,
                    batch_index=batch_index,
                    batch_size=len(batch_items),
                    attempts=attempts,
                    error=str(e),
                ))
                result.processed_items += len(batch_items)
                result.failed_items += len(batch_items)
                report(batch_index, len(batch_items), False)

                if not options.continue_on_error:
                    logger.error(
                        f"Batch {batch_index + 1}/{len(batches)} of {operation} failed after "
                        f"{attempts} attempts: {e}",
                        extra={"operation": operation, "batch_index": batch_index},
                    )
                    raise

                logger.warning(
                    f"Batch {batch_index + 1}/{len(batches)} of {operation} failed and was recorded: {e}",
                    extra={"operation": operation, "batch_index": batch_index, "attempts": attempts},
                )
                break

            success_count = len(batch_items)
            if success_counter is not None:
                success_count = min(max(success_counter(batch_result, batch_items), 0), len(batch_items))

            result.results.append(batch_result)
            result.processed_items += len(batch_items)
            result.successful_items += success_count
            result.failed_items += len(batch_items) - success_count
            report(batch_index, len(batch_items), True)
            break

    result.execution_time_ms = (clock() - start_time) * 1000
    result.partial_success = result.successful_items > 0 and result.failed_items > 0

    logger.debug(
        f"Batched {operation} completed: {result.successful_items} succeeded, "
        f"{result.failed_items} failed, {result.retries} retries",
        extra={"operation": operation, "partial_success": result.partial_success},
    )
    return result


def benchmark_batch_execution(
    items: Sequence[TItem],
    run_individual: Callable[[TItem, int], Any],
    run_batch: Callable[[List[TItem], int], Any],
    batch_size: int = DEFAULT_BATCH_SIZE,
    clock: Callable[[], float] = time.monotonic,
) -> BatchBenchmarkResult:
    """
    Time processing every item individually against processing them in chunks.

    Only run this against idempotent or isolated workloads: both passes really execute.
    """
    batches = chunk_items(items, batch_size)

    individual_start = clock()
    for index, item in enumerate(items):
        run_individual(item, index)
    individual_ms = (clock() - individual_start) * 1000

    batched_start = clock()
    for batch_index, batch_items in enumerate(batches):
        run_batch(batch_items, batch_index)
    batched_ms = (clock() - batched_start) * 1000

    time_saved = max(individual_ms - batched_ms, 0.0)
    speedup_ratio = individual_ms / batched_ms if batched_ms > 0 else 0.0
    speedup_percent = (time_saved / individual_ms) * 100 if individual_ms > 0 else 0.0

    logger.debug(
        f"Batch benchmark: {len(items)} items, individual {individual_ms:.2f}ms, batched {batched_ms:.2f}ms",
        extra={"batch_size": batch_size, "batch_count": len(batches)},
    )

    return BatchBenchmarkResult(
        item_count=len(items),
        batch_size=batch_size,
        batch_count=len(batches),
        individual_execution_time_ms=individual_ms,
        batched_execution_time_ms=batched_ms,
        time_saved_ms=time_saved,
        speedup_ratio=speedup_ratio,
        speedup_percent=speedup_percent,
    )
