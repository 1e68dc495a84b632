from aws_lambda_powertools import (
    Logger,
)
from dataclasses import (
    dataclass,
    field,
)
from enum import (
    Enum,
)
from sql_replicator.errors import (
    MalformedEvent,
    SinkError,
)
from sql_replicator.events import (
    DeleteOp,
    MutationEvent,
    UpsertOp,
)
from time import (
    monotonic,
)
from typing import (
    Iterable,
    Optional,
)

logger = Logger(service="sql_replicator", child=True)


class RecordStatus(Enum):
    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class RecordResult:
    event_id: Optional[str]
    sequence_id: Optional[str]
    status: RecordStatus
    error: Optional[str] = None
    retryable: bool = False


@dataclass
class BatchResult:
    results: list = field(default_factory=list)

    @property
    def succeeded(self) -> list:
        return self._with_status(RecordStatus.SUCCEEDED)

    @property
    def skipped(self) -> list:
        return self._with_status(RecordStatus.SKIPPED)

    @property
    def failed(self) -> list:
        return self._with_status(RecordStatus.FAILED)

    @property
    def retryable(self) -> list:
        return [result for result in self.failed if result.retryable]

    @property
    def permanent(self) -> list:
        return [result for result in self.failed if not result.retryable]

    def batch_item_failures(self) -> list:
        """
        Partial batch response for the event source mapping. DynamoDB
        Streams checkpoints at the lowest reported sequence number and
        redelivers everything after it, so reporting every retryable
        failure keeps the replay in order. Permanent failures are left out;
        redelivering them would only hold up the rest of the shard.
        """
        return [
            {"itemIdentifier": result.sequence_id}
            for result in self.retryable
        ]

    def _with_status(self, status: RecordStatus) -> list:
        return [
            result
            for result in self.results
            if result.status is status
        ]


def apply(event: MutationEvent, sink) -> None:
    operation = event.to_operation()

    if isinstance(operation, UpsertOp):
        logger.debug(f"Upserting space {operation.space.id}")
        sink.upsert(operation.space)
    elif isinstance(operation, DeleteOp):
        logger.debug(f"Deleting space {operation.space_id}")
        sink.delete(operation.space_id)


def not_attempted(events: list, reason: str) -> list:
    return [
        RecordResult(
            event_id=event.event_id,
            error=reason,
            retryable=True,
            sequence_id=event.sequence_id,
            status=RecordStatus.FAILED,
        )
        for event in events
    ]


def process_batch(
    events: Iterable[MutationEvent],
    sink,
    isolate_failures: bool = True,
    time_budget: Optional[float] = None,
) -> BatchResult:
    """
    Apply the events to the sink one at a time, in delivered order.

    Malformed events are skipped and never retried. A sink failure is
    recorded and processing moves on to the next event when
    isolate_failures is set; otherwise a retryable failure stops the batch
    there and every remaining event is reported as failed so the whole
    range is redelivered. A permanent failure never stops the batch, since
    redelivery cannot apply that event anyway. Events not started before
    time_budget (in seconds) runs out are reported as failed as well.
    """
    events = list(events)
    deadline = None if time_budget is None else monotonic() + time_budget
    result = BatchResult()

    for index, event in enumerate(events):
        if deadline is not None and monotonic() >= deadline:
            remaining = events[index:]
            logger.warning(
                f"Time budget exhausted, {len(remaining)} records left for retry")
            result.results.extend(
                not_attempted(remaining, "Time budget exhausted"))
            break

        logger.info(
            f"Processing record {event.event_id}",
            extra={
                "event_name": getattr(event.operation_kind, "value", None),
                "sequence_number": event.sequence_id,
            },
        )

        try:
            apply(event, sink)
        except MalformedEvent as malformed:
            logger.warning(f"Skipping record {event.event_id}: {malformed}")
            result.results.append(
                RecordResult(
                    event_id=event.event_id,
                    error=str(malformed),
                    sequence_id=event.sequence_id,
                    status=RecordStatus.SKIPPED,
                )
            )
            continue
        except SinkError as sink_error:
            logger.exception(f"Failed to apply record {event.event_id}")
            result.results.append(
                RecordResult(
                    event_id=event.event_id,
                    error=str(sink_error),
                    retryable=sink_error.retryable,
                    sequence_id=event.sequence_id,
                    status=RecordStatus.FAILED,
                )
            )

            if sink_error.retryable and not isolate_failures:
                result.results.extend(
                    not_attempted(
                        events[index + 1:],
                        f"Not attempted after failure of {event.event_id}",
                    )
                )
                break

            continue

        result.results.append(
            RecordResult(
                event_id=event.event_id,
                sequence_id=event.sequence_id,
                status=RecordStatus.SUCCEEDED,
            )
        )

    logger.info(
        f"Processed {len(events)} records: {len(result.succeeded)} succeeded, "
        f"{len(result.skipped)} skipped, {len(result.failed)} failed"
    )

    return result
