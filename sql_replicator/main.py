from awslambdaric.lambda_context import (
    LambdaContext,
)
from aws_lambda_powertools import (
    Logger,
)
from os import (
    getenv,
)
from sql_replicator.database import (
    get_pool,
)
from sql_replicator.engine import (
    process_batch,
)
from sql_replicator.errors import (
    BatchProcessingError,
)
from sql_replicator.events import (
    from_stream_record,
)
from sql_replicator.sink import (
    PostgresSink,
)
from typing import (
    Optional,
)

REPORT_BATCH_ITEM_FAILURES = getenv(
    "REPORT_BATCH_ITEM_FAILURES", "true").lower() == "true"
TIME_BUDGET_MARGIN_MS = int(getenv("TIME_BUDGET_MARGIN_MS", "1000"))
logger = Logger(
    level=getenv("LOG_LEVEL", "DEBUG"),
    service="sql_replicator",
)


def time_budget(context: LambdaContext) -> Optional[float]:
    if context is None:
        return None

    remaining = context.get_remaining_time_in_millis() - TIME_BUDGET_MARGIN_MS

    return max(remaining, 0) / 1000


def handler(event: dict, context: LambdaContext) -> dict:
    """
    Replicates spaces from the DynamoDB table to Aurora PostgreSQL.

    Triggered by the table's stream (NEW_AND_OLD_IMAGES). INSERT and
    MODIFY records are upserted, REMOVE records are deleted. Retryable
    failures are returned as batchItemFailures so only the range from the
    first one is redelivered. Malformed records and permanent failures
    (constraint violations) are logged and acknowledged.
    """
    logger.debug(context)
    logger.debug(event)

    records = event.get("Records", [])

    if not records:
        return {"batchItemFailures": []}

    events = [from_stream_record(record) for record in records]

    # Credential failures propagate and fail the invocation
    sink = PostgresSink(get_pool())

    result = process_batch(
        events,
        sink,
        isolate_failures=REPORT_BATCH_ITEM_FAILURES,
        time_budget=time_budget(context),
    )

    for permanent in result.permanent:
        logger.error(
            f"Record {permanent.sequence_id} cannot be replicated and is "
            f"acknowledged without retry: {permanent.error}",
            extra={"event_id": permanent.event_id},
        )

    if result.retryable and not REPORT_BATCH_ITEM_FAILURES:
        raise BatchProcessingError(
            f"{len(result.retryable)} of {len(events)} records failed")

    return {"batchItemFailures": result.batch_item_failures()}
