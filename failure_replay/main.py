from awslambdaric.lambda_context import (
    LambdaContext,
)
from aws_lambda_powertools import (
    Logger,
)
from boto3 import (
    client,
)
from json import (
    loads,
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
from sql_replicator.main import (
    time_budget,
)
from sql_replicator.sink import (
    PostgresSink,
)

REPLAY_MAX_EMPTY_READS = int(getenv("REPLAY_MAX_EMPTY_READS", "5"))
dynamodbstreams = client("dynamodbstreams")
logger = Logger(
    level=getenv("LOG_LEVEL", "DEBUG"),
    service="failure_replay",
)


def get_message(record: dict) -> dict:
    # On-failure destinations deliver through SNS or SQS
    if "Sns" in record:
        return loads(record["Sns"]["Message"])

    return loads(record["body"])


def get_records(batch_info: dict) -> list:
    """
    Read the range [startSequenceNumber, endSequenceNumber] back from the
    stream. GetRecords may return fewer records than asked for, or none,
    so the iterator is followed until the last record of the range shows
    up. A range that cannot be read to its end raises.
    """
    end_sequence_number = int(batch_info["endSequenceNumber"])
    empty_reads = 0
    records = []

    try:
        shard_iterator = dynamodbstreams.get_shard_iterator(
            SequenceNumber=batch_info["startSequenceNumber"],
            ShardId=batch_info["shardId"],
            ShardIteratorType="AT_SEQUENCE_NUMBER",
            StreamArn=batch_info["streamArn"],
        )["ShardIterator"]

        while shard_iterator and empty_reads < REPLAY_MAX_EMPTY_READS:
            response = dynamodbstreams.get_records(
                Limit=batch_info["batchSize"],
                ShardIterator=shard_iterator,
            )

            if not response["Records"]:
                empty_reads += 1

            for record in response["Records"]:
                sequence_number = int(record["dynamodb"]["SequenceNumber"])

                if sequence_number > end_sequence_number:
                    return records

                records.append(record)

                if sequence_number == end_sequence_number:
                    return records

            shard_iterator = response.get("NextShardIterator")
    except (
        dynamodbstreams.exceptions.ExpiredIteratorException,
        dynamodbstreams.exceptions.ResourceNotFoundException,
        dynamodbstreams.exceptions.TrimmedDataAccessException,
    ) as error:
        raise BatchProcessingError(
            f"Unable to read records from {batch_info['shardId']}: {error}"
        ) from error

    raise BatchProcessingError(
        f"Read {len(records)} records from {batch_info['shardId']} but never "
        f"reached {batch_info['endSequenceNumber']}"
    )


def handler(event: dict, context: LambdaContext) -> None:
    """
    Replays a range of stream records the replicator gave up on.

    The message is the invocation record written by the on-failure
    destination:

    "DDBStreamBatchInfo": {
        "shardId": "shardId-00000000000000000000",
        "startSequenceNumber": "000000000000000000000001",
        "endSequenceNumber": "000000000000000000000003",
        "batchSize": 3,
        "streamArn": "arn:aws:dynamodb:us-east-1:012356789012:table/spaces/stream/0"
    }

    Records are re-read from the stream and applied in order, stopping at
    the first retryable failure. Any failure, permanent ones included, is
    raised so the message is kept for another attempt.
    """
    logger.debug(context)
    logger.debug(event)

    for record in event["Records"]:
        batch_info = get_message(record)["DDBStreamBatchInfo"]

        logger.info(
            f"Replaying {batch_info['batchSize']} records from "
            f"{batch_info['shardId']} starting at "
            f"{batch_info['startSequenceNumber']}"
        )

        events = [
            from_stream_record(stream_record)
            for stream_record in get_records(batch_info)
        ]
        result = process_batch(
            events,
            PostgresSink(get_pool()),
            isolate_failures=False,
            time_budget=time_budget(context),
        )

        for skipped in result.skipped:
            logger.warning(
                f"Record {skipped.sequence_id} skipped: {skipped.error}")

        if result.failed:
            raise BatchProcessingError(
                f"Replay failed at record {result.failed[0].sequence_id}: "
                f"{result.failed[0].error}"
            )
