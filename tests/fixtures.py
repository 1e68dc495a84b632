from awslambdaric.lambda_context import (
    LambdaContext,
)
from pytest import (
    fixture,
)
from sql_replicator.errors import (
    ConstraintViolation,
    TransientSinkError,
)
from time import (
    time,
)


class InMemorySink:
    """Stands in for the spaces table, keyed by id."""

    def __init__(self, fail_on: tuple = (), violate_on: tuple = ()):
        self.fail_on = set(fail_on)
        self.violate_on = set(violate_on)
        self.calls = []
        self.rows = {}

    def upsert(self, space) -> None:
        self.calls.append(("upsert", space.id))
        self._maybe_fail(space.id)
        created_at = self.rows.get(space.id, {}).get("created_at", len(self.calls))
        self.rows[space.id] = {
            "capacity": space.capacity,
            "created_at": created_at,
            "location": space.location,
            "name": space.name,
            "photo_url": space.photo_url,
        }

    def delete(self, space_id: str) -> None:
        self.calls.append(("delete", space_id))
        self._maybe_fail(space_id)
        self.rows.pop(space_id, None)

    def _maybe_fail(self, space_id: str) -> None:
        if space_id in self.fail_on:
            raise TransientSinkError("connection reset by peer")
        if space_id in self.violate_on:
            raise ConstraintViolation("value too long for type character varying(255)")


def image(id: str, name: str = "Loft", location: str = "Berlin", **extra) -> dict:
    image = {
        "id": {
            "S": id,
        },
        "location": {
            "S": location,
        },
        "name": {
            "S": name,
        },
    }

    for k, v in extra.items():
        image[k] = {"N": str(v)} if isinstance(v, int) else {"S": v}

    return image


def stream_record(
    event_name: str,
    sequence_number: str,
    new_image: dict = None,
    old_image: dict = None,
) -> dict:
    dynamodb = {
        "SequenceNumber": sequence_number,
        "StreamViewType": "NEW_AND_OLD_IMAGES",
    }

    if new_image is not None:
        dynamodb["NewImage"] = new_image
    if old_image is not None:
        dynamodb["OldImage"] = old_image

    return {
        "awsRegion": "us-east-1",
        "dynamodb": dynamodb,
        "eventID": f"event-{sequence_number}",
        "eventName": event_name,
        "eventSource": "aws:dynamodb",
        "eventVersion": "1.1",
    }


@fixture
def context() -> LambdaContext:
    context = LambdaContext(
        "6b1e1c4f-4b7e-4e2a-9a53-0e6f2b8f0c11",
        None,
        None,
        int(time() * 1000) + 30000,
        invoked_function_arn="arn:aws:lambda:us-east-1:012356789012:function:sqlReplicator",
    )

    yield context


@fixture
def sink() -> InMemorySink:
    yield InMemorySink()
