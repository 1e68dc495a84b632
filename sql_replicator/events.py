from boto3.dynamodb.types import (
    TypeDeserializer,
)
from dataclasses import (
    dataclass,
)
from enum import (
    Enum,
)
from sql_replicator.errors import (
    MalformedEvent,
)
from typing import (
    Optional,
    Union,
)


class OperationKind(Enum):
    INSERT = "INSERT"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


@dataclass(frozen=True)
class SpaceRecord:
    id: str
    name: str
    location: str
    photo_url: Optional[str] = None
    capacity: Optional[int] = None

    @classmethod
    def from_image(cls, image: dict) -> "SpaceRecord":
        missing = [
            attribute
            for attribute in ("id", "name", "location")
            if image.get(attribute) in (None, "")
        ]

        if missing:
            raise MalformedEvent(f"Image is missing {', '.join(missing)}")

        capacity = image.get("capacity")

        if capacity is not None:
            if isinstance(capacity, bool):
                raise MalformedEvent(f"Capacity {capacity!r} is not a number")

            try:
                whole = int(capacity)
            except (OverflowError, TypeError, ValueError):
                raise MalformedEvent(f"Capacity {capacity!r} is not a number")

            if whole != capacity:
                raise MalformedEvent(f"Capacity {capacity!r} is not a whole number")

            capacity = whole

        return cls(
            id=str(image["id"]),
            name=image["name"],
            location=image["location"],
            photo_url=image.get("photoUrl"),
            capacity=capacity,
        )


@dataclass(frozen=True)
class UpsertOp:
    space: SpaceRecord


@dataclass(frozen=True)
class DeleteOp:
    space_id: str


Operation = Union[UpsertOp, DeleteOp]


@dataclass(frozen=True)
class MutationEvent:
    event_id: Optional[str]
    sequence_id: Optional[str]
    operation_kind: Optional[OperationKind]
    new_image: Optional[dict] = None
    old_image: Optional[dict] = None

    def to_operation(self) -> Operation:
        """
        Collapse the three stream event names into the two things the
        sink knows how to do. INSERT and MODIFY both carry the full new
        row and are applied the same way; REMOVE only carries the key
        in its old image.
        """
        if self.operation_kind in (OperationKind.INSERT, OperationKind.MODIFY):
            if not self.new_image:
                raise MalformedEvent(
                    f"{self.operation_kind.value} record has no NewImage")

            return UpsertOp(space=SpaceRecord.from_image(self.new_image))

        if self.operation_kind is OperationKind.REMOVE:
            if not self.old_image:
                raise MalformedEvent("REMOVE record has no OldImage")
            if self.old_image.get("id") in (None, ""):
                raise MalformedEvent("OldImage is missing id")

            return DeleteOp(space_id=str(self.old_image["id"]))

        raise MalformedEvent("Record has an unknown event name")


def dynamo_obj_to_python_obj(dynamo_obj: dict) -> dict:
    deserializer = TypeDeserializer()

    return {
        k: deserializer.deserialize(v)
        for k, v in dynamo_obj.items()
    }


def from_stream_record(record: dict) -> MutationEvent:
    """
    Build a MutationEvent from a DynamoDB Streams record, either as
    delivered to Lambda or as returned by dynamodbstreams.get_records:

    {
        "eventID": "bc391aaxxxxxxxxxxxxb9da61ad3bc",
        "eventName": "MODIFY",
        "dynamodb": {
            "Keys": {"id": {"S": "4881664f-..."}},
            "NewImage": {"id": {"S": "4881664f-..."}, "name": {"S": "Loft"}, ...},
            "OldImage": {...},
            "SequenceNumber": "946475000000000000011227028182",
            "StreamViewType": "NEW_AND_OLD_IMAGES"
        }
    }
    """
    dynamodb = record.get("dynamodb", {})
    new_image = dynamodb.get("NewImage")
    old_image = dynamodb.get("OldImage")

    try:
        operation_kind = OperationKind(record.get("eventName"))
    except ValueError:
        operation_kind = None

    return MutationEvent(
        event_id=record.get("eventID"),
        sequence_id=dynamodb.get("SequenceNumber"),
        operation_kind=operation_kind,
        new_image=dynamo_obj_to_python_obj(new_image) if new_image else None,
        old_image=dynamo_obj_to_python_obj(old_image) if old_image else None,
    )
