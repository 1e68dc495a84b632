from awslambdaric.lambda_context import (
    LambdaContext,
)
from aws_lambda_powertools import (
    Logger,
)
from boto3 import (
    client,
)
from boto3.dynamodb.types import (
    TypeSerializer,
)
from decimal import (
    Decimal,
)
from json import (
    dumps,
    loads,
)
from os import (
    getenv,
)
from uuid import (
    uuid4,
)

TABLE_NAME = getenv("TABLE_NAME")
dynamodb = client("dynamodb")
logger = Logger(
    level=getenv("LOG_LEVEL", "DEBUG"),
    service="spaces",
)


class ValidationError(ValueError):
    pass


def python_obj_to_dynamo_obj(python_obj: dict) -> dict:
    serializer = TypeSerializer()

    return {
        k: serializer.serialize(v)
        for k, v in python_obj.items()
    }


def response(status_code: int, body: dict) -> dict:
    return {
        "body": dumps(body),
        "statusCode": status_code,
    }


def parse_space(body: str) -> dict:
    try:
        payload = loads(body or "", parse_float=Decimal)
    except ValueError:
        raise ValidationError("Body is not valid JSON")

    if not isinstance(payload, dict):
        raise ValidationError("Body must be a JSON object")

    for attribute in ("name", "location"):
        if not isinstance(payload.get(attribute), str) or not payload[attribute]:
            raise ValidationError(f"{attribute} is required")

    space = {
        "location": payload["location"],
        "name": payload["name"],
    }

    if payload.get("photoUrl") is not None:
        if not isinstance(payload["photoUrl"], str):
            raise ValidationError("photoUrl must be a string")

        space["photoUrl"] = payload["photoUrl"]

    if payload.get("capacity") is not None:
        capacity = payload["capacity"]

        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 0:
            raise ValidationError("capacity must be a non-negative integer")

        space["capacity"] = capacity

    return space


def post_space(event: dict) -> dict:
    space = parse_space(event.get("body"))
    space["id"] = str(uuid4())

    dynamodb.put_item(
        ConditionExpression="attribute_not_exists(id)",
        Item=python_obj_to_dynamo_obj(space),
        TableName=TABLE_NAME,
    )

    logger.info(f"Created space {space['id']}")

    return response(201, {"id": space["id"]})


def handler(event: dict, context: LambdaContext) -> dict:
    logger.debug(context)
    logger.debug(event)

    try:
        if event.get("httpMethod") == "POST":
            return post_space(event)

        return response(405, {"message": "Method not allowed"})
    except ValidationError as validation_error:
        logger.warning(f"Rejected request: {validation_error}")

        return response(400, {"message": str(validation_error)})
    except Exception as exception:
        logger.exception("Unable to handle request")

        return response(500, {"message": str(exception)})
