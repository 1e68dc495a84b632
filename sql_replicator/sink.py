from aws_lambda_powertools import (
    Logger,
)
from dataclasses import (
    asdict,
)
from os import (
    getenv,
)
from psycopg2 import (
    Error,
    InterfaceError,
    OperationalError,
    sql,
)
from psycopg2.pool import (
    PoolError,
)
from sql_replicator.errors import (
    ConstraintViolation,
    TransientSinkError,
)
from sql_replicator.events import (
    SpaceRecord,
)

DB_TABLE = getenv("DB_TABLE", "app.spaces")
logger = Logger(service="sql_replicator", child=True)

TABLE = sql.Identifier(*DB_TABLE.split("."))

# created_at is left out of the update list so it keeps the first insert time
UPSERT_SPACE = sql.SQL("""
    INSERT INTO {table} (id, name, location, photo_url, capacity, created_at, updated_at)
    VALUES (%(id)s, %(name)s, %(location)s, %(photo_url)s, %(capacity)s, now(), now())
    ON CONFLICT (id)
    DO UPDATE SET
        name = EXCLUDED.name,
        location = EXCLUDED.location,
        photo_url = EXCLUDED.photo_url,
        capacity = EXCLUDED.capacity,
        updated_at = EXCLUDED.updated_at
""").format(table=TABLE)

DELETE_SPACE = sql.SQL("""
    DELETE FROM {table} WHERE id = %(id)s
""").format(table=TABLE)


class PostgresSink:
    """
    Relational sink for spaces. Both writes are single statements, so
    applying the same one twice leaves the table in the same state.
    """

    def __init__(self, pool):
        self.pool = pool

    def upsert(self, space: SpaceRecord) -> None:
        self._execute(UPSERT_SPACE, asdict(space))
        logger.info(f"Successfully upserted space {space.id}")

    def delete(self, space_id: str) -> None:
        # Deleting a row that is already gone is a no-op
        self._execute(DELETE_SPACE, {"id": space_id})
        logger.info(f"Successfully deleted space {space_id}")

    def _execute(self, query: sql.Composed, parameters: dict) -> None:
        try:
            connection = self.pool.getconn()
        except (OperationalError, PoolError) as error:
            raise TransientSinkError(f"Unable to get a connection: {error}") from error

        discard = False

        try:
            # Commits on success, rolls back on error
            with connection:
                with connection.cursor() as cursor:
                    cursor.execute(query, parameters)
        except (InterfaceError, OperationalError) as error:
            discard = True
            raise TransientSinkError(str(error)) from error
        except Error as error:
            raise ConstraintViolation(str(error)) from error
        finally:
            self.pool.putconn(connection, close=discard)
