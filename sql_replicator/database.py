from aws_lambda_powertools import (
    Logger,
)
from boto3 import (
    client,
)
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
)
from enum import (
    Enum,
)
from json import (
    loads,
)
from os import (
    getenv,
)
from psycopg2.pool import (
    ThreadedConnectionPool,
)
from sql_replicator.errors import (
    CredentialResolutionError,
)
from threading import (
    Lock,
)

DB_CONNECT_TIMEOUT = int(getenv("DB_CONNECT_TIMEOUT", "10"))
DB_HOST = getenv("DB_HOST")
DB_NAME = getenv("DB_NAME")
DB_POOL_MAX_CONNECTIONS = int(getenv("DB_POOL_MAX_CONNECTIONS", "5"))
DB_PORT = int(getenv("DB_PORT", "5432"))
DB_SECRET_ARN = getenv("DB_SECRET_ARN")
logger = Logger(service="sql_replicator", child=True)
secretsmanager = client("secretsmanager")


class PoolState(Enum):
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    FAILED = "FAILED"


def get_credentials(secret_id: str) -> dict:
    try:
        response = secretsmanager.get_secret_value(SecretId=secret_id)
        secret = loads(response["SecretString"])

        return {
            "password": secret["password"],
            "username": secret["username"],
        }
    except (BotoCoreError, ClientError) as error:
        raise CredentialResolutionError(
            f"Unable to read secret {secret_id}: {error}") from error
    except (KeyError, TypeError, ValueError) as error:
        raise CredentialResolutionError(
            f"Secret {secret_id} has no usable credentials") from error


class LazyConnectionPool:
    """
    Process wide connection pool, built on first use and kept for the
    life of the process (warm invocations reuse it).

    Credentials are read once; concurrent first callers wait on the lock
    and get the outcome of the build already in flight, the pool or its
    error. A failed build is attempted again only by a later call that
    did not overlap it. Once ready the pool is never rebuilt, so rotated
    credentials need a fresh process.
    """

    def __init__(self, max_connections: int = DB_POOL_MAX_CONNECTIONS):
        self.max_connections = max_connections
        self.state = PoolState.UNINITIALIZED
        self._attempts = 0
        self._error = None
        self._lock = Lock()
        self._pool = None

    def get(self) -> ThreadedConnectionPool:
        if self.state is PoolState.READY:
            return self._pool

        attempts = self._attempts

        with self._lock:
            if self.state is PoolState.READY:
                return self._pool

            # A build finished while this caller waited on the lock
            if self.state is PoolState.FAILED and self._attempts != attempts:
                raise self._error

            self._attempts += 1
            self.state = PoolState.INITIALIZING

            try:
                self._pool = self._build()
            except Exception as error:
                self._error = error
                self.state = PoolState.FAILED
                raise

            self._error = None
            self.state = PoolState.READY

        return self._pool

    def _build(self) -> ThreadedConnectionPool:
        credentials = get_credentials(DB_SECRET_ARN)
        pool = ThreadedConnectionPool(
            0,
            self.max_connections,
            connect_timeout=DB_CONNECT_TIMEOUT,
            dbname=DB_NAME,
            host=DB_HOST,
            password=credentials["password"],
            port=DB_PORT,
            user=credentials["username"],
        )

        logger.info(
            f"Database connection pool created for {DB_HOST}:{DB_PORT}/{DB_NAME}")

        return pool


connection_pool = LazyConnectionPool()


def get_pool() -> ThreadedConnectionPool:
    return connection_pool.get()
