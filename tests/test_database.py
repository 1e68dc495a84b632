from botocore.stub import (
    Stubber,
)
from json import (
    dumps,
)
from os import (
    getenv,
)
from pytest import (
    fixture,
    raises,
)
from sql_replicator import (
    database,
)
from sql_replicator.database import (
    LazyConnectionPool,
    PoolState,
    secretsmanager,
)
from sql_replicator.errors import (
    CredentialResolutionError,
)
from threading import (
    Barrier,
    Thread,
)
from time import (
    sleep,
)


class PoolRecorder:
    def __init__(self):
        self.created = []

    def __call__(self, minconn: int, maxconn: int, **kwargs):
        # Widen the window in which a second caller could slip through
        sleep(0.05)
        self.created.append((minconn, maxconn, kwargs))

        return self


@fixture
def pools(monkeypatch) -> PoolRecorder:
    pools = PoolRecorder()
    monkeypatch.setattr(database, "ThreadedConnectionPool", pools)

    yield pools


@fixture
def secretsmanager_stub() -> Stubber:
    secretsmanager_stub = Stubber(secretsmanager)

    secretsmanager_stub.add_response(
        "get_secret_value",
        expected_params={
            "SecretId": getenv("DB_SECRET_ARN"),
        },
        service_response={
            "SecretString": dumps({
                "password": "s3cr3t",
                "username": "postgres",
            }),
        },
    )

    yield secretsmanager_stub


def test_pool_is_built_once(pools: PoolRecorder, secretsmanager_stub: Stubber) -> None:
    connection_pool = LazyConnectionPool(max_connections=5)

    with secretsmanager_stub:
        first = connection_pool.get()
        second = connection_pool.get()

    assert first is second  # nosec
    assert connection_pool.state is PoolState.READY  # nosec
    assert pools.created == [  # nosec
        (
            0,
            5,
            {
                "connect_timeout": 10,
                "dbname": "spacefinder",
                "host": getenv("DB_HOST"),
                "password": "s3cr3t",
                "port": 5432,
                "user": "postgres",
            },
        ),
    ]
    secretsmanager_stub.assert_no_pending_responses()


def test_concurrent_first_use_fetches_secret_once(
    pools: PoolRecorder,
    secretsmanager_stub: Stubber,
) -> None:
    connection_pool = LazyConnectionPool()
    barrier = Barrier(4)
    errors = []
    results = []

    def acquire() -> None:
        barrier.wait()
        try:
            results.append(connection_pool.get())
        except Exception as exception:
            errors.append(exception)

    threads = [Thread(target=acquire) for _ in range(4)]

    with secretsmanager_stub:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    assert errors == []  # nosec
    assert len(pools.created) == 1  # nosec
    assert len(results) == 4 and all(r is results[0] for r in results)  # nosec
    secretsmanager_stub.assert_no_pending_responses()


def test_secret_lookup_failure_propagates(pools: PoolRecorder) -> None:
    connection_pool = LazyConnectionPool()
    secretsmanager_stub = Stubber(secretsmanager)

    secretsmanager_stub.add_client_error(
        "get_secret_value",
        service_error_code="AccessDeniedException",
        service_message="Not authorized",
    )

    with secretsmanager_stub, raises(CredentialResolutionError, match="AccessDeniedException"):
        connection_pool.get()

    assert connection_pool.state is PoolState.FAILED  # nosec
    assert pools.created == []  # nosec


def test_failed_pool_is_attempted_again(pools: PoolRecorder, secretsmanager_stub: Stubber) -> None:
    connection_pool = LazyConnectionPool()
    failing_stub = Stubber(secretsmanager)

    failing_stub.add_response(
        "get_secret_value",
        expected_params={
            "SecretId": getenv("DB_SECRET_ARN"),
        },
        service_response={
            "SecretString": dumps({"username": "postgres"}),
        },
    )

    with failing_stub, raises(CredentialResolutionError, match="no usable credentials"):
        connection_pool.get()

    with secretsmanager_stub:
        connection_pool.get()

    assert connection_pool.state is PoolState.READY  # nosec
    assert len(pools.created) == 1  # nosec


def test_concurrent_first_use_shares_a_failed_build(
    pools: PoolRecorder,
    monkeypatch,
) -> None:
    connection_pool = LazyConnectionPool()
    barrier = Barrier(4)
    errors = []
    fetches = []

    def get_credentials(secret_id: str) -> dict:
        fetches.append(secret_id)
        sleep(0.1)
        raise CredentialResolutionError(f"Unable to read secret {secret_id}")

    def acquire() -> None:
        barrier.wait()
        try:
            connection_pool.get()
        except Exception as exception:
            errors.append(exception)

    monkeypatch.setattr(database, "get_credentials", get_credentials)
    threads = [Thread(target=acquire) for _ in range(4)]

    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(fetches) == 1  # nosec
    assert len(errors) == 4  # nosec
    assert all(isinstance(e, CredentialResolutionError) for e in errors)  # nosec
    assert connection_pool.state is PoolState.FAILED  # nosec
    assert pools.created == []  # nosec

    # A later call that did not overlap the failed build tries again
    with raises(CredentialResolutionError):
        connection_pool.get()

    assert len(fetches) == 2  # nosec
