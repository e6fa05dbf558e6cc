from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import Engine

from db.db import init_engine
from db.store import SqliteOracleBackend
from tests.helpers.memory_backend import InMemoryOracleBackend
from tests.helpers.rates import FrozenClock


@pytest.fixture(scope="function")
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    engine = init_engine(tmp_path / "oracle")
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def sqlite_backend(engine: Engine) -> SqliteOracleBackend:
    return SqliteOracleBackend(engine)


@pytest.fixture(scope="function")
def memory_backend() -> InMemoryOracleBackend:
    return InMemoryOracleBackend()


@pytest.fixture(scope="function", params=["sqlite", "memory"])
def backend(request: pytest.FixtureRequest) -> SqliteOracleBackend | InMemoryOracleBackend:
    """Every backend implementation, so contract tests run against each."""
    if request.param == "sqlite":
        return request.getfixturevalue("sqlite_backend")
    return request.getfixturevalue("memory_backend")


@pytest.fixture(scope="function")
def clock() -> FrozenClock:
    return FrozenClock()
