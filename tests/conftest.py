from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sqla_contexts import SqlaExecutor, TableContext, cache_clear

from .fakes import RecordingExecutor
from .models import Album, Artist, Base, Genre, Track


pytestmark = pytest.mark.anyio

# (TrackId, Name, AlbumId, GenreId, Composer, Milliseconds, Bytes)
TRACKS: list[tuple[int, str, int | None, int | None, str | None, int, int | None]] = [
    (1, "For Those About To Rock (We Salute You)", 1, 1, "Angus Young, Malcolm Young, Brian Johnson", 343719, 11170334),
    (2, "Balls to the Wall", 2, 1, None, 342562, 5510424),
    (3, "Fast As a Shark", 3, 1, "F. Baltes, S. Kaufman, U. Dirkscneider & W. Hoffman", 230619, 3990994),
    (15, "Go Down", 4, 1, "AC/DC", 331180, 10847611),
    (16, "Dog Eat Dog", 4, 1, "AC/DC", 215196, 7032162),
    (17, "Let There Be Rock", 4, 1, "AC/DC", 366654, 12021261),
    (18, "Bad Boy Boogie", 4, 1, "AC/DC", 267728, 8776140),
    (19, "Problem Child", 4, 1, "AC/DC", 325041, 10617116),
    (20, "Overdose", 4, 1, "AC/DC", 369319, 12066294),
    (21, "Hell Ain't A Bad Place To Be", 4, 1, "AC/DC", 254380, 8331286),
    (22, "Whole Lotta Rosie", 4, 1, "AC/DC", 323761, 10547154),
    (51, "We Die Young", 5, 1, "Jerry Cantrell", 152084, 4925362),
    (53, "Sea Of Sorrow", 5, 1, "Jerry Cantrell", 349831, 11316328),
    (54, "Bleed The Freak", 5, 1, "Jerry Cantrell", 241946, 7847716),
    (63, "Wolfgang's Serenade", None, 2, "Wolfgang Amadeus Mozart", 356424, 5940000),
    (64, "Wolfgang's Requiem", None, 2, "Wolfgang Amadeus Mozart", 306000, 5220000),
    (65, "Shine On", None, 1, "Wright, Waters", 810000, 26500000),
]


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "mysql", "mariadb"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                yield f"mysql+asyncmy://{my.username}:{my.password}@{host}:{port}/{my.dbname}"

        case "mariadb":
            from testcontainers.mysql import MySqlContainer as MariaDBContainer

            ma = MariaDBContainer(image="mariadb:latest")
            if os.name == "nt":
                ma.get_container_host_ip = lambda: "127.0.0.1"
            with ma:
                host = ma.get_container_host_ip()
                port = ma.get_exposed_port(ma.port)
                yield f"mysql+asyncmy://{ma.username}:{ma.password}@{host}:{port}/{ma.dbname}"

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/chinook.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def connection(engine: AsyncEngine, _create_tables: None) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
def executor(connection: AsyncConnection) -> SqlaExecutor:
    return SqlaExecutor(connection)


@pytest.fixture
async def seed_data(connection: AsyncConnection) -> dict[str, int]:
    await connection.execute(
        sa.insert(Artist),
        [
            {"ArtistId": 1, "Name": "AC/DC"},
            {"ArtistId": 2, "Name": "Accept"},
            {"ArtistId": 5, "Name": "Alice In Chains"},
            {"ArtistId": 6, "Name": "Jerry Cantrell"},
        ],
    )
    await connection.execute(
        sa.insert(Album),
        [
            {"AlbumId": 1, "Title": "For Those About To Rock We Salute You", "ArtistId": 1},
            {"AlbumId": 2, "Title": "Balls to the Wall", "ArtistId": 2},
            {"AlbumId": 3, "Title": "Restless and Wild", "ArtistId": 2},
            {"AlbumId": 4, "Title": "Let There Be Rock", "ArtistId": 1},
            {"AlbumId": 5, "Title": "Facelift", "ArtistId": 5},
        ],
    )
    await connection.execute(
        sa.insert(Genre),
        [{"GenreId": 1, "Name": "Rock"}, {"GenreId": 2, "Name": "Classical"}, {"GenreId": 3, "Name": "Jazz"}],
    )
    keys = ("TrackId", "Name", "AlbumId", "GenreId", "Composer", "Milliseconds", "Bytes")
    await connection.execute(sa.insert(Track), [dict(zip(keys, track)) for track in TRACKS])

    return {"artists": 4, "albums": 5, "genres": 3, "tracks": len(TRACKS)}


@pytest.fixture
async def track_ctx(executor: SqlaExecutor, seed_data: dict[str, int]) -> TableContext:
    ctx = await TableContext.create(executor, "Track")
    ctx.has_one("Album").with_keys("AlbumId", "AlbumId")
    ctx.has_one("Artist").with_keys("Composer", "Name")
    ctx.has_one("Genre").with_keys("GenreId", "GenreId")
    return ctx


@pytest.fixture
def fake_executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    cache_clear()
