"""Executors run compiled commands.

:class:`Executor` is the interface a ``TableContext`` talks to. :class:`SqlaExecutor`
implements it on top of a SQLAlchemy ``AsyncEngine`` (or an already open
``AsyncConnection``), so any async driver SQLAlchemy supports can be used for
queries. Inserted ids are read from ``lastrowid``, which limits inserts into
identity tables to SQLite and MySQL/MariaDB.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any, Final, Protocol, TypeVar, runtime_checkable

import sqlalchemy as sa
from sqlalchemy.engine import Connection, CursorResult
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .schema import ColumnDescriptor


logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_MYSQL_DIALECTS: Final[frozenset[str]] = frozenset({"mysql", "mariadb"})


@runtime_checkable
class Executor(Protocol):
    """Transport for compiled commands.

    Commands arrive fully built; ``args`` line up with the placeholders produced by
    :meth:`placeholder`.
    """

    async def handle_query(self, cmd: str, args: Sequence[Any]) -> list[dict[str, Any]]: ...

    async def handle_count(self, cmd: str, args: Sequence[Any]) -> int: ...

    async def handle_insert(self, cmd: str, args: Sequence[Any]) -> list[Any]:
        """Run an INSERT and return the generated ids, one per inserted row, in order."""
        ...

    async def handle_update(self, cmd: str, args: Sequence[Any]) -> int: ...

    async def handle_delete(self, cmd: str, args: Sequence[Any]) -> int: ...

    async def handle_describe(self, table: str) -> list[ColumnDescriptor]:
        """Columns of ``table``. ``alias`` and ``table`` may be left blank."""
        ...

    def escape_table(self, name: str) -> str: ...

    def escape_column(self, name: str) -> str: ...

    def placeholder(self, index: int) -> str:
        """Placeholder for the argument at position ``index``."""
        ...


def _bind_name(index: int) -> str:
    return f"p{index}"


def _is_auto_increment(dialect: str, column: dict[str, Any], primary_key: Sequence[str]) -> bool:
    """Whether the database generates values for ``column``.

    SQLite does not report ``autoincrement``; a lone INTEGER primary key is an
    alias of the rowid there.
    """
    if column.get("autoincrement") is True:
        return True
    return (
        dialect == "sqlite"
        and list(primary_key) == [column["name"]]
        and isinstance(column.get("type"), sa.Integer)
    )


def _describe(connection: Connection, table: str) -> list[ColumnDescriptor]:
    inspector = sa.inspect(connection)
    primary_key = inspector.get_pk_constraint(table).get("constrained_columns") or []
    dialect = connection.dialect.name
    return [
        ColumnDescriptor(
            name=column["name"],
            nullable=bool(column.get("nullable", True)),
            is_primary_key=column["name"] in primary_key,
            is_auto_increment=_is_auto_increment(dialect, column, primary_key),  # type: ignore[arg-type]
            default=column.get("default"),
        )
        for column in inspector.get_columns(table)
    ]


class SqlaExecutor:
    """:class:`Executor` backed by SQLAlchemy's asyncio extension.

    Args:
        bind: An ``AsyncEngine`` (each command runs in its own transaction, committed
            on success) or an ``AsyncConnection`` (commands join whatever transaction
            the caller has open).

    Example:
        >>> engine = create_async_engine("sqlite+aiosqlite:///chinook.db")
        >>> tracks = await TableContext.create(SqlaExecutor(engine), "Track")
    """

    __slots__ = ("__weakref__", "_bind")

    def __init__(self, bind: AsyncEngine | AsyncConnection) -> None:
        self._bind = bind

    @property
    def dialect(self) -> sa.Dialect:
        return self._bind.dialect

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        if isinstance(self._bind, AsyncConnection):
            yield self._bind
            return
        async with self._bind.begin() as connection:
            yield connection

    async def _execute(self, cmd: str, args: Sequence[Any], consume: Callable[[CursorResult[Any]], _T]) -> _T:
        """Run ``cmd`` and read what is needed from the result before the transaction ends."""
        params = {_bind_name(n): value for n, value in enumerate(args)}
        async with self._connect() as connection:
            result = await connection.execute(sa.text(cmd), params)
            return consume(result)

    def escape_table(self, name: str) -> str:
        return self.dialect.identifier_preparer.quote_identifier(name)

    def escape_column(self, name: str) -> str:
        return self.dialect.identifier_preparer.quote_identifier(name)

    def placeholder(self, index: int) -> str:
        return f":{_bind_name(index)}"

    async def handle_query(self, cmd: str, args: Sequence[Any]) -> list[dict[str, Any]]:
        return await self._execute(cmd, args, lambda result: [dict(row) for row in result.mappings().all()])

    async def handle_count(self, cmd: str, args: Sequence[Any]) -> int:
        return await self._execute(cmd, args, lambda result: int(result.scalar_one()))

    async def handle_insert(self, cmd: str, args: Sequence[Any]) -> list[Any]:
        count, last = await self._execute(cmd, args, lambda result: (result.rowcount, result.lastrowid))
        if last is None:
            return []
        match self.dialect.name:
            case "sqlite":
                first = last - count + 1
            case name if name in _MYSQL_DIALECTS:
                first = last
            case name:
                raise NotImplementedError(f"Inserted ids cannot be read back on the {name!r} dialect")
        return list(range(first, first + count))

    async def handle_update(self, cmd: str, args: Sequence[Any]) -> int:
        return await self._execute(cmd, args, lambda result: result.rowcount)

    async def handle_delete(self, cmd: str, args: Sequence[Any]) -> int:
        return await self._execute(cmd, args, lambda result: result.rowcount)

    async def handle_describe(self, table: str) -> list[ColumnDescriptor]:
        async with self._connect() as connection:
            columns = await connection.run_sync(_describe, table)
        logger.debug("Described %r: %s", table, [column.name for column in columns])
        return columns
