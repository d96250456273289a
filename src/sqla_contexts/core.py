from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Final

from .datastructures import frozendict
from .exceptions import ColumnDoesNotExistError, ContextSyntaxError, InternalError
from .lookup import AggregateRef, ColumnRef, Selected, SortKey
from .node import Path, RelationshipNode, Tree, has_many, included_tree, iter_nodes
from .schema import Schema, get_primary_keys
from .sql import QMARK, Command, CommandKind, Placeholder, SqlBuilder
from .tools import is_scalar
from .where import EMPTY_FILTER, Condition, Filter, Quoting, WhereNode


logger = logging.getLogger(__name__)

DEFAULT_COUNT_ALIAS: Final[str] = "$count"
_COUNT_SOURCE_ALIAS: Final[str] = "count_source"


@lru_cache(maxsize=256)
def _active_tree(relationships: Tree, includes: tuple[str, ...]) -> Tree:
    """Included part of ``relationships`` (cached, both arguments are immutable)."""
    return included_tree(relationships, includes)


@dataclass(slots=True, frozen=True)
class QueryState:
    """Everything a ``TableContext`` fork has accumulated.

    Instances are never modified; forks derive new ones with
    ``dataclasses.replace``.
    """

    table: str
    schema: Schema
    identity: str | None = None
    relationships: Tree = field(default_factory=frozendict)
    includes: tuple[str, ...] = ()
    filter: Filter = EMPTY_FILTER
    sort: tuple[SortKey, ...] = ()
    group: tuple[ColumnRef, ...] | None = None
    selection: tuple[Selected, ...] | None = None
    limit: int | None = None
    offset: int | None = None

    @property
    def active(self) -> Tree:
        """Relationships joined by the next query."""
        if not self.includes:
            return frozendict()
        return _active_tree(self.relationships, self.includes)

    @property
    def grouped(self) -> bool:
        return self.group is not None


def default_selection(schema: Schema, active: Mapping[str, RelationshipNode]) -> tuple[ColumnRef, ...]:
    """Root columns followed by the columns of every included relationship."""
    selection = [ColumnRef.of(column) for column in schema.values()]

    def walk(nodes: Mapping[str, RelationshipNode]) -> None:
        for node in nodes.values():
            if node.schema is None:
                raise InternalError(f"relationship {node.name!r} was included before it was described")
            selection.extend(ColumnRef.of(column) for column in node.schema.values())
            walk(node.children)

    walk(active)
    return tuple(selection)


def _key_columns(schema: Schema, active: Mapping[str, RelationshipNode]) -> list[ColumnRef]:
    """Root primary keys, then join keys and primary keys of every included relationship."""
    keys = [ColumnRef.of(column) for column in get_primary_keys(schema)]

    def walk(parent: Schema, nodes: Mapping[str, RelationshipNode]) -> None:
        for node in nodes.values():
            if node.schema is None:
                raise InternalError(f"relationship {node.name!r} was included before it was described")
            keys.append(ColumnRef.of(parent[node.local_key]))
            keys.append(ColumnRef.of(node.column(node.foreign_key)))
            keys.extend(ColumnRef.of(column) for column in get_primary_keys(node.schema))
            walk(node.schema, node.children)

    walk(schema, active)
    return keys


def missing_keys(state: QueryState) -> tuple[ColumnRef, ...]:
    """Key columns a projection left out but nesting included relationships needs.

    Only ungrouped projections with included relationships miss anything: rows
    are merged by primary key and children matched on their join keys.
    """
    if state.selection is None or state.grouped or not state.active:
        return ()
    selected = {item for item in state.selection if isinstance(item, ColumnRef)}
    missing: list[ColumnRef] = []
    for key in _key_columns(state.schema, state.active):
        if key not in selected and key not in missing:
            missing.append(key)
    return tuple(missing)


def hidden_keys(state: QueryState, keys: Iterable[ColumnRef]) -> dict[Path, list[str]]:
    """Where ``keys`` end up in reconstructed records, by relationship path."""
    paths = {node.alias: path for path, node in iter_nodes(state.active)}
    hidden: dict[Path, list[str]] = {}
    for key in keys:
        if key.table == state.table:
            hidden.setdefault((), []).append(key.alias)
        else:
            hidden.setdefault(paths[key.table], []).append(key.column)
    return hidden


def insert_columns(
    records: Sequence[Mapping[str, Any]],
    schema: Schema,
    table: str,
    identity: str | None = None,
    *,
    sort_keys: bool = False,
) -> list[str]:
    """Columns of an INSERT covering every record.

    Keys are collected in first-seen order across ``records``. The identity column
    and keys holding relationship data (mappings or collections) are left out.

    Raises:
        ColumnDoesNotExistError: A scalar key is not a column of ``schema``.
    """
    seen: dict[str, bool] = {}
    for record in records:
        for key, value in record.items():
            seen[key] = seen.get(key, True) and is_scalar(value)

    columns = [key for key, scalar in seen.items() if scalar and key != identity]
    for column in columns:
        if column not in schema:
            raise ColumnDoesNotExistError(column, table)
    return sorted(columns) if sort_keys else columns


class CommandBuilder:
    """Compiles a :class:`QueryState` into executor commands.

    Identifiers are escaped with ``quoting`` (the executor) and arguments are bound
    through a :class:`~sqla_contexts.sql.SqlBuilder`, so every command's
    placeholders line up with its ``args``.
    """

    __slots__ = ("_count_alias", "_placeholder", "_quoting", "state")

    def __init__(
        self,
        state: QueryState,
        quoting: Quoting,
        placeholder: Placeholder = QMARK,
        *,
        count_alias: str = DEFAULT_COUNT_ALIAS,
    ) -> None:
        self.state = state
        self._quoting = quoting
        self._placeholder = placeholder
        self._count_alias = count_alias

    def _new(self) -> SqlBuilder:
        return SqlBuilder(self._placeholder)

    def _table(self, name: str) -> str:
        return self._quoting.escape_table(name)

    def _column(self, table: str, column: str) -> str:
        return f"{self._quoting.escape_table(table)}.{self._quoting.escape_column(column)}"

    def _selected(self, item: Selected) -> str:
        alias = self._quoting.escape_column(item.alias)
        if isinstance(item, ColumnRef):
            return f"{self._column(item.table, item.column)} AS {alias}"
        if isinstance(item, AggregateRef):
            if item.function == "TOTAL":
                return f"COUNT(*) AS {alias}"
            if item.column is None:
                raise InternalError(f"aggregate {item.function} without a column")
            column = self._column(item.column.table, item.column.column)
            if item.function == "COUNT":
                return f"COUNT(DISTINCT {column}) AS {alias}"
            return f"{item.function}({column}) AS {alias}"
        raise InternalError(f"unexpected selected item {item!r}")

    def _write_joins(self, builder: SqlBuilder, nodes: Mapping[str, RelationshipNode], parent_alias: str) -> None:
        for node in nodes.values():
            builder.append(
                " LEFT JOIN ",
                self._table(node.table),
                " AS ",
                self._table(node.alias),
                " ON ",
                self._column(parent_alias, node.local_key),
                " = ",
                self._column(node.alias, node.foreign_key),
            )
            self._write_joins(builder, node.children, node.alias)

    def _write_order_by(self, builder: SqlBuilder, keys: Iterable[SortKey]) -> None:
        rendered = [f"{self._column(key.column.table, key.column.column)} {key.direction}" for key in keys]
        if rendered:
            builder.append(" ORDER BY ", ", ".join(rendered))

    def _write_pagination(self, builder: SqlBuilder) -> None:
        if self.state.limit is not None:
            builder.append(" LIMIT ").bind(self.state.limit)
        if self.state.offset is not None:
            builder.append(" OFFSET ").bind(self.state.offset)

    def _write_select(self, builder: SqlBuilder) -> None:
        state = self.state
        if state.offset is not None and state.limit is None:
            raise ContextSyntaxError("skip() requires take(); OFFSET cannot be used without LIMIT.")

        active = state.active
        main = state.table
        if state.selection is None:
            selection = default_selection(state.schema, active)
        else:
            selection = state.selection + missing_keys(state)
        # children of a paginated parent must not be cut off by LIMIT
        paginate_main = state.limit is not None and not state.grouped and has_many(active)

        builder.append("SELECT ", ", ".join(self._selected(item) for item in selection), " FROM ")
        if paginate_main:
            builder.append("(SELECT * FROM ", self._table(main))
            state.filter.write(builder, self._quoting, main)
            self._write_order_by(builder, (key for key in state.sort if key.column.table == main))
            self._write_pagination(builder)
            builder.append(") AS ", self._table(main))
        else:
            builder.append(self._table(main))

        self._write_joins(builder, active, main)

        if paginate_main:
            state.filter.write(builder, self._quoting, lambda table: table != main)
        else:
            state.filter.write(builder, self._quoting)

        if state.group:
            builder.append(
                " GROUP BY ",
                ", ".join(self._column(column.table, column.column) for column in state.group),
            )
        self._write_order_by(builder, state.sort)
        if not paginate_main:
            self._write_pagination(builder)

    def select(self) -> Command:
        """``SELECT`` for the accumulated state.

        With a LIMIT and an included one-to-many relationship, the main table is
        paginated in a sub-select and joined afterwards::

            SELECT ... FROM (SELECT * FROM main WHERE <main filter> LIMIT ? OFFSET ?) AS main
                LEFT JOIN ... WHERE <remaining filter>
        """
        builder = self._new()
        self._write_select(builder)
        return self._finish(builder, "query")

    def count(self) -> Command:
        """``SELECT COUNT(*)`` over the same rows :meth:`select` would return."""
        state = self.state
        builder = self._new()
        builder.append("SELECT COUNT(*) AS ", self._quoting.escape_column(self._count_alias), " FROM ")
        if state.grouped or state.limit is not None or state.offset is not None:
            builder.append("(")
            self._write_select(builder)
            builder.append(") AS ", self._table(_COUNT_SOURCE_ALIAS))
        else:
            builder.append(self._table(state.table))
            self._write_joins(builder, state.active, state.table)
            state.filter.write(builder, self._quoting)
        return self._finish(builder, "count")

    def insert(self, records: Sequence[Mapping[str, Any]], *, sort_keys: bool = False) -> Command:
        """Multi-row ``INSERT``. Missing keys are inserted as NULL.

        Raises:
            ContextSyntaxError: No insertable column remains.
        """
        state = self.state
        columns = insert_columns(records, state.schema, state.table, state.identity, sort_keys=sort_keys)
        if not columns:
            raise ContextSyntaxError(f"Nothing to insert into {state.table!r}: the records have no columns.")

        builder = self._new()
        builder.append(
            "INSERT INTO ",
            self._table(state.table),
            " (",
            ", ".join(self._quoting.escape_column(column) for column in columns),
            ") VALUES ",
        )
        for n, record in enumerate(records):
            if n:
                builder.append(", ")
            builder.bind_many(record.get(column) for column in columns)
        return self._finish(builder, "insert")

    def _write_set(self, builder: SqlBuilder, values: Mapping[str, Any], skip: Iterable[str]) -> None:
        state = self.state
        skipped = set(skip)
        columns = [key for key, value in values.items() if key not in skipped and is_scalar(value)]
        if not columns:
            raise ContextSyntaxError(f"Nothing to update on {state.table!r}: no column to set.")
        for column in columns:
            if column not in state.schema:
                raise ColumnDoesNotExistError(column, state.table)

        builder.append("UPDATE ", self._table(state.table), " SET ")
        for n, column in enumerate(columns):
            if n:
                builder.append(", ")
            builder.append(self._quoting.escape_column(column), " = ").bind(values[column])

    def update(self, values: Mapping[str, Any], *, allow_all: bool = False) -> Command:
        """``UPDATE ... SET`` with the main-table part of the filter.

        Raises:
            ContextSyntaxError: ``values`` sets no column, or the filter is empty
                and ``allow_all`` is not set.
        """
        state = self.state
        builder = self._new()
        self._write_set(builder, values, (state.identity,) if state.identity else ())
        if not state.filter.write(builder, self._quoting, state.table) and not allow_all:
            raise ContextSyntaxError(
                f"No WHERE clause for the update of {state.table!r}; this would update every row. "
                "Use update_all() with allow_update_all=True instead."
            )
        return self._finish(builder, "update")

    def update_keys(self, record: Mapping[str, Any], columns: Sequence[str]) -> Command:
        """``UPDATE ... SET <other columns> WHERE <key columns> = <record's values>``."""
        builder = self._new()
        self._write_set(builder, record, columns)
        _key_filter(self.state.table, columns, [tuple(record[column] for column in columns)]).write(
            builder, self._quoting
        )
        return self._finish(builder, "update")

    def delete(self) -> Command:
        """``DELETE`` with the main-table part of the filter.

        Raises:
            ContextSyntaxError: The filter is empty.
        """
        state = self.state
        builder = self._new()
        builder.append("DELETE FROM ", self._table(state.table))
        if not state.filter.write(builder, self._quoting, state.table):
            raise ContextSyntaxError(
                f"No WHERE clause for the delete from {state.table!r}; this would delete every row. "
                "Use truncate() with allow_truncation=True instead."
            )
        return self._finish(builder, "delete")

    def delete_keys(self, columns: Sequence[str], keys: Sequence[tuple[Any, ...]]) -> Command:
        """``DELETE`` the rows whose ``columns`` hold one of ``keys``.

        A single column compiles to ``IN (...)``; composite keys compile to
        ``(a = ? AND b = ?) OR (a = ? AND b = ?)``.
        """
        state = self.state
        builder = self._new()
        builder.append("DELETE FROM ", self._table(state.table))
        _key_filter(state.table, columns, keys).write(builder, self._quoting)
        return self._finish(builder, "delete")

    def truncate(self) -> Command:
        """Unconditional ``DELETE``, the only whole-table mutation."""
        builder = self._new()
        builder.append("DELETE FROM ", self._table(self.state.table))
        return self._finish(builder, "delete")

    def _finish(self, builder: SqlBuilder, kind: CommandKind) -> Command:
        command = builder.build(kind, self.state.table)
        logger.debug("Compiled %s command for %r: %s", kind, self.state.table, command.text)
        return command


def _key_filter(table: str, columns: Sequence[str], keys: Sequence[tuple[Any, ...]]) -> Filter:
    """Filter matching rows of ``table`` whose ``columns`` equal any of ``keys``."""
    if not columns or not keys:
        raise InternalError(f"key filter on {table!r} without columns or keys")
    if len(columns) == 1:
        return Filter((Condition("WHERE", table, columns[0], "IN", tuple(key[0] for key in keys)),))

    groups: list[WhereNode] = []
    for n, key in enumerate(keys):
        groups.append(
            tuple(
                Condition("AND" if i else ("OR" if n else "WHERE"), table, column, "=", value)
                for i, (column, value) in enumerate(zip(columns, key))
            )
        )
    return Filter(tuple(groups))


def cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for the internal caches."""
    return {_active_tree.__name__: _active_tree.cache_info()}


def cache_clear() -> None:
    """Clear the internal LRU caches."""
    _active_tree.cache_clear()
