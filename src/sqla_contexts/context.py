from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import sys
import warnings
from collections.abc import Awaitable, Callable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypeVar, Union


if sys.version_info >= (3, 11):
    from typing import Self, TypedDict, Unpack
else:
    from typing_extensions import Self, TypedDict, Unpack

from .core import CommandBuilder, QueryState, hidden_keys, missing_keys
from .datastructures import frozendict
from .events import CommandEvent, CommandEvents, WarningEvent, emit, emit_warning, executor_events
from .exceptions import (
    ContextError,
    ContextSyntaxError,
    CountError,
    DeleteError,
    DescribeError,
    ExecutorError,
    InsertError,
    InternalError,
    OptionsError,
    QueryError,
    RelationshipError,
    UpdateError,
)
from .lookup import AggregateRef, Aggregates, ColumnLookup, ColumnRef, RelationshipLookup, Selected, SortKey
from .node import (
    Cardinality,
    Path,
    RelationshipDeclaration,
    RelationshipNode,
    Tree,
    find_node,
    insert_node,
    iter_nodes,
    replace_node,
)
from .schema import ColumnDescriptor, Schema, alias_schema, get_identity, get_primary_keys
from .sql import Command
from .tools import drop_columns, reconstruct
from .where import Chain, Connector, WhereBuilder


logger = logging.getLogger(__name__)

_T = TypeVar("_T")
Record = MutableMapping[str, Any]
Step = Callable[[QueryState], Union[QueryState, Awaitable[QueryState]]]

_AGGREGATE_PLACEHOLDERS: Final[dict[str, str]] = {"function": "count", "column": "Column"}


@dataclass(slots=True, frozen=True)
class ContextOptions:
    """Behavior switches of a ``TableContext`` lineage.

    Attributes:
        allow_truncation: Permit :meth:`TableContext.truncate`.
        allow_update_all: Permit updates without a WHERE clause.
        sort_keys: Sort INSERT columns alphabetically instead of first-seen order.
        aggregate_alias: Template of aggregate aliases; ``{function}`` and ``{column}``
            are replaced by the lower-cased function and the column alias.
        total_alias: Alias of ``COUNT(*)`` in grouped queries.
        count_alias: Alias of ``COUNT(*)`` in :meth:`TableContext.count`.
    """

    allow_truncation: bool = False
    allow_update_all: bool = False
    sort_keys: bool = False
    aggregate_alias: str = "${function}_{column}"
    total_alias: str = "$total"
    count_alias: str = "$count"

    def __post_init__(self) -> None:
        try:
            rendered = self.aggregate_alias.format(**_AGGREGATE_PLACEHOLDERS)
        except (KeyError, IndexError, ValueError) as err:
            raise OptionsError(f"Invalid aggregate_alias template {self.aggregate_alias!r}: {err}") from err
        if "Column" not in rendered:
            raise OptionsError("aggregate_alias must contain the {column} placeholder.")
        if not self.total_alias or not self.count_alias:
            raise OptionsError("total_alias and count_alias must not be empty.")


class _ContextOptionsType(TypedDict, total=False):
    allow_truncation: bool
    allow_update_all: bool
    sort_keys: bool
    aggregate_alias: str
    total_alias: str
    count_alias: str


class _StateNode:
    """One link of a context's readiness chain.

    A node resolves its parent, then applies its step. Resolution happens once:
    concurrent awaiters share one task, and a resolved node keeps its state.
    """

    __slots__ = ("_parent", "_state", "_step", "_task")

    def __init__(self, parent: _StateNode | None, step: Step) -> None:
        self._parent = parent
        self._step: Step | None = step
        self._state: QueryState | None = None
        self._task: asyncio.Future[QueryState] | None = None

    def then(self, step: Step) -> _StateNode:
        return _StateNode(self, step)

    async def resolve(self) -> QueryState:
        if self._state is not None:
            return self._state
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        return await self._task

    async def _run(self) -> QueryState:
        if self._step is None:
            raise InternalError("state node without a step")
        state = await self._parent.resolve() if self._parent is not None else None
        result = self._step(state)  # type: ignore[arg-type]
        if inspect.isawaitable(result):
            result = await result
        self._state = result
        self._parent = None
        self._step = None
        return result


def _parse_count(value: int | str, method: str) -> int:
    """Parse ``take``/``skip`` arguments: ints or numeric strings, never negative."""
    if isinstance(value, bool):
        raise ContextSyntaxError(f"{method}() expects an integer, got {value!r}.")
    try:
        number = int(value)
    except (TypeError, ValueError) as err:
        raise ContextSyntaxError(f"{method}() expects an integer, got {value!r}.") from err
    if isinstance(value, float) and value != number:
        raise ContextSyntaxError(f"{method}() expects an integer, got {value!r}.")
    if number < 0:
        raise ContextSyntaxError(f"{method}() expects a non-negative integer, got {value!r}.")
    return number


def _as_tuple(value: _T | Sequence[_T]) -> tuple[_T, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)  # type: ignore[return-value]


Shape = Literal["projection", "group"]


class TableContext:
    """Query and command builder bound to one table.

    Every chaining method returns a new context and leaves the receiver as it was.
    Table metadata is described lazily: chaining never waits for the database,
    and terminal operations (``select``, ``count``, ``insert_*``, ``update*``,
    ``delete``, ``truncate``) resolve the whole chain first.

    Relationship declarations (``has_one``/``has_many``) are configuration and
    apply to the context they are called on.

    Args:
        executor: Runs compiled commands.
        table: Table name.
        identity: Auto-increment primary key. Discovered from the schema when omitted.
        options: Behavior switches, see :class:`ContextOptions`.
        **kwargs: Individual :class:`ContextOptions` fields, overriding ``options``.

    Example:
        >>> tracks = await TableContext.create(SqlaExecutor(engine), "Track")
        >>> tracks.has_one("Album").with_keys("AlbumId", "AlbumId")
        >>> acdc = tracks.where(lambda m: m["Composer"].equals("AC/DC"))
        >>> rows = await acdc.include(lambda r: r["Album"]).sort_by(lambda m: m["Bytes"].desc()).select()
    """

    __slots__ = (
        "_base",
        "_declared",
        "_events",
        "_executor",
        "_filtered",
        "_identity",
        "_node",
        "_options",
        "_schemas",
        "_shape",
        "_table",
    )

    def __init__(
        self,
        executor: Any,
        table: str,
        identity: str | None = None,
        options: ContextOptions | None = None,
        **kwargs: Unpack[_ContextOptionsType],
    ) -> None:
        if not table:
            raise OptionsError("A table name is required.")
        if options is None:
            options = ContextOptions(**kwargs)
        elif kwargs:
            options = dataclasses.replace(options, **kwargs)

        self._executor = executor
        self._table = table
        self._identity = identity
        self._options = options
        self._events = CommandEvents()
        self._schemas: dict[str, tuple[ColumnDescriptor, ...]] = {}
        self._declared: Tree = frozendict()
        self._filtered = False
        self._shape: Shape | None = None
        self._node = _StateNode(None, self._bootstrap)
        self._base = self._node

    @classmethod
    async def create(
        cls,
        executor: Any,
        table: str,
        identity: str | None = None,
        options: ContextOptions | None = None,
        **kwargs: Unpack[_ContextOptionsType],
    ) -> Self:
        """Construct a context and wait until its table is described."""
        return await cls(executor, table, identity, options, **kwargs).ready()

    @property
    def table_name(self) -> str:
        return self._table

    @property
    def options(self) -> ContextOptions:
        return self._options

    @property
    def events(self) -> CommandEvents:
        """Subscriptions for commands run by this context and every fork of it."""
        return self._events

    async def ready(self) -> Self:
        """Resolve the chain: describe pending tables and run pending callbacks."""
        await self._node.resolve()
        return self

    async def describe(self) -> Schema:
        """Aliased columns of the table."""
        return (await self._node.resolve()).schema

    # schema bootstrap

    async def _describe_table(self, table: str) -> tuple[ColumnDescriptor, ...]:
        cached = self._schemas.get(table)
        if cached is not None:
            return cached
        try:
            columns = tuple(await self._executor.handle_describe(table))
        except ContextError:
            raise
        except Exception as err:
            logger.warning("Describing %r failed: %s", table, err)
            raise DescribeError(table, error=err) from err
        if not columns:
            raise DescribeError(table, error=LookupError(f"the table {table!r} has no columns"))
        self._schemas[table] = columns
        return columns

    async def _bootstrap(self, _: QueryState | None) -> QueryState:
        schema = alias_schema(await self._describe_table(self._table), self._table)
        identity = self._identity or get_identity(schema)
        if identity is not None and identity not in schema:
            raise OptionsError(f"The identity column {identity!r} does not exist on {self._table!r}.")
        return QueryState(table=self._table, schema=schema, identity=identity)

    # relationships

    def has_one(self, name: str) -> RelationshipDeclaration:
        """Declare a one-to-one relationship named ``name``.

        The joined table defaults to ``name``; change it with ``from_table``.
        """
        return self._declare(name, "one")

    def has_many(self, name: str) -> RelationshipDeclaration:
        """Declare a one-to-many relationship named ``name``."""
        return self._declare(name, "many")

    def _declare(self, name: str, cardinality: Cardinality) -> RelationshipDeclaration:
        if name in self._declared:
            raise RelationshipError(f"The relationship {name!r} has already been declared on {self._table!r}.")
        return RelationshipDeclaration(name, cardinality, (), self._table, "", self._register)

    def _register(self, path: Path, node: RelationshipNode) -> None:
        self._declared = insert_node(self._declared, path, node)
        declared = self._declared
        self._node = self._base.then(lambda state: self._attach_relationships(state, declared))

    async def _attach_relationships(self, state: QueryState, declared: Tree) -> QueryState:
        """Merge ``declared`` into ``state`` and describe every new relationship table."""
        relationships = state.relationships
        pending: list[tuple[Path, RelationshipNode]] = []
        for path, node in iter_nodes(declared):
            try:
                find_node(relationships, path)
            except RelationshipError:
                relationships = insert_node(relationships, path, dataclasses.replace(node, children=frozendict()))
                pending.append((path, node))

        described = await asyncio.gather(*(self._describe_table(node.table) for _, node in pending))
        for (path, node), columns in zip(pending, described):
            relationships = replace_node(relationships, path, lambda current: current.describe(columns))  # type: ignore[union-attr]

        for path, node in pending:
            parent_schema = state.schema if len(path) == 1 else find_node(relationships, path[:-1]).schema
            if parent_schema is None or node.local_key not in parent_schema:
                raise RelationshipError(
                    f"The key {node.local_key!r} of the relationship {'.'.join(path)!r} "
                    "does not exist on its parent table."
                )
            find_node(relationships, path).column(node.foreign_key)

        return dataclasses.replace(state, relationships=relationships)

    # forking

    def _fork(self, step: Step, cls: type[TableContext] | None = None) -> TableContext:
        ctx: TableContext = object.__new__(cls or TableContext)
        ctx._executor = self._executor
        ctx._table = self._table
        ctx._identity = self._identity
        ctx._options = self._options
        ctx._events = self._events
        ctx._schemas = self._schemas
        ctx._declared = self._declared
        ctx._filtered = self._filtered
        ctx._shape = self._shape
        ctx._node = self._node.then(step)
        ctx._base = ctx._node
        return ctx

    def _warn(self, message: str) -> None:
        """Warn the caller and every warning subscriber of this lineage and executor."""
        warnings.warn(message, stacklevel=3)
        emit_warning(WarningEvent(self._table, message), self._events, executor_events(self._executor))

    def _lookup(self, state: QueryState, factory: Callable[[ColumnRef], _T]) -> ColumnLookup[_T]:
        return ColumnLookup(state.table, state.schema, state.active, factory)

    def where(self, callback: Callable[[ColumnLookup[WhereBuilder]], Chain]) -> TableContext:
        """Filter rows. Replaces any previous filter.

        The callback receives a lookup of comparison builders and must return the
        resulting chain.

        Example:
            >>> ctx.where(lambda m: m["Composer"].equals("AC/DC").and_(lambda m: m["Bytes"].gt(7032162)))
        """

        def step(state: QueryState) -> QueryState:
            def scope(connector: Connector) -> ColumnLookup[WhereBuilder]:
                return self._lookup(state, lambda column: WhereBuilder(column, connector, scope))

            chain = callback(scope("WHERE"))
            if not isinstance(chain, Chain):
                raise ContextSyntaxError(f"The where() callback must return a comparison, got {chain!r}.")
            return dataclasses.replace(state, filter=chain.to_filter())

        ctx = self._fork(step)
        ctx._filtered = True
        return ctx

    def sort_by(
        self, callback: Callable[[ColumnLookup[ColumnRef]], ColumnRef | SortKey | Sequence[ColumnRef | SortKey]]
    ) -> TableContext:
        """Order rows. Replaces any previous ordering. Bare columns sort ascending."""

        def step(state: QueryState) -> QueryState:
            keys: list[SortKey] = []
            for item in _as_tuple(callback(self._lookup(state, lambda column: column))):
                if isinstance(item, ColumnRef):
                    item = item.asc()
                if not isinstance(item, SortKey):
                    raise ContextSyntaxError(f"sort_by() expects columns or sort keys, got {item!r}.")
                keys.append(item)
            return dataclasses.replace(state, sort=tuple(keys))

        return self._fork(step)

    def group_by(
        self,
        callback: Callable[[ColumnLookup[ColumnRef], Aggregates], Selected | Sequence[Selected]],
    ) -> TableContext:
        """Group rows by the returned columns and select them with the returned aggregates.

        Raises:
            ContextSyntaxError: A projection or grouping is already configured.
        """
        self._check_shape("group_by()")
        aggregates = Aggregates(self._options.aggregate_alias, self._options.total_alias)

        def step(state: QueryState) -> QueryState:
            selection = _as_tuple(callback(self._lookup(state, lambda column: column), aggregates))
            for item in selection:
                if not isinstance(item, (ColumnRef, AggregateRef)):
                    raise ContextSyntaxError(f"group_by() expects columns or aggregates, got {item!r}.")
            group = tuple(item for item in selection if isinstance(item, ColumnRef))
            return dataclasses.replace(state, group=group, selection=selection)

        ctx = self._fork(step)
        ctx._shape = "group"
        return ctx

    def choose(self, callback: Callable[[ColumnLookup[ColumnRef]], ColumnRef | Sequence[ColumnRef]]) -> TableContext:
        """Select only the returned columns.

        Raises:
            ContextSyntaxError: A projection or grouping is already configured.
        """
        self._check_shape("choose()")

        def step(state: QueryState) -> QueryState:
            selection = _as_tuple(callback(self._lookup(state, lambda column: column)))
            for item in selection:
                if not isinstance(item, ColumnRef):
                    raise ContextSyntaxError(f"choose() expects columns, got {item!r}.")
            if not selection:
                raise ContextSyntaxError("choose() must return at least one column.")
            return dataclasses.replace(state, selection=selection)

        ctx = self._fork(step)
        ctx._shape = "projection"
        return ctx

    def alias(self, callback: Callable[[ColumnLookup[ColumnRef]], Mapping[str, ColumnRef]]) -> TableContext:
        """Select the returned columns under new keys.

        Example:
            >>> ctx.alias(lambda m: {"id": m["TrackId"], "title": m["Name"]})

        Raises:
            ContextSyntaxError: A projection or grouping is already configured.
        """
        self._check_shape("alias()")

        def step(state: QueryState) -> QueryState:
            mapping = callback(self._lookup(state, lambda column: column))
            if not isinstance(mapping, Mapping) or not mapping:
                raise ContextSyntaxError(f"alias() must return a non-empty mapping of key to column, got {mapping!r}.")
            selection: list[Selected] = []
            for key, column in mapping.items():
                if not isinstance(column, ColumnRef):
                    raise ContextSyntaxError(f"alias() expects columns, got {column!r} for {key!r}.")
                selection.append(dataclasses.replace(column, alias=key))
            return dataclasses.replace(state, selection=tuple(selection))

        ctx = self._fork(step)
        ctx._shape = "projection"
        return ctx

    def _check_shape(self, method: str) -> None:
        if self._shape == "group":
            raise ContextSyntaxError(f"{method} cannot be used on a grouped context.")
        if self._shape == "projection":
            raise ContextSyntaxError(f"{method} cannot be used once columns were chosen or aliased.")

    def include(self, callback: Callable[[RelationshipLookup], str | Sequence[str]]) -> IncludedContext:
        """Join declared relationships and select their columns.

        Example:
            >>> ctx.include(lambda r: r["Album"]).then_include(lambda r: r["Artist"])

        Raises:
            RelationshipError: A name was never declared with ``has_one``/``has_many``.
        """
        paths = _as_tuple(callback(RelationshipLookup(self._table, self._declared)))
        return self._include(paths)

    def _include(self, paths: tuple[str, ...]) -> IncludedContext:
        for path in paths:
            if not isinstance(path, str):
                raise ContextSyntaxError(f"include() callbacks must return relationship lookups, got {path!r}.")

        def step(state: QueryState) -> QueryState:
            includes = state.includes + tuple(path for path in paths if path not in state.includes)
            return dataclasses.replace(state, includes=includes)

        ctx = self._fork(step, IncludedContext)
        ctx._last_included = paths[-1] if paths else ""  # type: ignore[attr-defined]
        return ctx  # type: ignore[return-value]

    def take(self, limit: int | str) -> TableContext:
        """Limit the number of rows (root rows when a one-to-many relationship is included).

        Raises:
            ContextSyntaxError: ``limit`` is not a non-negative integer.
        """
        number = _parse_count(limit, "take")
        if number == 0:
            self._warn("take(0) always selects no rows.")
        return self._fork(lambda state: dataclasses.replace(state, limit=number))

    def skip(self, offset: int | str) -> TableContext:
        """Skip rows. Requires :meth:`take`.

        Raises:
            ContextSyntaxError: ``offset`` is not a non-negative integer.
        """
        number = _parse_count(offset, "skip")
        return self._fork(lambda state: dataclasses.replace(state, offset=number))

    limit = take
    offset = skip

    # terminal operations

    def _compiler(self, state: QueryState) -> CommandBuilder:
        return CommandBuilder(state, self._executor, self._executor.placeholder, count_alias=self._options.count_alias)

    async def compile_select(self) -> Command:
        """The SELECT :meth:`select` would run."""
        return self._compiler(await self._node.resolve()).select()

    async def compile_count(self) -> Command:
        """The COUNT :meth:`count` would run."""
        return self._compiler(await self._node.resolve()).count()

    async def _run(
        self,
        command: Command,
        handler: Callable[[str, list[Any]], Awaitable[_T]],
        error: type[ExecutorError],
        affected: Callable[[_T], int | None],
    ) -> _T:
        registries = (self._events, executor_events(self._executor))
        try:
            result = await handler(command.text, list(command.args))
        except ContextError:
            raise
        except Exception as err:
            logger.warning("%s failed on %r: %s", command.kind, self._table, err)
            emit(CommandEvent.from_command(command, error=err), *registries)
            raise error(self._table, command.raw, command.text, command.args, err) from err

        emit(CommandEvent.from_command(command, affected_rows=affected(result)), *registries)
        return result

    async def select(self) -> list[dict[str, Any]]:
        """Run the query and nest included relationships into each record.

        A projection (``choose``/``alias``) combined with includes still selects
        the primary and join keys needed for nesting; they are removed from the
        records afterwards.
        """
        state = await self._node.resolve()
        command = self._compiler(state).select()
        rows = await self._run(command, self._executor.handle_query, QueryError, len)
        records = reconstruct(rows, state.schema, state.active, grouped=state.grouped)
        added = missing_keys(state)
        if added:
            drop_columns(records, hidden_keys(state, added))
        return records

    async def count(self) -> int:
        """Number of rows the query matches."""
        state = await self._node.resolve()
        command = self._compiler(state).count()
        return await self._run(command, self._executor.handle_count, CountError, lambda _: None)

    async def insert_one(self, record: Record) -> Record:
        """Insert ``record`` and set its identity column. Returns ``record``."""
        return (await self.insert_many([record]))[0]

    async def insert_many(self, records: Sequence[Record]) -> list[Record]:
        """Insert ``records`` in one command.

        Generated identity values are written back onto the records, in order.
        Keys holding mappings or lists are relationship data and are not inserted.

        Raises:
            ContextSyntaxError: The records have no insertable column.
            InsertError: The executor failed.
        """
        records = list(records)
        if not records:
            return []
        state = await self._node.resolve()
        command = self._compiler(state).insert(records, sort_keys=self._options.sort_keys)
        ids = await self._run(command, self._executor.handle_insert, InsertError, len)
        if state.identity is not None:
            if len(ids) != len(records):
                raise InternalError(f"{len(records)} records inserted into {self._table!r} but {len(ids)} ids returned")
            for record, generated in zip(records, ids):
                record[state.identity] = generated
        return records

    async def update(self, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> int:
        """Set ``values`` on every row matching the filter, or update records by primary key.

        A mapping is applied to the rows matching :meth:`where`. A sequence of
        records updates each record's row, matched on its primary key, with the
        record's other columns; no filter is needed for that form.

        Example:
            >>> await tracks.where(lambda m: m["TrackId"].eq(15)).update({"Bytes": 0})
            >>> await tracks.update([{"TrackId": 15, "Bytes": 0}, {"TrackId": 16, "Bytes": 1}])

        Returns:
            Number of affected rows.

        Raises:
            ContextSyntaxError: No filter is set for a mapping (unless
                ``allow_update_all``), a filter is set for records, a record lacks
                its primary key or ``values`` sets no column.
        """
        if not isinstance(values, Mapping):
            if self._filtered:
                raise ContextSyntaxError(
                    f"Records are updated by primary key; remove the where() clause on {self._table!r} "
                    "or pass a single mapping."
                )
            return await self._update_records(list(values))
        if not values:
            raise ContextSyntaxError(f"Nothing to update on {self._table!r}: no column to set.")
        if not self._filtered and not self._options.allow_update_all:
            raise ContextSyntaxError(
                f"No WHERE clause for the update of {self._table!r}; this would update every row. "
                "Use update_all() with allow_update_all=True instead."
            )
        return await self._update(values)

    async def update_all(self, values: Mapping[str, Any]) -> int:
        """Like :meth:`update` but allowed without a filter. Needs ``allow_update_all``."""
        if not self._options.allow_update_all:
            raise ContextSyntaxError("update_all() requires the allow_update_all option.")
        if not values:
            raise ContextSyntaxError(f"Nothing to update on {self._table!r}: no column to set.")
        return await self._update(values)

    async def _update(self, values: Mapping[str, Any]) -> int:
        state = await self._node.resolve()
        command = self._compiler(state).update(values, allow_all=self._options.allow_update_all)
        return await self._run(command, self._executor.handle_update, UpdateError, lambda count: count)

    async def _update_records(self, records: list[Mapping[str, Any]]) -> int:
        if not records:
            return 0
        state = await self._node.resolve()
        keys = self._record_keys(state, records, "update")
        compiler = self._compiler(state)
        commands = [compiler.update_keys(record, keys) for record in records]
        affected = 0
        for command in commands:
            affected += await self._run(command, self._executor.handle_update, UpdateError, lambda count: count)
        return affected

    def _record_keys(self, state: QueryState, records: Sequence[Mapping[str, Any]], action: str) -> tuple[str, ...]:
        """Primary key columns ``records`` are matched on; every record must hold all of them."""
        keys = tuple(column.name for column in get_primary_keys(state.schema))
        if not keys and state.identity is not None:
            keys = (state.identity,)
        if not keys:
            raise ContextSyntaxError(f"{self._table!r} has no primary key to {action} records by.")
        for record in records:
            missing = [key for key in keys if key not in record]
            if missing:
                raise ContextSyntaxError(
                    f"Cannot {action} a record of {self._table!r} without its primary key {missing!r}: {record!r}"
                )
        return keys

    async def delete(self, records: Sequence[Mapping[str, Any]] | None = None) -> int:
        """Delete the rows matching the filter, or ``records`` by primary key.

        Returns:
            Number of deleted rows.

        Raises:
            ContextSyntaxError: No filter is set, or ``records`` cannot be matched
                by primary key.
        """
        if records is None:
            if not self._filtered:
                raise ContextSyntaxError(
                    f"No WHERE clause for the delete from {self._table!r}; this would delete every row."
                )
            state = await self._node.resolve()
            command = self._compiler(state).delete()
        else:
            records = list(records)
            if not records:
                return 0
            state = await self._node.resolve()
            keys = self._record_keys(state, records, "delete")
            command = self._compiler(state).delete_keys(
                keys, [tuple(record[key] for key in keys) for record in records]
            )
        return await self._run(command, self._executor.handle_delete, DeleteError, lambda count: count)

    async def truncate(self) -> int:
        """Delete every row. Needs ``allow_truncation``."""
        if not self._options.allow_truncation:
            raise ContextSyntaxError("truncate() requires the allow_truncation option.")
        state = await self._node.resolve()
        command = self._compiler(state).truncate()
        return await self._run(command, self._executor.handle_delete, DeleteError, lambda count: count)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._table!r}>"


class IncludedContext(TableContext):
    """Context returned by :meth:`TableContext.include`; can descend with :meth:`then_include`."""

    __slots__ = ("_last_included",)

    def then_include(self, callback: Callable[[RelationshipLookup], str | Sequence[str]]) -> IncludedContext:
        """Include relationships declared under the relationship included last."""
        if not self._last_included:
            self._warn("then_include() called without a preceding include; nothing to descend into.")
            return self._include(())
        path = tuple(self._last_included.split("."))
        children = find_node(self._declared, path).children
        paths = _as_tuple(callback(RelationshipLookup(self._table, children, self._last_included)))
        return self._include(paths)
