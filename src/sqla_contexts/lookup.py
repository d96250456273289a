"""Column lookups handed to ``TableContext`` callbacks.

Callbacks never receive dynamic attribute proxies. They receive a
:class:`ColumnLookup`, a read-only mapping built from the table schema and the
relationships that are currently included::

    ctx.include(lambda r: r["Album"]).where(lambda m: m["Album"]["Title"].like("Let%"))

Looking up a name that is neither a column nor an included relationship raises
:class:`~sqla_contexts.exceptions.ColumnDoesNotExistError`.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar, Union

from .exceptions import ColumnDoesNotExistError, ContextSyntaxError, RelationshipError
from .node import RelationshipNode
from .schema import ColumnDescriptor, Schema


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


T = TypeVar("T")
Direction = Literal["ASC", "DESC"]
AggregateFunction = Literal["AVG", "COUNT", "MIN", "MAX", "SUM", "TOTAL"]


@dataclass(slots=True, frozen=True)
class ColumnRef:
    """A column as seen from a compiled query.

    Attributes:
        table: Alias of the table it is selected from.
        column: Column name in the database.
        alias: Label of the column in result rows.
    """

    table: str
    column: str
    alias: str

    @classmethod
    def of(cls, descriptor: ColumnDescriptor) -> Self:
        return cls(table=descriptor.table, column=descriptor.name, alias=descriptor.alias)

    def asc(self) -> SortKey:
        return SortKey(self, "ASC")

    def desc(self) -> SortKey:
        return SortKey(self, "DESC")


@dataclass(slots=True, frozen=True)
class SortKey:
    column: ColumnRef
    direction: Direction = "ASC"


@dataclass(slots=True, frozen=True)
class AggregateRef:
    """An aggregate expression selected by a grouped query."""

    function: AggregateFunction
    column: ColumnRef | None
    alias: str


Selected = Union[ColumnRef, AggregateRef]


class Aggregates:
    """Aggregate helpers passed to ``TableContext.group_by`` callbacks.

    Aliases are produced from ``alias_template`` (``{function}`` is the lower-cased
    function name and ``{column}`` the column alias) and ``total_alias``.

    Example:
        >>> ctx.group_by(lambda m, agg: [m["Composer"], agg.total(), agg.avg(m["Milliseconds"])])
    """

    __slots__ = ("_alias_template", "_total_alias")

    def __init__(self, alias_template: str = "${function}_{column}", total_alias: str = "$total") -> None:
        self._alias_template = alias_template
        self._total_alias = total_alias

    def _aggregate(self, function: AggregateFunction, column: ColumnRef) -> AggregateRef:
        if not isinstance(column, ColumnRef):
            raise ContextSyntaxError(f"{function.lower()}() expects a column from the lookup, got {column!r}.")
        alias = self._alias_template.format(function=function.lower(), column=column.alias)
        return AggregateRef(function, column, alias)

    def total(self) -> AggregateRef:
        """``COUNT(*)``."""
        return AggregateRef("TOTAL", None, self._total_alias)

    def count(self, column: ColumnRef) -> AggregateRef:
        """``COUNT(DISTINCT column)``."""
        return self._aggregate("COUNT", column)

    def avg(self, column: ColumnRef) -> AggregateRef:
        return self._aggregate("AVG", column)

    def min(self, column: ColumnRef) -> AggregateRef:
        return self._aggregate("MIN", column)

    def max(self, column: ColumnRef) -> AggregateRef:
        return self._aggregate("MAX", column)

    def sum(self, column: ColumnRef) -> AggregateRef:
        return self._aggregate("SUM", column)


class ColumnLookup(Mapping[str, Any], Generic[T]):
    """Read-only mapping of column and relationship names.

    Columns map to ``factory(ColumnRef)``; included relationships map to a nested
    lookup built with the same factory.
    """

    __slots__ = ("_factory", "_relationships", "_schema", "_table")

    def __init__(
        self,
        table: str,
        schema: Schema,
        relationships: Mapping[str, RelationshipNode],
        factory: Callable[[ColumnRef], T],
    ) -> None:
        self._table = table
        self._schema = schema
        self._relationships = relationships
        self._factory = factory

    def __getitem__(self, key: str) -> Any:
        if key in self._schema:
            return self._factory(ColumnRef.of(self._schema[key]))
        if key in self._relationships:
            node = self._relationships[key]
            if node.schema is None:
                raise RelationshipError(f"The relationship {key!r} has not been described yet.")
            return ColumnLookup(node.table, node.schema, node.children, self._factory)
        raise ColumnDoesNotExistError(key, self._table)

    def __contains__(self, key: object) -> bool:
        return key in self._schema or key in self._relationships

    def __iter__(self) -> Iterator[str]:
        yield from self._schema
        yield from self._relationships

    def __len__(self) -> int:
        return len(self._schema) + len(self._relationships)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._table!r} {list(self)!r}>"


class RelationshipLookup(Mapping[str, str]):
    """Mapping of declared relationship names to their dotted include paths.

    Used by ``include``/``then_include`` callbacks. Unknown names raise
    :class:`~sqla_contexts.exceptions.RelationshipError`.
    """

    __slots__ = ("_nodes", "_prefix", "_table")

    def __init__(self, table: str, nodes: Mapping[str, RelationshipNode], prefix: str = "") -> None:
        self._table = table
        self._nodes = nodes
        self._prefix = prefix

    def __getitem__(self, key: str) -> str:
        if key not in self._nodes:
            raise RelationshipError(
                f"The relationship {key!r} was never declared on {self._table!r}. "
                "Declare it with has_one() or has_many() first."
            )
        return f"{self._prefix}.{key}" if self._prefix else key

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)
