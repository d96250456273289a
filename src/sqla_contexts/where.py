"""WHERE clause expression tree.

A condition tree is a tuple of nodes. A node is either a :class:`Condition` or a
nested tuple (a parenthesized group) whose first member opens the group::

    WHERE A AND (B OR C) AND D   ->   (A, (B, (C,)), (D,))

Groups are built by :meth:`Chain.and_` / :meth:`Chain.or_`. A group left with a
single member renders without parentheses.
"""

from __future__ import annotations

import dataclasses
import sys
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Literal, Protocol, Union

from .exceptions import ContextSyntaxError, InternalError
from .sql import SqlBuilder


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .lookup import ColumnRef


Connector = Literal["WHERE", "AND", "OR"]
Operator = Literal["=", "<>", "<", "<=", ">", ">=", "IN", "LIKE", "IS", "IS NOT"]

_NULL_OPERATORS: Final[dict[str, str]] = {"=": "IS", "<>": "IS NOT"}
_NEGATED_NULL_OPERATORS: Final[dict[str, str]] = {"IS": "IS NOT", "IS NOT": "IS"}


class Quoting(Protocol):
    def escape_table(self, name: str) -> str: ...

    def escape_column(self, name: str) -> str: ...


class _Verbatim:
    """Quoting that leaves identifiers untouched."""

    @staticmethod
    def escape_table(name: str) -> str:
        return name

    @staticmethod
    def escape_column(name: str) -> str:
        return name


VERBATIM: Final[Quoting] = _Verbatim()


@dataclass(slots=True, frozen=True)
class Condition:
    """One comparison.

    Attributes:
        chain: Connector placed before the condition.
        table: Alias of the table owning ``column``.
        column: Column name in the database.
        operator: Comparison operator. Null comparisons already use ``IS``/``IS NOT``.
        value: Bound value; a tuple for ``IN``; ``None`` for null comparisons.
        negated: Whether the comparison is wrapped in ``NOT (...)``.
    """

    chain: Connector
    table: str
    column: str
    operator: Operator
    value: Any
    negated: bool = False


WhereNode = Union[Condition, tuple["WhereNode", ...]]


def _connector(node: WhereNode) -> Connector:
    """Connector of the leftmost condition of ``node``."""
    while isinstance(node, tuple):
        if not node:
            raise InternalError("empty condition group")
        node = node[0]
    return node.chain


def _with_connector(node: WhereNode, chain: Connector) -> WhereNode:
    """Copy of ``node`` whose leftmost condition uses ``chain``."""
    if isinstance(node, Condition):
        return node if node.chain == chain else dataclasses.replace(node, chain=chain)
    return (_with_connector(node[0], chain), *node[1:])


def _prune(nodes: tuple[WhereNode, ...], keep: Callable[[str], bool]) -> tuple[WhereNode, ...]:
    """Drop conditions whose table is rejected by ``keep`` and groups left empty.

    A group keeps its connector even when its leading condition is dropped.
    """
    pruned: list[WhereNode] = []
    for node in nodes:
        if isinstance(node, Condition):
            if keep(node.table):
                pruned.append(node)
        elif isinstance(node, tuple):
            group = _prune(node, keep)
            if group:
                pruned.append(_with_connector(group, _connector(node)))
        else:
            raise InternalError(f"unexpected condition node {node!r}")
    return tuple(pruned)


def _write_condition(condition: Condition, builder: SqlBuilder, quoting: Quoting) -> None:
    column = f"{quoting.escape_table(condition.table)}.{quoting.escape_column(condition.column)}"
    if condition.operator == "IN" and not condition.value:
        # nothing is IN an empty list
        builder.append("1 = 1" if condition.negated else "1 = 0")
        return

    if condition.negated:
        builder.append("NOT (")
    builder.append(column, " ", condition.operator, " ")
    if condition.operator in ("IS", "IS NOT"):
        builder.append("NULL")
    elif condition.operator == "IN":
        builder.bind_many(condition.value)
    else:
        builder.bind(condition.value)
    if condition.negated:
        builder.append(")")


def _write_nodes(nodes: tuple[WhereNode, ...], builder: SqlBuilder, quoting: Quoting) -> None:
    for n, node in enumerate(nodes):
        if n:
            builder.append(" ", _connector(node), " ")
        if isinstance(node, Condition):
            _write_condition(node, builder, quoting)
        elif len(node) == 1:
            _write_nodes(node, builder, quoting)
        else:
            builder.append("(")
            _write_nodes(node, builder, quoting)
            builder.append(")")


def _table_predicate(table_filter: str | Callable[[str], bool] | None) -> Callable[[str], bool]:
    if table_filter is None:
        return lambda table: True
    if isinstance(table_filter, str):
        return lambda table: table == table_filter
    return table_filter


@dataclass(slots=True, frozen=True)
class Filter:
    """A finished condition tree, ready to be written into a command."""

    nodes: tuple[WhereNode, ...]

    def __bool__(self) -> bool:
        return bool(self.nodes)

    def conditions(self) -> Iterable[Condition]:
        """Every condition, depth first, left to right."""
        stack: list[WhereNode] = list(reversed(self.nodes))
        while stack:
            node = stack.pop()
            if isinstance(node, Condition):
                yield node
            else:
                stack.extend(reversed(node))

    def tables(self) -> frozenset[str]:
        return frozenset(condition.table for condition in self.conditions())

    def write(
        self,
        builder: SqlBuilder,
        quoting: Quoting = VERBATIM,
        table_filter: str | Callable[[str], bool] | None = None,
    ) -> bool:
        """Write `` WHERE ...`` into ``builder``.

        Args:
            builder: Builder receiving text and arguments.
            quoting: Identifier escaping, usually the executor.
            table_filter: Table alias (or predicate on table aliases) whose
                conditions are kept. ``None`` keeps every condition.

        Returns:
            Whether anything was written.
        """
        nodes = _prune(self.nodes, _table_predicate(table_filter))
        if not nodes:
            return False
        builder.append(" WHERE ")
        _write_nodes(nodes, builder, quoting)
        return True

    def to_string(
        self,
        table_filter: str | Callable[[str], bool] | None = None,
        quoting: Quoting = VERBATIM,
    ) -> str:
        """Render the clause (``"WHERE ..."``) or ``""`` when nothing is kept."""
        builder = SqlBuilder()
        self.write(builder, quoting, table_filter)
        return builder.text.lstrip()

    def get_args(self, table_filter: str | Callable[[str], bool] | None = None) -> list[Any]:
        """Arguments of :meth:`to_string` for the same ``table_filter``, in placeholder order."""
        builder = SqlBuilder()
        self.write(builder, VERBATIM, table_filter)
        return list(builder.args)


EMPTY_FILTER: Final[Filter] = Filter(())

Scope = Callable[[Connector], Mapping[str, Any]]


class WhereBuilder:
    """Comparison builder bound to one column.

    Obtained from the lookup handed to ``TableContext.where`` callbacks. Calling a
    comparison records the condition and returns a :class:`Chain`.

    Example:
        >>> ctx.where(lambda m: m["Composer"].equals("AC/DC").and_(
        ...     lambda m: m["Bytes"].greater_than(7032162)
        ... ))
    """

    __slots__ = ("_chain", "_column", "_nodes", "_negated", "_scope")

    def __init__(self, column: ColumnRef, chain: Connector, scope: Scope) -> None:
        self._column = column
        self._chain = chain
        self._scope = scope
        self._negated = False
        self._nodes: list[WhereNode] = []

    def not_(self) -> Self:
        """Negate the next comparison."""
        self._negated = not self._negated
        return self

    def _insert(self, operator: Operator, value: Any) -> Chain:
        if self._nodes:
            raise ContextSyntaxError(
                f"A comparison was already made on {self._column.column!r}; continue with and_() or or_()."
            )
        negated = self._negated
        if value is None and operator in _NULL_OPERATORS:
            operator = _NULL_OPERATORS[operator]  # type: ignore[assignment]
        if negated and operator in _NEGATED_NULL_OPERATORS:
            operator = _NEGATED_NULL_OPERATORS[operator]  # type: ignore[assignment]
            negated = False

        self._nodes.append(
            Condition(
                chain=self._chain,
                table=self._column.table,
                column=self._column.column,
                operator=operator,
                value=value,
                negated=negated,
            )
        )
        return Chain(self)

    def equals(self, value: Any) -> Chain:
        return self._insert("=", value)

    def not_equals(self, value: Any) -> Chain:
        return self._insert("<>", value)

    def less_than(self, value: Any) -> Chain:
        return self._insert("<", value)

    def less_than_or_equal_to(self, value: Any) -> Chain:
        return self._insert("<=", value)

    def greater_than(self, value: Any) -> Chain:
        return self._insert(">", value)

    def greater_than_or_equal_to(self, value: Any) -> Chain:
        return self._insert(">=", value)

    def in_(self, values: Iterable[Any]) -> Chain:
        """Membership test. An empty ``values`` matches no row."""
        if isinstance(values, (str, bytes)):
            raise ContextSyntaxError("in_() expects an iterable of values, not a single string.")
        return self._insert("IN", tuple(values))

    def like(self, pattern: str) -> Chain:
        return self._insert("LIKE", pattern)

    def contains(self, value: str) -> Chain:
        """``LIKE '%value%'``."""
        return self._insert("LIKE", f"%{value}%")

    eq = equals
    neq = not_equals
    lt = less_than
    lteq = less_than_or_equal_to
    gt = greater_than
    gteq = greater_than_or_equal_to


class Chain:
    """Result of a comparison: continue with :meth:`and_` or :meth:`or_`."""

    __slots__ = ("_builder",)

    def __init__(self, builder: WhereBuilder) -> None:
        self._builder = builder

    def _extend(self, chain: Connector, callback: Callable[[Mapping[str, Any]], Chain]) -> Self:
        result = callback(self._builder._scope(chain))
        if not isinstance(result, Chain):
            raise ContextSyntaxError(f"The {chain.lower()}_() callback must return a comparison, got {result!r}.")
        self._builder._nodes.append(result.nodes)
        return self

    def and_(self, callback: Callable[[Mapping[str, Any]], Chain]) -> Self:
        return self._extend("AND", callback)

    def or_(self, callback: Callable[[Mapping[str, Any]], Chain]) -> Self:
        return self._extend("OR", callback)

    @property
    def nodes(self) -> tuple[WhereNode, ...]:
        return tuple(self._builder._nodes)

    def to_filter(self) -> Filter:
        return Filter(self.nodes)

    def to_string(self, table_filter: str | Callable[[str], bool] | None = None) -> str:
        return self.to_filter().to_string(table_filter)

    def get_args(self, table_filter: str | Callable[[str], bool] | None = None) -> list[Any]:
        return self.to_filter().get_args(table_filter)
