"""Immutable, chainable table contexts on top of SQLAlchemy's asyncio engine.

sqla_contexts builds SELECT, COUNT, INSERT, UPDATE and DELETE commands from a
fluent ``TableContext``.  Every chaining call returns a new context, declared
relationships are joined on ``include`` and nested back into the records that
``select`` returns, and commands run through an ``Executor`` (``SqlaExecutor`` for
any SQLAlchemy async engine).
"""

from ._version import __version__, __version_tuple__
from .context import ContextOptions, IncludedContext, TableContext
from .core import CommandBuilder, QueryState, cache_clear, cache_info
from .datastructures import frozendict
from .events import CommandEvent, CommandEvents, WarningEvent, executor_events
from .exceptions import (
    ColumnDoesNotExistError,
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
from .executor import Executor, SqlaExecutor
from .lookup import AggregateRef, Aggregates, ColumnLookup, ColumnRef, RelationshipLookup, SortKey
from .node import RelationshipNode
from .schema import ColumnDescriptor
from .sql import Command
from .tools import reconstruct, unique_by
from .where import Chain, Filter, WhereBuilder


__all__ = (
    "AggregateRef",
    "Aggregates",
    "Chain",
    "ColumnDescriptor",
    "ColumnDoesNotExistError",
    "ColumnLookup",
    "ColumnRef",
    "Command",
    "CommandBuilder",
    "CommandEvent",
    "CommandEvents",
    "ContextError",
    "ContextOptions",
    "ContextSyntaxError",
    "CountError",
    "DeleteError",
    "DescribeError",
    "Executor",
    "ExecutorError",
    "Filter",
    "IncludedContext",
    "InsertError",
    "InternalError",
    "OptionsError",
    "QueryError",
    "QueryState",
    "RelationshipError",
    "RelationshipLookup",
    "RelationshipNode",
    "SortKey",
    "SqlaExecutor",
    "TableContext",
    "UpdateError",
    "WarningEvent",
    "WhereBuilder",
    "__version__",
    "__version_tuple__",
    "cache_clear",
    "cache_info",
    "executor_events",
    "frozendict",
    "reconstruct",
    "unique_by",
)
