from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .datastructures import frozendict


@dataclass(slots=True, frozen=True)
class ColumnDescriptor:
    """Metadata of one column.

    Executors fill in everything but ``alias`` and ``table``; the context assigns
    those when the schema is attached to the root table or to a relationship.

    Attributes:
        name: Column name in the database.
        alias: Label used in ``AS`` clauses and as the key of flat result rows.
        table: Alias of the table the column is selected from.
        nullable: Whether the column accepts NULL.
        is_primary_key: Whether the column belongs to the primary key.
        is_auto_increment: Whether the database generates the value.
        default: Server default, as reported by the database.
    """

    name: str
    alias: str = ""
    table: str = ""
    nullable: bool = True
    is_primary_key: bool = False
    is_auto_increment: bool = False
    default: Any = None


Schema = frozendict[str, ColumnDescriptor]


def namespaced(namespace: str, name: str) -> str:
    """Prefix ``name`` with ``namespace`` joined by an underscore.

    Example:
        >>> namespaced("Album_Artist", "Name")
        'Album_Artist_Name'
        >>> namespaced("", "Name")
        'Name'
    """
    return f"{namespace}_{name}" if namespace else name


def alias_schema(
    columns: Iterable[ColumnDescriptor],
    table_alias: str,
    namespace: str = "",
) -> Schema:
    """Attach table alias and column aliases to described columns.

    Args:
        columns: Columns as returned by ``Executor.handle_describe``.
        table_alias: Alias the table is selected under.
        namespace: Relationship path (``"Album_Artist"``). Empty for the root table,
            whose columns keep their raw names as aliases.

    Returns:
        Mapping of raw column name to the aliased descriptor, in described order.
    """
    return frozendict(
        (
            column.name,
            dataclasses.replace(column, alias=namespaced(namespace, column.name), table=table_alias),
        )
        for column in columns
    )


def get_primary_keys(schema: Schema) -> tuple[ColumnDescriptor, ...]:
    """Every primary key column of ``schema``, in described order.

    Composite keys (``PlaylistTrack(PlaylistId, TrackId)``) return all of their
    columns; tables without a primary key return ``()``.
    """
    return tuple(column for column in schema.values() if column.is_primary_key)


def get_identity(schema: Schema) -> str | None:
    """Name of the auto-increment primary key of ``schema``, if any."""
    for column in schema.values():
        if column.is_primary_key and column.is_auto_increment:
            return column.name
    return None
