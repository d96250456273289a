from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Hashable, Iterable, Mapping, Sequence
from decimal import Decimal
from typing import Any, TypeVar

from .node import Path, RelationshipNode, iter_nodes
from .schema import Schema, get_primary_keys


_T = TypeVar("_T")

Row = Mapping[str, Any]


def unique_by(items: Iterable[_T], key: Callable[[_T], Hashable]) -> list[_T]:
    """Keep the first item for every distinct ``key(item)``, preserving order.

    Example:
        >>> unique_by([{"id": 1}, {"id": 1}, {"id": 2}], key=lambda r: r["id"])
        [{'id': 1}, {'id': 2}]
    """
    seen: set[Hashable] = set()
    unique: list[_T] = []
    for item in items:
        marker = key(item)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(item)
    return unique


def is_scalar(value: Any) -> bool:
    """Whether ``value`` can be stored in a single column.

    Mappings and collections are relationship data and are not.
    """
    if isinstance(value, (str, bytes, bytearray, int, float, Decimal, dt.date, dt.time, dt.timedelta)):
        return True
    return not isinstance(value, (Mapping, Sequence, set, frozenset))


def reconstruct(
    rows: Sequence[Row],
    schema: Schema,
    relationships: Mapping[str, RelationshipNode],
    *,
    grouped: bool = False,
) -> list[dict[str, Any]]:
    """Fold flat joined rows into nested records.

    Rows repeating the same root primary key are merged. Each included
    relationship becomes a nested value under its name: a dict (or ``None`` when
    the join matched nothing) for one-to-one, a list deduplicated by the child's
    primary key for one-to-many. Grouped rows are never merged and nest every
    relationship as a dict.

    Args:
        rows: Result rows keyed by column alias.
        schema: Aliased schema of the root table.
        relationships: Included relationship tree (see ``node.included_tree``).
        grouped: Whether the query had a GROUP BY clause.

    Returns:
        One dict per distinct root row, in first-seen order.
    """
    if not rows:
        return []

    claimed = {
        column.alias for _, node in iter_nodes(relationships) for column in (node.schema or {}).values()
    }
    primary_keys = tuple(column.alias for column in get_primary_keys(schema))
    parents: Sequence[Row] = rows
    if not grouped and primary_keys and all(alias in rows[0] for alias in primary_keys):
        parents = unique_by(rows, key=lambda row: tuple(row[alias] for alias in primary_keys))

    records: list[dict[str, Any]] = []
    for row in parents:
        record = {key: value for key, value in row.items() if key not in claimed}
        record.update(_nest(row, rows, schema, relationships, grouped))
        records.append(record)
    return records


def _selected(node: RelationshipNode, row: Row) -> bool:
    """Whether any column of ``node`` or of its descendants is present in ``row``."""
    if any(column.alias in row for column in (node.schema or {}).values()):
        return True
    return any(_selected(child, row) for child in node.children.values())


def _nest(
    row: Row,
    rows: Sequence[Row],
    parent_schema: Schema,
    relationships: Mapping[str, RelationshipNode],
    grouped: bool,
) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for name, node in relationships.items():
        if not _selected(node, row):
            continue

        if node.cardinality == "one" or grouped:
            nested[name] = _build(row, rows, node, grouped)
            continue

        local = parent_schema[node.local_key].alias if node.local_key in parent_schema else node.local_key
        foreign = node.column(node.foreign_key).alias
        value = row.get(local)
        matching = [] if value is None else [other for other in rows if other.get(foreign) == value]

        key = _identity_key(node)
        children = []
        for child_row in unique_by(matching, key=key):
            child = _build(child_row, matching, node, grouped)
            if child is not None:
                children.append(child)
        nested[name] = children
    return nested


def _identity_key(node: RelationshipNode) -> Callable[[Row], Hashable]:
    schema = node.schema or {}
    primary_keys = get_primary_keys(schema)  # type: ignore[arg-type]
    aliases = tuple(column.alias for column in primary_keys or schema.values())
    return lambda row: tuple(row.get(alias) for alias in aliases)


def _build(row: Row, rows: Sequence[Row], node: RelationshipNode, grouped: bool) -> dict[str, Any] | None:
    schema = node.schema or {}
    values = {column.name: row[column.alias] for column in schema.values() if column.alias in row}
    nested = _nest(row, rows, schema, node.children, grouped)  # type: ignore[arg-type]
    if all(value is None for value in values.values()) and all(not value for value in nested.values()):
        # LEFT JOIN without a match
        return None
    return {**values, **nested}


def drop_columns(records: Sequence[dict[str, Any]], columns: Mapping[Path, Iterable[str]]) -> None:
    """Remove ``columns`` from reconstructed ``records`` in place.

    Keys of ``columns`` are relationship paths (``()`` for the root records) and
    values the keys to remove at that level. Used to hide join and primary keys
    that were selected only so that rows could be nested.
    """
    for path, names in columns.items():
        names = tuple(names)
        for record in records:
            _drop(record, path, names)


def _drop(value: Any, path: Path, names: tuple[str, ...]) -> None:
    if value is None:
        return
    if isinstance(value, list):
        for item in value:
            _drop(item, path, names)
        return
    if path:
        _drop(value.get(path[0]), path[1:], names)
        return
    for name in names:
        value.pop(name, None)
