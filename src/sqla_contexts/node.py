from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Literal, final

from .datastructures import frozendict
from .exceptions import InternalError, RelationshipError
from .schema import ColumnDescriptor, Schema, alias_schema, namespaced


Cardinality = Literal["one", "many"]
Path = tuple[str, ...]
Tree = frozendict[str, "RelationshipNode"]


@final
@dataclass(slots=True, frozen=True)
class RelationshipNode:
    """A declared join from a parent table to ``table``.

    Nodes are immutable. Declaring a relationship or attaching a schema produces a
    new tree that shares every untouched branch with the old one, so forks of a
    context can hold different trees without copying them.

    Attributes:
        name: Relationship name, the key of the nested value in results.
        cardinality: ``"one"`` nests an object, ``"many"`` nests a list.
        table: Joined table.
        local_key: Column of the parent table used in the join.
        foreign_key: Column of ``table`` used in the join.
        alias: Table alias, ``<parent alias>_<name>``.
        namespace: Column alias prefix, the relationship names from the root.
        schema: Aliased columns of ``table``, ``None`` until described.
        children: Relationships declared under this one.
    """

    name: str
    cardinality: Cardinality
    table: str
    local_key: str
    foreign_key: str
    alias: str
    namespace: str
    schema: Schema | None = None
    children: Tree = field(default_factory=frozendict)

    def describe(self, columns: Iterable[ColumnDescriptor]) -> RelationshipNode:
        """Return a copy carrying the aliased ``columns``."""
        return dataclasses.replace(self, schema=alias_schema(columns, self.alias, self.namespace))

    def column(self, name: str) -> ColumnDescriptor:
        if self.schema is None:
            raise InternalError(f"relationship {self.name!r} used before it was described")
        if name not in self.schema:
            raise RelationshipError(
                f"The key {name!r} of the relationship {self.name!r} does not exist on {self.table!r}."
            )
        return self.schema[name]


def iter_nodes(tree: Mapping[str, RelationshipNode], path: Path = ()) -> Iterator[tuple[Path, RelationshipNode]]:
    """Yield ``(path, node)`` pairs depth first, parents before children."""
    for name, node in tree.items():
        node_path = (*path, name)
        yield node_path, node
        yield from iter_nodes(node.children, node_path)


def find_node(tree: Mapping[str, RelationshipNode], path: Path) -> RelationshipNode:
    node: RelationshipNode | None = None
    nodes = tree
    for segment in path:
        if segment not in nodes:
            raise RelationshipError(f"No relationship {'.'.join(path)!r} has been declared.")
        node = nodes[segment]
        nodes = node.children
    if node is None:
        raise InternalError("empty relationship path")
    return node


def replace_node(tree: Tree, path: Path, update: Callable[[RelationshipNode | None], RelationshipNode]) -> Tree:
    """Return a new tree where the node at ``path`` is ``update(old node)``.

    Only the nodes along ``path`` are copied.
    """
    head, *rest = path
    current = tree.get(head)
    if not rest:
        return tree.set(head, update(current))
    if current is None:
        raise InternalError(f"missing parent relationship {head!r}")
    return tree.set(head, dataclasses.replace(current, children=replace_node(current.children, tuple(rest), update)))


def insert_node(tree: Tree, path: Path, node: RelationshipNode) -> Tree:
    """Add ``node`` at ``path``. Declaring a name twice under one parent is an error."""

    def update(existing: RelationshipNode | None) -> RelationshipNode:
        if existing is not None:
            raise RelationshipError(f"The relationship {'.'.join(path)!r} has already been declared.")
        return node

    return replace_node(tree, path, update)


def included_tree(tree: Tree, includes: Iterable[str]) -> Tree:
    """Subtree made of the included dotted paths (``"Album.Artist"``).

    Including a path implies including each of its ancestors.
    """
    paths = {tuple(include.split(".")) for include in includes}

    def walk(nodes: Tree, prefix: Path) -> Tree:
        return frozendict(
            (name, dataclasses.replace(node, children=walk(node.children, (*prefix, name))))
            for name, node in nodes.items()
            if any(path[: len(prefix) + 1] == (*prefix, name) for path in paths)
        )

    return walk(tree, ())


def has_many(tree: Mapping[str, RelationshipNode]) -> bool:
    """Whether any node of ``tree`` is one-to-many."""
    return any(node.cardinality == "many" for _, node in iter_nodes(tree))


Register = Callable[[Path, RelationshipNode], None]


class RelationshipDeclaration:
    """First stage of ``has_one``/``has_many``: choose the table or the keys.

    Example:
        >>> ctx.has_one("Album").with_keys("AlbumId", "AlbumId").and_that_has_one(
        ...     "Artist", lambda r: r.with_keys("ArtistId", "ArtistId")
        ... )
    """

    __slots__ = ("_cardinality", "_name", "_parent_alias", "_parent_namespace", "_path", "_register", "_table")

    def __init__(
        self,
        name: str,
        cardinality: Cardinality,
        path: Path,
        parent_alias: str,
        parent_namespace: str,
        register: Register,
    ) -> None:
        if not name or "." in name:
            raise RelationshipError(f"Invalid relationship name {name!r}.")
        self._name = name
        self._cardinality = cardinality
        self._path = path
        self._parent_alias = parent_alias
        self._parent_namespace = parent_namespace
        self._register = register
        self._table = name

    def from_table(self, table: str) -> _KeysStage:
        """Join ``table`` instead of the table named like the relationship."""
        self._table = table
        return _KeysStage(self)

    def with_primary(self, column: str) -> _ForeignKeyStage:
        return _KeysStage(self).with_primary(column)

    def with_keys(self, primary: str, foreign: str) -> DeclaredRelationship:
        return _KeysStage(self).with_keys(primary, foreign)

    def _complete(self, primary: str, foreign: str) -> DeclaredRelationship:
        alias = f"{self._parent_alias}_{self._name}"
        namespace = namespaced(self._parent_namespace, self._name)
        node = RelationshipNode(
            name=self._name,
            cardinality=self._cardinality,
            table=self._table,
            local_key=primary,
            foreign_key=foreign,
            alias=alias,
            namespace=namespace,
        )
        path = (*self._path, self._name)
        self._register(path, node)
        return DeclaredRelationship(path, alias, namespace, self._register)


class _KeysStage:
    __slots__ = ("_declaration",)

    def __init__(self, declaration: RelationshipDeclaration) -> None:
        self._declaration = declaration

    def with_primary(self, column: str) -> _ForeignKeyStage:
        """Parent-side join column."""
        return _ForeignKeyStage(self._declaration, column)

    def with_keys(self, primary: str, foreign: str) -> DeclaredRelationship:
        """Parent-side and child-side join columns at once."""
        return self._declaration._complete(primary, foreign)


class _ForeignKeyStage:
    __slots__ = ("_declaration", "_primary")

    def __init__(self, declaration: RelationshipDeclaration, primary: str) -> None:
        self._declaration = declaration
        self._primary = primary

    def with_foreign(self, column: str) -> DeclaredRelationship:
        """Child-side join column."""
        return self._declaration._complete(self._primary, column)


class DeclaredRelationship:
    """A completed declaration; nested relationships hang off it."""

    __slots__ = ("_alias", "_namespace", "_path", "_register")

    def __init__(self, path: Path, alias: str, namespace: str, register: Register) -> None:
        self._path = path
        self._alias = alias
        self._namespace = namespace
        self._register = register

    def _nest(
        self,
        name: str,
        cardinality: Cardinality,
        declare: Callable[[RelationshipDeclaration], DeclaredRelationship],
    ) -> DeclaredRelationship:
        declared = declare(
            RelationshipDeclaration(name, cardinality, self._path, self._alias, self._namespace, self._register)
        )
        if not isinstance(declared, DeclaredRelationship):
            raise RelationshipError(f"The declaration of {name!r} is incomplete; call with_keys() or with_foreign().")
        return self

    def and_that_has_one(
        self, name: str, declare: Callable[[RelationshipDeclaration], DeclaredRelationship]
    ) -> DeclaredRelationship:
        """Declare a one-to-one relationship of the just-declared table."""
        return self._nest(name, "one", declare)

    def and_that_has_many(
        self, name: str, declare: Callable[[RelationshipDeclaration], DeclaredRelationship]
    ) -> DeclaredRelationship:
        """Declare a one-to-many relationship of the just-declared table."""
        return self._nest(name, "many", declare)

    @property
    def path(self) -> str:
        return ".".join(self._path)
