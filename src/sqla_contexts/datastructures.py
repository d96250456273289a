from __future__ import annotations

import sys
from collections.abc import Iterator, Mapping
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")

_UNSET: Any = object()


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, insertion-ordered mapping.

    Table schemas and relationship children are stored in frozendicts so that
    forks of a ``TableContext`` can share them by reference. Every "change"
    produces a new instance; the receiver is never touched.

    The hash is computed on first use, so values only need to be hashable when
    the mapping itself is hashed.

    Example:
        >>> schema = frozendict({"TrackId": 1})
        >>> wider = schema.set("Name", 2)
        >>> list(schema), list(wider)
        (['TrackId'], ['TrackId', 'Name'])
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int = _UNSET

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def set(self, key: K, value: V) -> Self:
        """Return a new frozendict with ``key`` bound to ``value``.

        Args:
            key: Key to add or replace. An existing key keeps its position.
            value: New value.

        Returns:
            New frozendict instance.
        """
        items = dict(self._dict)
        items[key] = value
        return type(self)(items)

    def merge(self, other: Mapping[K, V]) -> Self:
        """Return a new frozendict holding the items of both mappings.

        Items from ``other`` win on conflicting keys.
        """
        items = dict(self._dict)
        items.update(other)
        return type(self)(items)

    def thaw(self) -> dict[K, V]:
        """Shallow mutable copy."""
        return dict(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        if self._hash is _UNSET:
            self._hash = hash(frozenset(self._dict.items()))
        return self._hash
