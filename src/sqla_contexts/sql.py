from __future__ import annotations

import datetime as dt
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Final, Literal


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


CommandKind = Literal["query", "count", "insert", "update", "delete", "describe"]
Placeholder = Callable[[int], str]

QMARK: Final[Placeholder] = lambda index: "?"  # noqa: E731


@dataclass(slots=True, frozen=True)
class Command:
    """A compiled command.

    Attributes:
        text: SQL with placeholders, sent to the executor verbatim.
        args: Positional arguments, one per placeholder in ``text`` order.
        raw: ``text`` with arguments interpolated. Human-readable only.
        kind: Which executor handler runs it.
        table: Table of the context that compiled it.
    """

    text: str
    args: tuple[Any, ...]
    raw: str
    kind: CommandKind
    table: str


def render_literal(value: Any) -> str:
    """Render ``value`` as a SQL literal for display purposes."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return f"'{value.isoformat()}'"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"X'{bytes(value).hex()}'"
    text = str(value).replace("'", "''")
    return f"'{text}'"


class SqlBuilder:
    """Accumulates SQL text and bound arguments in lockstep.

    Every argument goes through :meth:`bind`, which records it and appends the
    placeholder for its position, so text and ``args`` cannot drift apart.
    A display copy with the literal values inlined is kept alongside.

    Example:
        >>> b = SqlBuilder()
        >>> b.append("SELECT * FROM t WHERE a = ").bind(1)
        >>> b.text, b.args
        ('SELECT * FROM t WHERE a = ?', (1,))
    """

    __slots__ = ("_args", "_parts", "_placeholder", "_raw_parts")

    def __init__(self, placeholder: Placeholder = QMARK) -> None:
        self._placeholder = placeholder
        self._parts: list[str] = []
        self._raw_parts: list[str] = []
        self._args: list[Any] = []

    def append(self, *fragments: str) -> Self:
        for fragment in fragments:
            self._parts.append(fragment)
            self._raw_parts.append(fragment)
        return self

    def bind(self, value: Any) -> Self:
        """Record ``value`` and append the placeholder for its position."""
        placeholder = self._placeholder(len(self._args))
        self._args.append(value)
        self._parts.append(placeholder)
        self._raw_parts.append(render_literal(value))
        return self

    def bind_many(self, values: Iterable[Any]) -> Self:
        """Bind every value of ``values`` as a parenthesized, comma separated list."""
        self.append("(")
        for n, value in enumerate(values):
            if n:
                self.append(", ")
            self.bind(value)
        return self.append(")")

    @property
    def args(self) -> tuple[Any, ...]:
        return tuple(self._args)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def raw(self) -> str:
        return "".join(self._raw_parts)

    def __len__(self) -> int:
        return len(self._parts)

    def build(self, kind: CommandKind, table: str) -> Command:
        return Command(text=self.text, args=self.args, raw=self.raw, kind=kind, table=table)
