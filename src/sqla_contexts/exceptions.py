"""Exceptions raised by sqla_contexts.

Three families exist:

* ``ContextSyntaxError`` and its subclasses: the builder was used incorrectly.
* ``ExecutorError`` and its subclasses: the executor rejected a compiled command.
  The driver error is chained as ``__cause__``.
* ``InternalError``: a builder invariant was broken. Always a bug.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class ContextError(Exception):
    """Base class for every error raised by this package."""


class ContextSyntaxError(ContextError, ValueError):
    """Malformed builder usage."""


class ColumnDoesNotExistError(ContextSyntaxError):
    """A callback referenced a column the table does not have."""

    def __init__(self, column: str, table: str) -> None:
        super().__init__(f'The column "{column}" does not exist on the table "{table}".')
        self.column = column
        self.table = table


class RelationshipError(ContextSyntaxError):
    """A relationship was referenced before declaration, declared twice, or left incomplete."""


class OptionsError(ContextError, ValueError):
    """Invalid ``ContextOptions``."""


class InternalError(ContextError, RuntimeError):
    """A builder invariant was violated."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Internal error in sqla_contexts: {detail}")


class ExecutorError(ContextError):
    """The executor failed to run a compiled command.

    Attributes:
        table: Table the context was bound to.
        cmd_raw: Command text with arguments interpolated, for display only.
        cmd_sanitized: Command text exactly as sent to the executor.
        cmd_args: Positional arguments sent with ``cmd_sanitized``.
    """

    action = "execute"

    def __init__(
        self,
        table: str,
        cmd_raw: str = "",
        cmd_sanitized: str = "",
        cmd_args: Sequence[Any] = (),
        error: BaseException | None = None,
    ) -> None:
        message = f"Failed to {self.action} on the table {table!r}"
        if error is not None:
            message = f"{message}: {error}"
        super().__init__(message)
        self.table = table
        self.cmd_raw = cmd_raw
        self.cmd_sanitized = cmd_sanitized
        self.cmd_args = tuple(cmd_args)
        self.error = error


class QueryError(ExecutorError):
    action = "query rows"


class CountError(ExecutorError):
    action = "count rows"


class InsertError(ExecutorError):
    action = "insert rows"


class UpdateError(ExecutorError):
    action = "update rows"


class DeleteError(ExecutorError):
    action = "delete rows"


class DescribeError(ExecutorError):
    action = "describe the columns"
