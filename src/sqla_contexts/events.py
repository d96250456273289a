from __future__ import annotations

import datetime as dt
import logging
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from .sql import Command, CommandKind


logger = logging.getLogger(__name__)

EventKind = Literal["query", "insert", "update", "delete"]
Handler = Callable[["CommandEvent"], None]
WarningHandler = Callable[["WarningEvent"], None]

_EVENT_KINDS: dict[CommandKind, EventKind] = {
    "query": "query",
    "count": "query",
    "describe": "query",
    "insert": "insert",
    "update": "update",
    "delete": "delete",
}


@dataclass(slots=True, frozen=True)
class CommandEvent:
    """What happened to one executed command.

    Attributes:
        table: Table of the context that ran the command.
        kind: ``query``, ``insert``, ``update`` or ``delete``. Counts are queries.
        date_iso: UTC time the command finished, ISO 8601.
        cmd_raw: Command with arguments interpolated. Never executed.
        cmd_sanitized: Command as sent to the executor.
        args: Arguments sent with ``cmd_sanitized``.
        affected_rows: Rows returned, inserted, updated or deleted.
        error: The executor error, for failures.
    """

    table: str
    kind: EventKind
    date_iso: str
    cmd_raw: str
    cmd_sanitized: str
    args: tuple[Any, ...]
    affected_rows: int | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def from_command(
        cls,
        command: Command,
        *,
        affected_rows: int | None = None,
        error: BaseException | None = None,
    ) -> CommandEvent:
        return cls(
            table=command.table,
            kind=_EVENT_KINDS[command.kind],
            date_iso=dt.datetime.now(dt.timezone.utc).isoformat(),
            cmd_raw=command.raw,
            cmd_sanitized=command.text,
            args=command.args,
            affected_rows=affected_rows,
            error=error,
        )


@dataclass(slots=True, frozen=True)
class WarningEvent:
    """Suspicious but legal usage of a context, such as ``take(0)``.

    Attributes:
        table: Table of the context that warned.
        message: What looked wrong.
        date_iso: UTC time of the warning, ISO 8601.
    """

    table: str
    message: str
    date_iso: str = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc).isoformat())


@dataclass(slots=True, frozen=True, eq=False)
class _Subscription:
    handler: Handler
    kind: EventKind | None
    success: bool | None

    def matches(self, event: CommandEvent) -> bool:
        if self.kind is not None and self.kind != event.kind:
            return False
        return self.success is None or self.success == event.succeeded


@dataclass(slots=True)
class CommandEvents:
    """Subscriptions to executed commands and context warnings.

    Each ``TableContext`` lineage owns one (``ctx.events``) and every executor has a
    global one (:func:`executor_events`). Handlers run synchronously, in
    subscription order, after the command finished.

    Example:
        >>> ctx.events.on_query_success(lambda e: print(e.cmd_raw))
        >>> executor_events(executor).on_fail(lambda e: log.error(e.error))
    """

    _subscriptions: list[_Subscription] = field(default_factory=list)
    _warning_handlers: list[WarningHandler] = field(default_factory=list)

    def subscribe(
        self,
        handler: Handler,
        *,
        kind: EventKind | None = None,
        success: bool | None = None,
    ) -> Callable[[], None]:
        """Register ``handler``.

        Args:
            handler: Called with each matching :class:`CommandEvent`.
            kind: Only events of this kind. ``None`` for all kinds.
            success: ``True`` for successes, ``False`` for failures, ``None`` for both.

        Returns:
            A function removing the subscription.
        """
        subscription = _Subscription(handler, kind, success)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def emit(self, event: CommandEvent) -> None:
        for subscription in tuple(self._subscriptions):
            if subscription.matches(event):
                subscription.handler(event)

    def warn(self, event: WarningEvent) -> None:
        for handler in tuple(self._warning_handlers):
            handler(event)

    def on_warning(self, handler: WarningHandler) -> Callable[[], None]:
        """Register ``handler`` for :class:`WarningEvent`s. Returns a function removing it."""
        self._warning_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._warning_handlers:
                self._warning_handlers.remove(handler)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._subscriptions) + len(self._warning_handlers)

    def on_success(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, success=True)

    def on_fail(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, success=False)

    def on_query_success(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="query", success=True)

    def on_query_fail(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="query", success=False)

    def on_insert_success(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="insert", success=True)

    def on_insert_fail(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="insert", success=False)

    def on_update_success(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="update", success=True)

    def on_update_fail(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="update", success=False)

    def on_delete_success(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="delete", success=True)

    def on_delete_fail(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(handler, kind="delete", success=False)


_executor_events: weakref.WeakKeyDictionary[Any, CommandEvents] = weakref.WeakKeyDictionary()


def executor_events(executor: Any) -> CommandEvents:
    """Global subscriptions for every context sharing ``executor``."""
    events = _executor_events.get(executor)
    if events is None:
        events = _executor_events[executor] = CommandEvents()
    return events


def emit(event: CommandEvent, *registries: CommandEvents) -> None:
    logger.debug(
        "%s %s on %r: %s",
        event.kind,
        "succeeded" if event.succeeded else "failed",
        event.table,
        event.cmd_raw,
    )
    for registry in registries:
        registry.emit(event)


def emit_warning(event: WarningEvent, *registries: CommandEvents) -> None:
    logger.info("Warning on %r: %s", event.table, event.message)
    for registry in registries:
        registry.warn(event)
