from __future__ import annotations

import pytest

from sqla_contexts import CommandEvent, TableContext, WarningEvent, executor_events
from sqla_contexts.events import CommandEvents
from sqla_contexts.exceptions import DescribeError, InsertError, QueryError
from sqla_contexts.sql import Command

from ..fakes import RecordingExecutor


pytestmark = pytest.mark.anyio


@pytest.fixture
async def track(fake_executor: RecordingExecutor) -> TableContext:
    return await TableContext.create(fake_executor, "Track")


def command(kind: str = "query") -> Command:
    return Command(text="SELECT 1", args=(), raw="SELECT 1", kind=kind, table="Track")  # type: ignore[arg-type]


class TestCommandEvents:
    def test_filters_by_kind_and_outcome(self) -> None:
        events = CommandEvents()
        seen: list[str] = []
        events.on_query_success(lambda e: seen.append("query ok"))
        events.on_insert_fail(lambda e: seen.append("insert failed"))
        events.on_fail(lambda e: seen.append("failed"))

        events.emit(CommandEvent.from_command(command("count"), affected_rows=None))
        events.emit(CommandEvent.from_command(command("insert"), error=RuntimeError("boom")))

        assert seen == ["query ok", "insert failed", "failed"]

    def test_unsubscribe(self) -> None:
        events = CommandEvents()
        seen: list[CommandEvent] = []
        unsubscribe = events.on_success(seen.append)

        unsubscribe()
        unsubscribe()
        events.emit(CommandEvent.from_command(command()))

        assert seen == []
        assert len(events) == 0

    def test_event_fields(self) -> None:
        event = CommandEvent.from_command(command("delete"), affected_rows=3)

        assert event.kind == "delete"
        assert event.succeeded
        assert event.affected_rows == 3
        assert event.date_iso.endswith("+00:00")


class TestContextEvents:
    async def test_success(self, track: TableContext, fake_executor: RecordingExecutor) -> None:
        events: list[CommandEvent] = []
        track.events.on_query_success(events.append)
        fake_executor.rows = [{"TrackId": 15}, {"TrackId": 16}]

        await track.where(lambda m: m["Composer"].equals("AC/DC")).select()

        [event] = events
        assert event.table == "Track"
        assert event.cmd_sanitized.endswith("WHERE Track.Composer = ?")
        assert event.cmd_raw.endswith("WHERE Track.Composer = 'AC/DC'")
        assert event.args == ("AC/DC",)
        assert event.affected_rows == 2
        assert event.error is None

    async def test_forks_share_subscriptions(self, track: TableContext) -> None:
        events: list[CommandEvent] = []
        track.events.on_insert_success(events.append)

        await track.where(lambda m: m["TrackId"].equals(1)).insert_one({"Name": "x", "Milliseconds": 1})

        assert [event.kind for event in events] == ["insert"]
        assert events[0].affected_rows == 1

    async def test_separate_lineages_do_not_share(self, track: TableContext, fake_executor: RecordingExecutor) -> None:
        other = await TableContext.create(fake_executor, "Track")
        events: list[CommandEvent] = []
        other.events.on_success(events.append)

        await track.select()

        assert events == []

    async def test_executor_events_are_global(self, fake_executor: RecordingExecutor) -> None:
        events: list[CommandEvent] = []
        executor_events(fake_executor).on_delete_success(events.append)
        tracks = await TableContext.create(fake_executor, "Track")
        genres = await TableContext.create(fake_executor, "Genre")

        await tracks.where(lambda m: m["TrackId"].equals(1)).delete()
        await genres.where(lambda m: m["GenreId"].equals(1)).delete()

        assert [event.table for event in events] == ["Track", "Genre"]


class TestWarningEvents:
    async def test_take_zero(self, track: TableContext) -> None:
        warned: list[WarningEvent] = []
        track.events.on_warning(warned.append)

        with pytest.warns(UserWarning, match="take\\(0\\)"):
            track.where(lambda m: m["TrackId"].equals(1)).take(0)

        [event] = warned
        assert event.table == "Track"
        assert "take(0)" in event.message
        assert event.date_iso.endswith("+00:00")

    async def test_executor_subscribers_are_warned(self, track: TableContext, fake_executor: RecordingExecutor) -> None:
        warned: list[WarningEvent] = []
        executor_events(fake_executor).on_warning(warned.append)

        with pytest.warns(UserWarning):
            track.take("0")

        assert [event.table for event in warned] == ["Track"]

    async def test_unsubscribe(self, track: TableContext) -> None:
        warned: list[WarningEvent] = []
        unsubscribe = track.events.on_warning(warned.append)
        unsubscribe()

        with pytest.warns(UserWarning):
            track.take(0)

        assert warned == []
        assert len(track.events) == 0


class TestFailures:
    async def test_query_error_wraps_driver_error(self, track: TableContext, fake_executor: RecordingExecutor) -> None:
        failures: list[CommandEvent] = []
        track.events.on_query_fail(failures.append)
        error = RuntimeError("connection reset")
        fake_executor.error = error

        with pytest.raises(QueryError) as exc_info:
            await track.where(lambda m: m["Composer"].equals("AC/DC")).select()

        assert exc_info.value.__cause__ is error
        assert exc_info.value.error is error
        assert exc_info.value.table == "Track"
        assert exc_info.value.cmd_args == ("AC/DC",)
        assert exc_info.value.cmd_raw.endswith("'AC/DC'")
        [failure] = failures
        assert failure.error is error
        assert not failure.succeeded

    async def test_insert_error(self, track: TableContext, fake_executor: RecordingExecutor) -> None:
        fake_executor.error = RuntimeError("duplicate key")

        with pytest.raises(InsertError):
            await track.insert_one({"Name": "x", "Milliseconds": 1})

    async def test_describe_error(self, fake_executor: RecordingExecutor) -> None:
        with pytest.raises(DescribeError) as exc_info:
            await TableContext.create(fake_executor, "Nope")

        assert isinstance(exc_info.value.__cause__, LookupError)

    async def test_failed_describe_fails_every_fork(self, fake_executor: RecordingExecutor) -> None:
        ctx = TableContext(fake_executor, "Nope")

        with pytest.raises(DescribeError):
            await ctx.where(lambda m: m["Id"].equals(1)).select()
        with pytest.raises(DescribeError):
            await ctx.count()
