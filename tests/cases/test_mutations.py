from __future__ import annotations

import pytest

from sqla_contexts import SqlaExecutor, TableContext
from sqla_contexts.exceptions import ContextSyntaxError, DescribeError, InsertError


pytestmark = pytest.mark.anyio


@pytest.fixture
async def identity_ctx(executor: SqlaExecutor) -> TableContext:
    return await TableContext.create(executor, "TestTableIdentity")


@pytest.fixture
async def plain_ctx(executor: SqlaExecutor) -> TableContext:
    return await TableContext.create(executor, "TestTable", allow_truncation=True, allow_update_all=True)


class TestInsert:
    async def test_identity_is_set(self, identity_ctx: TableContext, db_backend: str) -> None:
        record = await identity_ctx.insert_one({"StringCol": "AC/DC", "NumberCol": 1})

        assert isinstance(record["Id"], int)
        if db_backend == "sqlite":
            assert record["Id"] == 1
        [stored] = await identity_ctx.where(lambda m: m["Id"].eq(record["Id"])).select()
        assert stored["StringCol"] == "AC/DC"

    async def test_many_get_consecutive_ids(self, identity_ctx: TableContext) -> None:
        records = await identity_ctx.insert_many(
            [{"StringCol": "Go Down"}, {"StringCol": "Dog Eat Dog"}, {"StringCol": "Overdose"}]
        )

        ids = [record["Id"] for record in records]
        assert ids == list(range(ids[0], ids[0] + 3))
        stored = await identity_ctx.where(lambda m: m["Id"].in_(ids)).sort_by(lambda m: m["Id"]).select()
        assert [row["StringCol"] for row in stored] == ["Go Down", "Dog Eat Dog", "Overdose"]

    async def test_missing_keys_are_null(self, plain_ctx: TableContext) -> None:
        await plain_ctx.insert_many(
            [
                {"StringCol": "a", "NumberCol": 1},
                {"StringCol": "b", "BoolCol": True, "BigIntCol": 2**40},
            ]
        )

        rows = await plain_ctx.sort_by(lambda m: m["StringCol"]).select()
        assert [(row["NumberCol"], row["BigIntCol"]) for row in rows] == [(1, None), (None, 2**40)]
        assert rows[0]["BoolCol"] is None
        assert bool(rows[1]["BoolCol"])

    async def test_relationship_data_is_not_inserted(self, track_ctx: TableContext) -> None:
        record = await track_ctx.insert_one(
            {"Name": "Shoot to Thrill", "Milliseconds": 317492, "Album": {"Title": "Back in Black"}}
        )

        [stored] = await track_ctx.where(lambda m: m["TrackId"].eq(record["TrackId"])).select()
        assert stored["Name"] == "Shoot to Thrill"
        assert stored["AlbumId"] is None

    async def test_constraint_violation(self, plain_ctx: TableContext) -> None:
        with pytest.raises(InsertError) as exc_info:
            await plain_ctx.insert_one({"NumberCol": 1})

        assert exc_info.value.__cause__ is not None
        assert "INSERT INTO" in exc_info.value.cmd_raw


class TestUpdate:
    async def test_update_matching_rows(self, track_ctx: TableContext) -> None:
        updated = await track_ctx.where(
            lambda m: m["Composer"].eq("AC/DC").and_(lambda m: m["Bytes"].gt(12000000))
        ).update({"GenreId": 2})

        assert updated == 2
        moved = await track_ctx.where(lambda m: m["GenreId"].eq(2).and_(lambda m: m["Composer"].eq("AC/DC"))).select()
        assert sorted(track["Name"] for track in moved) == ["Let There Be Rock", "Overdose"]

    async def test_update_without_filter_is_refused(self, track_ctx: TableContext) -> None:
        with pytest.raises(ContextSyntaxError):
            await track_ctx.update({"GenreId": 2})

        assert await track_ctx.where(lambda m: m["GenreId"].eq(2)).count() == 2

    async def test_update_all(self, plain_ctx: TableContext) -> None:
        await plain_ctx.insert_many([{"StringCol": "a"}, {"StringCol": "b"}])

        assert await plain_ctx.update_all({"NumberCol": 7}) == 2
        assert {row["NumberCol"] for row in await plain_ctx.select()} == {7}

    async def test_update_records_by_primary_key(self, track_ctx: TableContext) -> None:
        updated = await track_ctx.update([{"TrackId": 15, "Bytes": 1}, {"TrackId": 16, "Bytes": 2, "Name": "Dog Eat Dog!"}])

        assert updated == 2
        tracks = await track_ctx.where(lambda m: m["TrackId"].in_([15, 16])).sort_by(lambda m: m["TrackId"]).select()
        assert [(track["Name"], track["Bytes"]) for track in tracks] == [("Go Down", 1), ("Dog Eat Dog!", 2)]



class TestDelete:
    async def test_delete_matching_rows(self, track_ctx: TableContext, seed_data: dict[str, int]) -> None:
        deleted = await track_ctx.where(lambda m: m["Composer"].like("Wolfgang%")).delete()

        assert deleted == 2
        assert await track_ctx.count() == seed_data["tracks"] - 2

    async def test_delete_records(self, track_ctx: TableContext, seed_data: dict[str, int]) -> None:
        tracks = await track_ctx.where(lambda m: m["Composer"].eq("Jerry Cantrell")).select()

        assert await track_ctx.delete(tracks) == 3
        assert await track_ctx.where(lambda m: m["Composer"].eq("Jerry Cantrell")).count() == 0
        assert await track_ctx.count() == seed_data["tracks"] - 3

    async def test_delete_without_filter_is_refused(self, track_ctx: TableContext, seed_data: dict[str, int]) -> None:
        with pytest.raises(ContextSyntaxError):
            await track_ctx.delete()

        assert await track_ctx.count() == seed_data["tracks"]

    async def test_truncate(self, plain_ctx: TableContext) -> None:
        await plain_ctx.insert_many([{"StringCol": "a"}, {"StringCol": "b"}, {"StringCol": "c"}])

        assert await plain_ctx.truncate() == 3
        assert await plain_ctx.count() == 0


class TestDescribe:
    async def test_missing_table(self, executor: SqlaExecutor) -> None:
        with pytest.raises(DescribeError) as exc_info:
            await TableContext.create(executor, "Nope")

        assert exc_info.value.__cause__ is not None

    async def test_reflected_columns(self, identity_ctx: TableContext) -> None:
        schema = await identity_ctx.describe()

        assert list(schema) == ["Id", "StringCol", "NumberCol", "BoolCol", "BigIntCol"]
        assert schema["Id"].is_primary_key
        assert schema["Id"].is_auto_increment
        assert not schema["StringCol"].nullable


class TestCompositePrimaryKey:
    @pytest.fixture
    async def playlist_ids(self, executor: SqlaExecutor, seed_data: dict[str, int]) -> list[int]:
        playlists = await TableContext.create(executor, "Playlist")
        records = await playlists.insert_many([{"Name": "Music"}, {"Name": "Grunge"}])
        return [record["PlaylistId"] for record in records]

    @pytest.fixture
    async def lines_ctx(self, executor: SqlaExecutor, playlist_ids: list[int]) -> TableContext:
        lines = await TableContext.create(executor, "PlaylistTrack")
        await lines.insert_many(
            [{"PlaylistId": playlist_id, "TrackId": track_id} for playlist_id in playlist_ids for track_id in (15, 16, 51)]
        )
        return lines

    async def test_rows_sharing_a_key_column_are_kept(self, lines_ctx: TableContext, playlist_ids: list[int]) -> None:
        lines = await lines_ctx.where(lambda m: m["PlaylistId"].eq(playlist_ids[0])).select()

        assert sorted(line["TrackId"] for line in lines) == [15, 16, 51]

    async def test_delete_records_removes_only_those_rows(self, lines_ctx: TableContext, playlist_ids: list[int]) -> None:
        music, grunge = playlist_ids

        deleted = await lines_ctx.delete([{"PlaylistId": music, "TrackId": 16}, {"PlaylistId": grunge, "TrackId": 51}])

        assert deleted == 2
        remaining = await lines_ctx.sort_by(lambda m: [m["PlaylistId"], m["TrackId"]]).select()
        assert [(line["PlaylistId"], line["TrackId"]) for line in remaining] == [
            (music, 15),
            (music, 51),
            (grunge, 15),
            (grunge, 16),
        ]

    async def test_delete_records_needs_every_key_column(self, lines_ctx: TableContext, playlist_ids: list[int]) -> None:
        with pytest.raises(ContextSyntaxError):
            await lines_ctx.delete([{"PlaylistId": playlist_ids[0]}])

        assert await lines_ctx.count() == 6
