"""Basic sqla-contexts usage examples.

Demonstrates declaring relationships, filtering, includes, grouping,
pagination and mutations on a Chinook-shaped database.

NOTE: This file is illustrative; it expects a Chinook database at
``chinook.db``.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import create_async_engine

from sqla_contexts import CommandEvent, SqlaExecutor, TableContext


# ── 1. Create a context once at startup ─────────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///chinook.db")
executor = SqlaExecutor(engine)


async def setup() -> TableContext:
    tracks = await TableContext.create(executor, "Track", allow_truncation=False)
    tracks.has_one("Album").with_keys("AlbumId", "AlbumId").and_that_has_one(
        "Artist", lambda r: r.with_keys("ArtistId", "ArtistId")
    )
    tracks.has_one("Genre").with_keys("GenreId", "GenreId")
    tracks.events.on_fail(lambda event: print(f"{event.kind} failed: {event.cmd_raw}"))
    return tracks


# ── 2. Filtering and sorting ────────────────────────────────────────


async def get_acdc_tracks(tracks: TableContext) -> list[dict[str, Any]]:
    return await (
        tracks.where(lambda m: m["Composer"].equals("AC/DC").and_(lambda m: m["Bytes"].gt(7032162)))
        .sort_by(lambda m: m["Bytes"].desc())
        .select()
    )


# ── 3. Includes ─────────────────────────────────────────────────────


async def get_tracks_with_artist(tracks: TableContext) -> list[dict[str, Any]]:
    return await (
        tracks.include(lambda r: r["Album"])
        .then_include(lambda r: r["Artist"])
        .where(lambda m: m["Album"]["Artist"]["Name"].eq("AC/DC"))
        .select()
    )


async def get_albums_page(page: int, size: int = 10) -> list[dict[str, Any]]:
    albums = await TableContext.create(executor, "Album")
    albums.has_many("Tracks").from_table("Track").with_keys("AlbumId", "AlbumId")
    # LIMIT applies to albums, never to their tracks
    return await albums.include(lambda r: r["Tracks"]).sort_by(lambda m: m["AlbumId"]).take(size).skip(page * size).select()


# ── 4. Grouping ─────────────────────────────────────────────────────


async def get_composer_stats(tracks: TableContext) -> list[dict[str, Any]]:
    return await (
        tracks.where(lambda m: m["Composer"].not_equals(None))
        .group_by(lambda m, agg: [m["Composer"], agg.total(), agg.avg(m["Milliseconds"])])
        .sort_by(lambda m: m["Composer"])
        .select()
    )


# ── 5. Mutations ────────────────────────────────────────────────────


async def add_and_remove(tracks: TableContext) -> CommandEvent | None:
    deleted: list[CommandEvent] = []
    tracks.events.on_delete_success(deleted.append)

    record = await tracks.insert_one({"Name": "Shoot to Thrill", "Milliseconds": 317492, "GenreId": 1})
    await tracks.where(lambda m: m["TrackId"].eq(record["TrackId"])).update({"Composer": "AC/DC"})
    await tracks.delete([record])
    return deleted[0] if deleted else None
