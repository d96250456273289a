from __future__ import annotations

import pytest

from sqla_contexts.datastructures import frozendict


@pytest.fixture
def track_keys() -> frozendict[str, str]:
    return frozendict(Album="AlbumId", Genre="GenreId")


class TestFrozendictInit:
    def test_from_mapping_pairs_and_keywords(self) -> None:
        assert frozendict({"TrackId": 1}) == frozendict([("TrackId", 1)]) == frozendict(TrackId=1)

    def test_empty(self) -> None:
        assert len(frozendict()) == 0
        assert not frozendict()

    def test_keeps_insertion_order(self) -> None:
        columns = frozendict([("TrackId", 0), ("Name", 1), ("AlbumId", 2)])

        assert list(columns) == ["TrackId", "Name", "AlbumId"]


class TestFrozendictImmutability:
    def test_no_item_assignment(self, track_keys: frozendict[str, str]) -> None:
        with pytest.raises(TypeError):
            track_keys["Album"] = "ArtistId"  # type: ignore[index]

    def test_no_item_deletion(self, track_keys: frozendict[str, str]) -> None:
        with pytest.raises(TypeError):
            del track_keys["Album"]  # type: ignore[attr-defined]


class TestFrozendictHash:
    def test_order_does_not_change_hash(self) -> None:
        assert hash(frozendict(Album=1, Genre=2)) == hash(frozendict(Genre=2, Album=1))

    def test_nested_frozendicts_are_cache_keys(self) -> None:
        tree = frozendict(Album=frozendict(Artist=frozendict()))
        cache = {tree: "Album.Artist"}

        assert cache[frozendict(Album=frozendict(Artist=frozendict()))] == "Album.Artist"

    def test_unhashable_values_fail_only_when_hashed(self) -> None:
        rows = frozendict(Tracks=[15, 16])

        assert rows["Tracks"] == [15, 16]
        with pytest.raises(TypeError):
            hash(rows)


class TestFrozendictEquality:
    def test_compares_with_dicts(self, track_keys: frozendict[str, str]) -> None:
        assert track_keys == {"Album": "AlbumId", "Genre": "GenreId"}
        assert track_keys != frozendict(Album="AlbumId")

    def test_not_equal_to_other_types(self, track_keys: frozendict[str, str]) -> None:
        assert track_keys != list(track_keys.items())


class TestFrozendictDerive:
    def test_set_adds_without_touching_receiver(self, track_keys: frozendict[str, str]) -> None:
        wider = track_keys.set("Artist", "Composer")

        assert list(wider) == ["Album", "Genre", "Artist"]
        assert "Artist" not in track_keys

    def test_set_keeps_position_of_replaced_key(self, track_keys: frozendict[str, str]) -> None:
        assert list(track_keys.set("Album", "Title").items()) == [("Album", "Title"), ("Genre", "GenreId")]
        assert track_keys["Album"] == "AlbumId"

    def test_merge_prefers_other(self, track_keys: frozendict[str, str]) -> None:
        merged = track_keys.merge({"Genre": "Name", "MediaType": "MediaTypeId"})

        assert merged == {"Album": "AlbumId", "Genre": "Name", "MediaType": "MediaTypeId"}
        assert isinstance(merged, frozendict)

    def test_thaw_is_detached(self, track_keys: frozendict[str, str]) -> None:
        thawed = track_keys.thaw()
        thawed["Album"] = "Title"

        assert track_keys["Album"] == "AlbumId"


def test_repr(track_keys: frozendict[str, str]) -> None:
    assert repr(track_keys) == "<frozendict {'Album': 'AlbumId', 'Genre': 'GenreId'}>"
