"""Tests for slash-path navigation over nested JSON."""

from homedash.remote.tree import get_at, overlaps, remove_at, set_at, split_path


class TestPaths:
    def test_split_ignores_extra_slashes(self):
        assert split_path("/devices//A/data/") == ["devices", "A", "data"]

    def test_split_root(self):
        assert split_path("") == []
        assert split_path("/") == []


class TestGetAt:
    def test_nested_dict_and_list(self):
        tree = {"devices": {"A": {"data": {"relays": [{"state": True}]}}}}
        assert get_at(tree, split_path("devices/A/data/relays/0/state")) is True

    def test_missing_segment(self):
        assert get_at({"a": {}}, ["a", "b", "c"]) is None

    def test_list_out_of_range(self):
        assert get_at([1, 2], ["5"]) is None


class TestSetAt:
    def test_creates_intermediate_dicts(self):
        assert set_at(None, ["a", "b"], 1) == {"a": {"b": 1}}

    def test_replaces_list_element(self):
        tree = {"relays": [{"state": False}, {"state": False}]}
        set_at(tree, ["relays", "1", "state"], True)
        assert tree["relays"][1]["state"] is True
        assert isinstance(tree["relays"], list)

    def test_appends_at_list_end(self):
        assert set_at([1], ["1"], 2) == [1, 2]

    def test_sparse_list_index_becomes_dict(self):
        assert set_at([1], ["3"], 4) == {"0": 1, "3": 4}

    def test_scalar_in_the_way_is_replaced(self):
        assert set_at({"a": 5}, ["a", "b"], 1) == {"a": {"b": 1}}

    def test_none_removes(self):
        assert set_at({"a": 1, "b": 2}, ["a"], None) == {"b": 2}


class TestRemoveAt:
    def test_prunes_empty_parents(self):
        assert remove_at({"a": {"b": 1}}, ["a", "b"]) is None

    def test_missing_is_noop(self):
        tree = {"a": 1}
        assert remove_at(tree, ["x", "y"]) == {"a": 1}

    def test_root(self):
        assert remove_at({"a": 1}, []) is None


class TestOverlaps:
    def test_descendant_write(self):
        assert overlaps(["devices"], ["devices", "A", "data"]) is True

    def test_ancestor_write(self):
        assert overlaps(["devices", "A"], ["devices"]) is True

    def test_sibling(self):
        assert overlaps(["devices"], ["users", "u1"]) is False
