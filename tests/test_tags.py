"""Tests for tag and keyword normalization."""

from homevault.tags import (
    ensure_tags_array,
    matches_all_tags,
    normalize_keywords,
    normalize_tags,
    parse_tags_input,
    tokenize,
)


class TestNormalizeTags:
    def test_trims_and_strips_hashes(self):
        assert normalize_tags(["  work ", "##home", "#"]) == ["work", "home"]

    def test_case_insensitive_dedup_keeps_first_spelling(self):
        assert normalize_tags(["Bank", "bank", "BANK", "tax"]) == ["Bank", "tax"]

    def test_drops_non_strings(self):
        assert normalize_tags(["a", 3, None, "b"]) == ["a", "b"]

    def test_none(self):
        assert normalize_tags(None) == []


class TestParseTagsInput:
    def test_ascii_and_fullwidth_separators(self):
        assert parse_tags_input("work, #Home；bank、tax\ntravel") == ["work", "Home", "bank", "tax", "travel"]

    def test_non_string(self):
        assert parse_tags_input(None) == []
        assert parse_tags_input(42) == []

    def test_ensure_tags_array(self):
        assert ensure_tags_array("a,b") == []
        assert ensure_tags_array(["a", "A"]) == ["a"]


class TestMatchesAllTags:
    def test_every_required_tag(self):
        assert matches_all_tags(["Work", "bank"], ["work"])
        assert matches_all_tags(["Work", "bank"], ["BANK", "#work"])
        assert not matches_all_tags(["Work"], ["work", "bank"])

    def test_no_requirement_matches_everything(self):
        assert matches_all_tags([], [])
        assert matches_all_tags(None, [" "])

    def test_untagged_item_never_matches_a_requirement(self):
        assert not matches_all_tags([], ["work"])


class TestKeywords:
    def test_normalize_keywords_preserves_order(self):
        assert normalize_keywords([" b", "a", "b", "", 7]) == ["b", "a"]

    def test_tokenize(self):
        assert tokenize("My Bank - Online_Login 2024") == ["my", "bank", "online", "login", "2024"]
        assert tokenize(None) == []
