import logging

import pytest

from playbridge.application.arguments import (
    ACTION_CATALOG,
    ChoiceArg,
    parse_arguments,
)
from playbridge.domain.errors import UnsupportedActionError


class TestActionCatalog:
    """Tests for the action catalog."""

    def test_catalog_verbs(self):
        """Test every supported verb is declared."""
        assert set(ACTION_CATALOG) == {
            "toggle_playback", "spotify_connect", "play_music", "queue_track",
            "play_random_music", "play_special_playlist", "volume", "seek_playback",
            "skip_next", "skip_previous", "repeat_mode", "shuffle_mode",
            "add_to_favorites", "get_playlists", "add_to_playlist",
            "list_devices", "transfer_to_device",
        }

    def test_choice_fallback(self):
        """Test invalid choices use the fallback, else the default."""
        assert ChoiceArg("type", ("a", "b"), default=None, fallback="a").resolve_invalid() == "a"
        assert ChoiceArg("mode", ("a", "b"), default="b").resolve_invalid() == "b"


class TestParseArguments:
    """Tests for argument validation."""

    def test_unknown_verb(self):
        """Test unknown verbs are rejected."""
        with pytest.raises(UnsupportedActionError):
            parse_arguments("dance", {})

    def test_text_is_stripped(self):
        """Test text values are stripped and blanks become None."""
        parsed = parse_arguments("play_music", {"name": "  Queen  "})
        assert parsed.text("name") == "Queen"
        assert parse_arguments("play_music", {"name": "   "}).text("name") is None

    def test_choice_is_case_insensitive(self):
        """Test enum values are lowercased."""
        parsed = parse_arguments("play_music", {"name": "x", "type": "ALBUM"})
        assert parsed.text("type") == "album"
        assert not parsed.is_invalid("type")

    def test_missing_choice_uses_default(self):
        """Test a missing choice is not marked invalid."""
        parsed = parse_arguments("repeat_mode", None)
        assert parsed.get("mode") == "track"
        assert not parsed.is_invalid("mode")
        assert not parsed.was_provided("mode")

    def test_invalid_choice_is_logged(self, caplog):
        """Test an invalid choice falls back and warns."""
        with caplog.at_level(logging.WARNING):
            parsed = parse_arguments("play_music", {"name": "x", "type": "banana"})
        assert parsed.text("type") == "track"
        assert parsed.is_invalid("type")
        assert parsed.was_provided("type")
        assert "banana" in caplog.text

    @pytest.mark.parametrize("raw,expected", [
        ("15", 15),
        ("+5", 5),
        ("-20", -20),
        ("7.9", 7),
        ("-7.9", -7),
        (" 3 ", 3),
    ])
    def test_numbers(self, raw, expected):
        """Test integer and decimal parsing."""
        assert parse_arguments("volume", {"type": "set", "value": raw}).number("value") == expected

    @pytest.mark.parametrize("raw", ["ten", "1e3", "5%", "1.2.3"])
    def test_invalid_number_uses_default(self, raw):
        """Test malformed numbers fall back to the default."""
        parsed = parse_arguments("volume", {"type": "set", "value": raw})
        assert parsed.number("value") == 10
        assert parsed.is_invalid("value")

    def test_seek_value_has_no_default(self):
        """Test seek value stays None when missing."""
        assert parse_arguments("seek_playback", {"target": "forward"}).number("value") is None

    def test_unknown_keys_ignored(self):
        """Test keys outside the catalog entry are dropped."""
        parsed = parse_arguments("skip_next", {"foo": "bar"})
        assert dict(parsed.values) == {}
