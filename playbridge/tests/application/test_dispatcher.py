import random
import threading

import pytest

from playbridge.application.coordinator import SearchCoordinator
from playbridge.application.dispatcher import (
    AUTH_FAILED_NOTE,
    CONNECT_NOTE,
    NO_DEVICE_NOTE,
    REQUEST_FAILED_NOTE,
    CommandDispatcher,
    compute_seek_position,
    compute_volume,
)
from playbridge.application.history import PlayHistory
from playbridge.application.ranking import RelevanceRanker
from playbridge.application.search import CandidateSearchEngine
from playbridge.domain.entities import ActionRequest, PlaybackSnapshot, TrackRef
from playbridge.domain.errors import (
    AuthError,
    NoActiveDeviceError,
    RateLimited,
    TransientNetworkError,
    ValidationError,
)
from playbridge.tests.fakes import (
    FakeMusicService,
    RecordingHost,
    playing_snapshot,
    search_payload,
    track_item,
)


class FirstChoice:
    def choice(self, seq):
        return seq[0]


class TestComputeVolume:
    """Tests for volume arithmetic."""

    def test_decrease(self):
        """Test decrease subtracts the step."""
        assert compute_volume("decrease", 15, 40) == 25

    def test_decrease_clamps_at_zero(self):
        """Test a large decrease clamps to 0."""
        assert compute_volume("decrease", 999, 40) == 0

    def test_increase_clamps_at_hundred(self):
        """Test a large increase clamps to 100."""
        assert compute_volume("increase", 80, 40) == 100

    def test_default_step_and_unknown_current(self):
        """Test missing step is 10 and unknown volume counts as 50."""
        assert compute_volume("increase", None, None) == 60

    def test_set_is_absolute(self):
        """Test set ignores the current level."""
        assert compute_volume("set", 70, 10) == 70
        assert compute_volume("set", -5, 10) == 0

    def test_unknown_mode(self):
        """Test an unknown mode raises ValidationError."""
        with pytest.raises(ValidationError):
            compute_volume("shout", 10, 40)


class TestComputeSeekPosition:
    """Tests for seek arithmetic."""

    def test_backward_clamps_at_zero(self):
        """Test seeking back past the start lands on 0."""
        assert compute_seek_position("backward", 9999, 5000, 200000) == 0

    def test_forward_default(self):
        """Test forward without a value moves 10 seconds."""
        assert compute_seek_position("forward", None, 5000, 200000) == 15000

    def test_forward_clamps_at_duration(self):
        """Test seeking past the end lands on the duration."""
        assert compute_seek_position("forward", 999, 5000, 200000) == 200000

    def test_to_time_and_percent(self):
        """Test absolute targets."""
        assert compute_seek_position("to_time", 30, 5000, 200000) == 30000
        assert compute_seek_position("to_percent", 25, 5000, 200000) == 50000
        assert compute_seek_position("middle", None, 5000, 200000) == 100000

    def test_to_time_requires_value(self):
        """Test absolute targets without a value are rejected."""
        with pytest.raises(ValidationError):
            compute_seek_position("to_time", None, 5000, 200000)
        with pytest.raises(ValidationError):
            compute_seek_position("to_percent", None, 5000, 200000)

    def test_unknown_target(self):
        """Test an unknown target is rejected."""
        with pytest.raises(ValidationError):
            compute_seek_position("sideways", 1, 5000, 200000)


class TestCommandDispatcher:
    """Tests for action handling and notes."""

    def setup_method(self):
        """Set up test fixtures."""
        self.service = FakeMusicService(search_results={
            "track": search_payload("track", [
                track_item("Bohemian Rhapsody", "spotify:track:rhapsody", ("Queen",), "A Night at the Opera"),
            ]),
        })
        self.host = RecordingHost()
        self.history = PlayHistory()
        self.coordinator = SearchCoordinator(
            self.service,
            engine=CandidateSearchEngine(self.service),
            ranker=RelevanceRanker(self.history, rng=FirstChoice()),
            history=self.history,
        )
        self.snapshot = playing_snapshot()
        self.dispatcher = CommandDispatcher(
            self.service,
            self.coordinator,
            self.host,
            snapshot_provider=lambda: self.snapshot,
            special_playlists={"discover weekly": "dw123", "daily mix 2": "dm2"},
            character_replies=False,
            rng=random.Random(7),
            session_id="test-session",
        )

    def _handle(self, verb, **arguments):
        return self.dispatcher.handle(ActionRequest(verb, arguments))

    def test_every_action_sends_exactly_one_note(self):
        """Test the returned note is the one sent to the host."""
        note = self._handle("skip_next")
        assert note == "Skipped to the next track."
        assert self.host.notes == [note]
        assert self.host.replies == 0

    def test_character_replies_trigger_reply(self):
        """Test reply requests follow each note when enabled."""
        self.dispatcher.character_replies = True
        self._handle("skip_previous")
        assert self.host.notes == ["Skipped to the previous track."]
        assert self.host.replies == 1

    def test_unknown_verb(self):
        """Test an unknown verb produces a note instead of raising."""
        assert self._handle("dance") == "Action 'dance' is not supported."
        assert self.service.calls == []

    def test_closed_dispatcher_drops_actions(self):
        """Test no note is sent after close."""
        self.dispatcher.close()
        assert self._handle("skip_next") is None
        assert self.host.notes == []
        assert self.service.calls == []

    def test_spotify_connect(self):
        """Test the connect instructions."""
        assert self._handle("spotify_connect") == CONNECT_NOTE

    # Playback

    def test_toggle_pauses_when_playing(self):
        """Test toggle pauses an active player."""
        assert self._handle("toggle_playback") == "Playback toggled to: pause"
        assert self.service.calls == [("pause",)]

    def test_toggle_resumes_when_not_playing(self):
        """Test toggle resumes when paused or unknown."""
        self.snapshot = None
        assert self._handle("toggle_playback") == "Playback toggled to: play"
        assert self.service.calls == [("resume",)]

    def test_play_music(self):
        """Test the resolved target is played and recorded."""
        note = self._handle("play_music", name="bohemian rhapsody", type="track")

        assert note == "Playing track: Track: Bohemian Rhapsody by Queen (Album: A Night at the Opera)"
        assert self.service.calls == [("play", "spotify:track:rhapsody", "track")]
        assert "spotify:track:rhapsody" in self.history

    def test_play_music_invalid_type_falls_back_to_track(self):
        """Test an unknown type searches tracks."""
        note = self._handle("play_music", name="bohemian rhapsody", type="banana")
        assert note.startswith("Playing track:")

    def test_play_music_without_name(self):
        """Test a missing name is not identified."""
        assert self._handle("play_music", name="  ") == "Request not identified."
        assert self.service.searches == []

    def test_play_music_no_results(self):
        """Test nothing matching the type yields a note."""
        assert self._handle("play_music", name="bohemian rhapsody", type="album") == \
            "No matching results found to play."
        assert self.service.calls == []
        assert len(self.history) == 0

    def test_play_music_failed_play_not_recorded(self):
        """Test history is only recorded after a successful play."""
        self.service.control_error = NoActiveDeviceError("none")
        assert self._handle("play_music", name="bohemian rhapsody") == NO_DEVICE_NOTE
        assert len(self.history) == 0

    def test_queue_track(self):
        """Test a track is queued."""
        note = self._handle("queue_track", name="bohemian rhapsody")
        assert note == "Added to queue: Track: Bohemian Rhapsody by Queen (Album: A Night at the Opera)"
        assert self.service.calls == [("queue", "spotify:track:rhapsody")]

    def test_queue_track_no_results(self):
        """Test queueing an unknown name."""
        self.service.search_results = {}
        assert self._handle("queue_track", name="unknown song") == "No matching results found to queue."

    def test_play_random_music(self):
        """Test a top track is picked and played."""
        self.service.top = [TrackRef("spotify:track:top", "Top Song", ("Top Artist",))]
        note = self._handle("play_random_music")
        assert note == "Top Song by Top Artist has been selected based on your top tracks."
        assert self.service.calls == [("play", "spotify:track:top", "track")]

    def test_play_random_music_without_top_tracks(self):
        """Test an empty top list."""
        assert self._handle("play_random_music") == "No top tracks found to play randomly."

    def test_play_special_playlist(self):
        """Test loose names map to the configured playlist."""
        note = self._handle("play_special_playlist", name="my weekly discoveries")
        assert note == "Playing your playlist: my weekly discoveries"
        assert self.service.calls == [("play", "spotify:playlist:dw123", "playlist")]

    def test_play_special_daily_mix_number(self):
        """Test the daily mix number selects the playlist."""
        self._handle("play_special_playlist", name="Daily Mix 2")
        assert self.service.calls == [("play", "spotify:playlist:dm2", "playlist")]

    def test_play_special_playlist_unknown(self):
        """Test a name without a stored id."""
        assert self._handle("play_special_playlist", name="chill vibes") == \
            "No stored ID for 'chill vibes'. Please add it in the configuration."

    def test_play_special_playlist_missing_name(self):
        """Test a missing name."""
        assert self._handle("play_special_playlist") == "Special playlist name not provided."

    # Volume

    def test_volume_decrease(self):
        """Test decrease from the monitor's volume."""
        assert self._handle("volume", type="decrease", value="15") == "Volume changed to 25%."
        assert self.service.calls == [("set_volume", 25)]

    def test_volume_decrease_clamped(self):
        """Test decrease never goes below 0."""
        assert self._handle("volume", type="decrease", value="999") == "Volume changed to 0%."

    def test_volume_default_step(self):
        """Test increase without a value uses 10."""
        assert self._handle("volume", type="increase") == "Volume changed to 50%."

    def test_volume_decimal_truncated(self):
        """Test a decimal value is truncated."""
        assert self._handle("volume", type="set", value="7.9") == "Volume changed to 7%."

    def test_volume_unknown_current_level(self):
        """Test an unknown level counts as 50."""
        self.snapshot = playing_snapshot(volume_percent=None)
        assert self._handle("volume", type="increase", value="5") == "Volume changed to 55%."

    def test_volume_invalid_type(self):
        """Test an invalid change type."""
        assert self._handle("volume", type="loud") == \
            "Invalid volume change type. Please use 'set', 'increase', or 'decrease'."
        assert self.service.calls == []

    def test_volume_missing_type(self):
        """Test a missing change type."""
        assert self._handle("volume", value="5") == "Volume change type not specified."

    def test_volume_without_device(self):
        """Test no device known."""
        self.snapshot = PlaybackSnapshot.empty()
        assert self._handle("volume", type="set", value="30") == \
            "No active Spotify device found to change volume."

    # Seek

    def test_seek_backward_clamped(self):
        """Test seeking far back lands at the start."""
        assert self._handle("seek_playback", target="backward", value="9999") == \
            "Playback position updated to 00:00."
        assert self.service.calls == [("seek", 0)]

    def test_seek_to_percent(self):
        """Test percent seek."""
        assert self._handle("seek_playback", target="to_percent", value="50") == \
            "Playback position updated to 01:40."

    def test_seek_to_time_without_value(self):
        """Test to_time requires a value."""
        assert self._handle("seek_playback", target="to_time") == \
            "Please specify a time in seconds to seek to."
        assert self.service.calls == []

    def test_seek_without_track(self):
        """Test seek with nothing playing."""
        self.snapshot = PlaybackSnapshot.empty()
        assert self._handle("seek_playback", target="forward") == \
            "No track is currently playing to seek within."

    def test_seek_missing_and_invalid_target(self):
        """Test missing and unknown targets."""
        assert self._handle("seek_playback") == "Seek target not specified."
        assert self._handle("seek_playback", target="sideways").startswith("Invalid seek target.")

    # Modes

    def test_repeat_default(self):
        """Test repeat without a mode repeats the track."""
        assert self._handle("repeat_mode") == "Repeat mode set to: track"
        assert self.service.calls == [("set_repeat", "track")]

    def test_repeat_context(self):
        """Test an explicit repeat mode."""
        assert self._handle("repeat_mode", mode="Context") == "Repeat mode set to: context"

    def test_shuffle_on(self):
        """Test shuffle on passes True."""
        assert self._handle("shuffle_mode", mode="on") == "Shuffle mode set to: on"
        assert self.service.calls == [("set_shuffle", True)]

    def test_shuffle_invalid_defaults_off(self):
        """Test an invalid shuffle mode turns shuffle off."""
        assert self._handle("shuffle_mode", mode="sometimes") == "Shuffle mode set to: off"
        assert self.service.calls == [("set_shuffle", False)]

    # Library

    def test_add_to_favorites(self):
        """Test the current track is saved."""
        assert self._handle("add_to_favorites") == "Track 'Song by Artist' added to your Favorites."
        assert self.service.calls == [("save_tracks", ["t1"])]

    def test_add_to_favorites_nothing_playing(self):
        """Test favorites without a track."""
        self.snapshot = None
        assert self._handle("add_to_favorites") == "No track is currently playing."

    def test_get_playlists(self):
        """Test playlists are listed by name."""
        self.service.playlists = {"Road Trip": "spotify:playlist:rt", "Chill": "spotify:playlist:ch"}
        assert self._handle("get_playlists") == "Available playlists: Road Trip, Chill"

    def test_get_playlists_empty(self):
        """Test no playlists."""
        assert self._handle("get_playlists") == "No playlists available."

    def test_add_to_playlist(self):
        """Test the current track is added to the matched playlist."""
        self.service.playlists = {"Road Trip": "spotify:playlist:rt", "Chill": "spotify:playlist:ch"}
        note = self._handle("add_to_playlist", playlist="road")
        assert note == "Track 'Song by Artist' added to playlist 'Road Trip'."
        assert self.service.calls == [("add_to_playlist", "rt", ["spotify:track:t1"])]

    def test_add_to_playlist_suggestions(self):
        """Test close names are suggested."""
        self.service.playlists = {"Road Trip": "spotify:playlist:rt", "Chill": "spotify:playlist:ch"}
        assert self._handle("add_to_playlist", playlist="chilll") == "Did you mean: Chill?"

    def test_add_to_playlist_not_found(self):
        """Test an unknown playlist."""
        self.service.playlists = {"Road Trip": "spotify:playlist:rt"}
        assert self._handle("add_to_playlist", playlist="Metal") == "Playlist not found: Metal"

    def test_add_to_playlist_missing_name(self):
        """Test a missing playlist name."""
        assert self._handle("add_to_playlist") == "No playlist specified."

    # Devices

    def test_list_devices(self):
        """Test devices are listed by name."""
        self.service.devices = {"Laptop": "d1", "Kitchen Speaker": "d2"}
        assert self._handle("list_devices") == "Available devices: Laptop, Kitchen Speaker"

    def test_list_devices_empty(self):
        """Test no devices."""
        assert self._handle("list_devices") == "No devices available."

    def test_transfer_to_device(self):
        """Test playback moves to the matched device."""
        self.service.devices = {"Laptop": "d1", "Kitchen Speaker": "d2"}
        assert self._handle("transfer_to_device", device="kitchen") == \
            "Playback transferred to: Kitchen Speaker"
        assert self.service.calls == [("transfer_playback", "d2")]

    def test_transfer_to_unknown_device(self):
        """Test no matching device."""
        self.service.devices = {"Laptop": "d1"}
        assert self._handle("transfer_to_device", device="Bathroom") == "No device found matching: Bathroom"

    # Error mapping

    def test_auth_error_note(self):
        """Test rejected credentials become a reconnect note."""
        self.service.search_errors["track"] = AuthError("expired")
        assert self._handle("play_music", name="bohemian rhapsody") == AUTH_FAILED_NOTE

    def test_rate_limited_note(self):
        """Test rate limiting tells the user how long to wait."""
        self.service.control_error = RateLimited(retry_after_ms=3000)
        assert self._handle("skip_next") == "Spotify is busy right now. Please try again in 3 seconds."

    def test_transient_error_note(self):
        """Test a generic failure note."""
        self.service.control_error = TransientNetworkError("boom")
        assert self._handle("skip_next") == REQUEST_FAILED_NOTE

    def test_actions_are_serialized(self):
        """Test concurrent actions each produce one note."""
        threads = [threading.Thread(target=self._handle, args=("skip_next",)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(self.host.notes) == 8
        assert len(self.service.calls) == 8
