import threading
import time

from playbridge.application.monitor import (
    CONNECTED_NOTE,
    DISCONNECTED_NOTE,
    PlaybackStateMonitor,
    PlayerState,
    build_context,
    build_flags,
    diff_snapshots,
    player_state_of,
)
from playbridge.domain.entities import PlaybackSnapshot
from playbridge.domain.errors import AuthError, TransientNetworkError
from playbridge.tests.fakes import FakeMusicService, RecordingHost, playing_snapshot


class TestStateHelpers:
    """Tests for the pure state helpers."""

    def test_player_state_of(self):
        """Test snapshots map to the three player states."""
        assert player_state_of(PlaybackSnapshot.empty()) is PlayerState.DISCONNECTED
        assert player_state_of(playing_snapshot()) is PlayerState.PLAYING
        assert player_state_of(playing_snapshot(is_playing=False)) is PlayerState.PAUSED

    def test_build_flags(self):
        """Test flag triples for each state."""
        assert build_flags(PlayerState.PLAYING) == ("spotify_connected", "!spotify_disconnected", "playing")
        assert build_flags(PlayerState.PAUSED) == ("spotify_connected", "!spotify_disconnected", "!playing")
        assert build_flags(PlayerState.DISCONNECTED) == ("!spotify_connected", "spotify_disconnected", "!playing")

    def test_build_context(self):
        """Test the now-playing description."""
        assert build_context(playing_snapshot()) == (
            "Song by Artist from the album Album (Released in 2001) (00:05/03:20) (Volume: 40)"
        )

    def test_build_context_omits_missing_parts(self):
        """Test album and year are left out when unknown."""
        snapshot = playing_snapshot(album_name=None, release_year=None, artist_names=("A", "B"))
        assert build_context(snapshot) == "Song by A, B (00:05/03:20) (Volume: 40)"

    def test_build_context_only_while_playing(self):
        """Test paused or trackless snapshots have no context."""
        assert build_context(playing_snapshot(is_playing=False)) is None
        assert build_context(playing_snapshot(track_uri=None, duration_ms=None)) is None

    def test_first_poll_diff(self):
        """Test no previous snapshot counts as a connection change."""
        diff = diff_snapshots(None, PlaybackSnapshot.empty())
        assert diff.connection_changed is True
        assert diff.any is True

    def test_identical_snapshots_no_diff(self):
        """Test identical snapshots produce no change."""
        assert diff_snapshots(playing_snapshot(), playing_snapshot()).any is False

    def test_position_threshold(self):
        """Test progress changes within the threshold are noise."""
        base = playing_snapshot(progress_ms=5000)
        assert diff_snapshots(base, playing_snapshot(progress_ms=6000), 1000).position_changed is False
        assert diff_snapshots(base, playing_snapshot(progress_ms=6001), 1000).position_changed is True

    def test_position_ignored_across_tracks(self):
        """Test a different track is a track change, not a position change."""
        diff = diff_snapshots(playing_snapshot(), playing_snapshot(track_id="t2", progress_ms=90000))
        assert diff.track_changed is True
        assert diff.position_changed is False

    def test_volume_change(self):
        """Test volume differences are detected."""
        assert diff_snapshots(playing_snapshot(), playing_snapshot(volume_percent=41)).volume_changed is True


class TestPlaybackStateMonitor:
    """Tests for the polling monitor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.host = RecordingHost()

    def _monitor(self, snapshots, **kwargs):
        self.service = FakeMusicService(snapshots=snapshots)
        return PlaybackStateMonitor(self.service, self.host, poll_interval_sec=0.01, **kwargs)

    def test_identical_polls_emit_once(self):
        """Test a repeated identical snapshot is silent."""
        monitor = self._monitor([playing_snapshot(), playing_snapshot()])

        assert monitor.poll_once() is not None
        assert monitor.poll_once() is None
        assert len(self.host.flag_updates) == 1
        assert len(self.host.contexts) == 1

    def test_disconnect_sequence_emits_two_updates(self):
        """Test connected, connected, disconnected emits on first and last poll."""
        monitor = self._monitor([playing_snapshot(), playing_snapshot(), PlaybackSnapshot.empty()])

        results = [monitor.poll_once() for _ in range(3)]

        assert [r is not None for r in results] == [True, False, True]
        assert self.host.flag_updates == [
            ("spotify_connected", "!spotify_disconnected", "playing"),
            ("!spotify_connected", "spotify_disconnected", "!playing"),
        ]
        assert self.host.notes == [CONNECTED_NOTE, DISCONNECTED_NOTE]
        assert self.host.contexts[-1] is None

    def test_first_poll_disconnected(self):
        """Test starting without a player announces it once."""
        monitor = self._monitor([PlaybackSnapshot.empty()])

        update = monitor.poll_once()

        assert update.note == DISCONNECTED_NOTE
        assert update.flags == ("!spotify_connected", "spotify_disconnected", "!playing")
        assert monitor.poll_once() is None

    def test_pause_emits_without_note(self):
        """Test play/pause flips update flags but send no note."""
        monitor = self._monitor([playing_snapshot(), playing_snapshot(is_playing=False)])
        monitor.poll_once()

        update = monitor.poll_once()

        assert update.note is None
        assert update.flags[-1] == "!playing"
        assert update.context is None
        assert self.host.notes == [CONNECTED_NOTE]

    def test_seek_emits_update(self):
        """Test a jump in position refreshes the context."""
        monitor = self._monitor([playing_snapshot(), playing_snapshot(progress_ms=60000)])
        monitor.poll_once()

        update = monitor.poll_once()

        assert "(01:00/03:20)" in update.context

    def test_snapshot_persisted_even_when_silent(self):
        """Test last-known snapshot advances on silent polls."""
        monitor = self._monitor([playing_snapshot(progress_ms=5000), playing_snapshot(progress_ms=5500)])
        monitor.poll_once()
        monitor.poll_once()
        assert monitor.snapshot.progress_ms == 5500

    def test_poll_error_skips_cycle(self):
        """Test a failed poll emits nothing and keeps the last snapshot."""
        first = playing_snapshot()
        monitor = self._monitor([first, TransientNetworkError("timeout"), AuthError("expired"), first])

        monitor.poll_once()
        assert monitor.poll_once() is None
        assert monitor.poll_once() is None
        assert monitor.snapshot is first
        assert monitor.poll_once() is None
        assert len(self.host.flag_updates) == 1

    def test_character_replies(self):
        """Test connection notes request an agent reply when enabled."""
        monitor = self._monitor([playing_snapshot()], character_replies=True)
        monitor.poll_once()
        assert self.host.replies == 1

    def test_state_property(self):
        """Test state before and after the first poll."""
        monitor = self._monitor([playing_snapshot(is_playing=False)])
        assert monitor.state is PlayerState.DISCONNECTED
        monitor.poll_once()
        assert monitor.state is PlayerState.PAUSED

    def test_run_stops_on_event_without_final_update(self):
        """Test run exits when the event fires and emits nothing afterwards."""
        stop = threading.Event()
        monitor = self._monitor([playing_snapshot()])
        polls = []

        original = self.service.current_playback

        def counting_playback():
            polls.append(1)
            if len(polls) == 3:
                stop.set()
            return original()

        self.service.current_playback = counting_playback

        monitor.run(stop)

        assert len(polls) == 3
        assert len(self.host.flag_updates) == 1

    def test_run_with_event_already_set(self):
        """Test a cancelled session never polls."""
        stop = threading.Event()
        stop.set()
        monitor = self._monitor([playing_snapshot()])

        monitor.run(stop)

        assert self.host.flag_updates == []

    def test_start_and_stop_thread(self):
        """Test the background thread polls and stops on request."""
        monitor = self._monitor([playing_snapshot()])
        monitor.start()
        deadline = time.time() + 2
        while not self.host.flag_updates and time.time() < deadline:
            time.sleep(0.01)
        monitor.stop(timeout=2)

        assert self.host.flag_updates
        assert monitor._thread is None
