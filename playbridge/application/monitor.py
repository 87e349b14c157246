from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Tuple

from playbridge.crosscutting.logging import CorrelationContext, log_state_update
from playbridge.domain.entities import PlaybackSnapshot
from playbridge.domain.errors import AuthError, TransientNetworkError
from playbridge.domain.normalization import format_ms
from playbridge.domain.ports import MusicService, SessionHost


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 1.0
DEFAULT_POSITION_THRESHOLD_MS = 1000

CONNECTED_NOTE = "Spotify is now connected and active."
DISCONNECTED_NOTE = "No active Spotify player found"


class PlayerState(enum.Enum):
    DISCONNECTED = "disconnected"
    PAUSED = "paused"
    PLAYING = "playing"

    @property
    def connected(self) -> bool:
        return self is not PlayerState.DISCONNECTED


def player_state_of(snapshot: PlaybackSnapshot) -> PlayerState:
    if not snapshot.device_active:
        return PlayerState.DISCONNECTED
    return PlayerState.PLAYING if snapshot.is_playing else PlayerState.PAUSED


@dataclass(frozen=True)
class SnapshotDiff:
    """Transition predicates between two consecutive polls."""

    connection_changed: bool = False
    playback_changed: bool = False
    track_changed: bool = False
    position_changed: bool = False
    volume_changed: bool = False

    @property
    def any(self) -> bool:
        return (self.connection_changed or self.playback_changed or self.track_changed
                or self.position_changed or self.volume_changed)


def diff_snapshots(previous: Optional[PlaybackSnapshot],
                   current: PlaybackSnapshot,
                   position_threshold_ms: int = DEFAULT_POSITION_THRESHOLD_MS) -> SnapshotDiff:
    """Compare two snapshots. A missing previous snapshot means first poll."""
    if previous is None:
        return SnapshotDiff(connection_changed=True, playback_changed=True,
                            track_changed=current.track_id is not None)

    same_track = current.track_id is not None and current.track_id == previous.track_id
    position_changed = (
        same_track
        and current.progress_ms is not None
        and previous.progress_ms is not None
        and abs(current.progress_ms - previous.progress_ms) > position_threshold_ms
    )

    return SnapshotDiff(
        connection_changed=previous.device_active != current.device_active,
        playback_changed=previous.is_playing != current.is_playing,
        track_changed=previous.track_id != current.track_id,
        position_changed=position_changed,
        volume_changed=previous.volume_percent != current.volume_percent,
    )


def build_flags(state: PlayerState) -> Tuple[str, ...]:
    if state.connected:
        playing = "playing" if state is PlayerState.PLAYING else "!playing"
        return ("spotify_connected", "!spotify_disconnected", playing)
    return ("!spotify_connected", "spotify_disconnected", "!playing")


def build_context(snapshot: PlaybackSnapshot) -> Optional[str]:
    """Describe the current track for the agent, only while something is playing.

    Example: "Song by A, B from the album X (Released in 1999) (01:05/03:30) (Volume: 60)"
    """
    if player_state_of(snapshot) is not PlayerState.PLAYING or not snapshot.has_track:
        return None

    text = snapshot.track_name or "Unknown Track"
    artists = ", ".join(snapshot.artist_names) if snapshot.artist_names else "Unknown Artist"
    text += f" by {artists}"
    if snapshot.album_name:
        text += f" from the album {snapshot.album_name}"
    if snapshot.release_year:
        text += f" (Released in {snapshot.release_year})"
    text += f" ({format_ms(snapshot.progress_ms)}/{format_ms(snapshot.duration_ms)})"
    if snapshot.volume_percent is not None:
        text += f" (Volume: {snapshot.volume_percent})"
    return text


@dataclass(frozen=True)
class MonitorUpdate:
    """Everything pushed to the host for one poll."""

    flags: Tuple[str, ...]
    context: Optional[str]
    note: Optional[str] = None


class PlaybackStateMonitor:
    """Polls the live playback state and pushes changes to the session host."""

    def __init__(self,
                 service: MusicService,
                 host: SessionHost,
                 poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
                 position_threshold_ms: int = DEFAULT_POSITION_THRESHOLD_MS,
                 character_replies: bool = False,
                 session_id: Optional[str] = None):
        self.service = service
        self.host = host
        self.poll_interval_sec = poll_interval_sec
        self.position_threshold_ms = position_threshold_ms
        self.character_replies = character_replies
        self.session_id = session_id

        self._last_known: Optional[PlaybackSnapshot] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def snapshot(self) -> Optional[PlaybackSnapshot]:
        """Last known snapshot, or None before the first successful poll."""
        return self._last_known

    @property
    def state(self) -> PlayerState:
        if self._last_known is None:
            return PlayerState.DISCONNECTED
        return player_state_of(self._last_known)

    def poll_once(self) -> Optional[MonitorUpdate]:
        """Run one poll cycle.

        Returns:
            The emitted update, or None when nothing changed or the poll failed
        """
        try:
            current = self.service.current_playback()
        except (AuthError, TransientNetworkError) as e:
            # Skip this cycle; the next poll retries with a fresh token
            logger.warning(f"Playback poll failed: {e}")
            return None

        diff = diff_snapshots(self._last_known, current, self.position_threshold_ms)
        self._last_known = current

        if not diff.any:
            return None

        state = player_state_of(current)
        note = None
        if diff.connection_changed:
            note = CONNECTED_NOTE if state.connected else DISCONNECTED_NOTE
            logger.info(note)
            self.host.send_note(note)
            if self.character_replies:
                self.host.trigger_reply()

        flags = build_flags(state)
        context = build_context(current)
        self.host.set_flags(flags)
        self.host.set_context(context)

        update = MonitorUpdate(flags=flags, context=context, note=note)
        log_state_update(logger, flags, context, state=state.value)
        return update

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Poll until the stop event fires. No final update is emitted."""
        stop_event = stop_event or self._stop_event
        with CorrelationContext(session_id=self.session_id, stage="monitor"):
            logger.info("Playback monitoring started")
            while not stop_event.is_set():
                try:
                    self.poll_once()
                except Exception as e:
                    logger.exception(f"Unexpected error in playback poll: {e}")
                if stop_event.wait(self.poll_interval_sec):
                    break
            logger.info("Playback monitoring stopped by request")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            args=(self._stop_event,),
            name=f"playback-monitor-{self.session_id or 'default'}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
