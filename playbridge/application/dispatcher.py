from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Dict, Mapping, Optional

from playbridge.application.arguments import (
    DEFAULT_VOLUME_STEP,
    ParsedArguments,
    parse_arguments,
)
from playbridge.application.coordinator import SearchCoordinator
from playbridge.application.lookup import match_name
from playbridge.crosscutting.logging import (
    CorrelationContext,
    log_action_complete,
    log_action_start,
    log_error,
)
from playbridge.domain.entities import ActionRequest, PlaybackSnapshot
from playbridge.domain.errors import (
    AuthError,
    NoActiveDeviceError,
    NoMatchError,
    RateLimited,
    TransientNetworkError,
    UnsupportedActionError,
    ValidationError,
)
from playbridge.domain.normalization import (
    clean_string,
    extract_id_from_uri,
    format_ms,
    normalise_special_name,
)
from playbridge.domain.ports import MusicService, SessionHost


logger = logging.getLogger(__name__)

UNKNOWN_VOLUME = 50
DEFAULT_SEEK_SECONDS = 10

CONNECT_NOTE = ("No active Spotify client detected. Please start playback in your browser, "
                "desktop or mobile Spotify app to connect.")
AUTH_FAILED_NOTE = "Spotify authorization failed. Please reconnect your Spotify account."
NO_DEVICE_NOTE = "No active Spotify device found. Please start playback in a Spotify app first."
REQUEST_FAILED_NOTE = "The Spotify request failed. Please try again."
NO_RESULTS_NOTE = "No matching results found."


def clamp_volume(value: int) -> int:
    return max(0, min(100, int(value)))


def compute_volume(mode: str, value: Optional[int], current: Optional[int]) -> int:
    """Return the new volume for a set/increase/decrease request.

    Args:
        mode: set, increase or decrease
        value: absolute level for set, step otherwise (default 10)
        current: last known volume; 50 when unknown

    Returns:
        Volume clamped to [0, 100]

    Raises:
        ValidationError: on an unknown mode
    """
    step = DEFAULT_VOLUME_STEP if value is None else value
    current = UNKNOWN_VOLUME if current is None else current

    if mode == "set":
        return clamp_volume(step)
    if mode == "increase":
        return clamp_volume(current + step)
    if mode == "decrease":
        return clamp_volume(current - step)
    raise ValidationError("type", mode, "Invalid volume change type. Please use 'set', 'increase', or 'decrease'.")


def compute_seek_position(target: str, value: Optional[int],
                          progress_ms: int, duration_ms: int) -> int:
    """Return the new position in ms, clamped to [0, duration_ms].

    forward/backward move by ``value`` seconds (default 10), to_time jumps to
    ``value`` seconds, to_percent to ``value`` percent and middle to half way.

    Raises:
        ValidationError: for to_time/to_percent without a value, or an unknown target
    """
    progress_ms = progress_ms or 0
    duration_ms = max(0, duration_ms or 0)

    if target == "forward":
        seconds = DEFAULT_SEEK_SECONDS if value is None else value
        position = progress_ms + seconds * 1000
    elif target == "backward":
        seconds = DEFAULT_SEEK_SECONDS if value is None else value
        position = progress_ms - seconds * 1000
    elif target == "to_time":
        if value is None:
            raise ValidationError("value", value, "Please specify a time in seconds to seek to.")
        position = value * 1000
    elif target == "to_percent":
        if value is None:
            raise ValidationError("value", value, "Please specify a percentage to seek to.")
        position = int(duration_ms * (value / 100.0))
    elif target == "middle":
        position = duration_ms // 2
    else:
        raise ValidationError(
            "target", target,
            "Invalid seek target. Please use 'forward', 'backward', 'to_time', 'to_percent', or 'middle'.",
        )

    return max(0, min(position, duration_ms))


class CommandDispatcher:
    """Maps action verbs to playback control calls and user-facing notes.

    Actions of one session are serialized; each one produces exactly one note.
    """

    def __init__(self,
                 service: MusicService,
                 coordinator: SearchCoordinator,
                 host: SessionHost,
                 snapshot_provider: Callable[[], Optional[PlaybackSnapshot]],
                 special_playlists: Optional[Mapping[str, str]] = None,
                 character_replies: bool = True,
                 rng: Optional[random.Random] = None,
                 session_id: Optional[str] = None):
        self.service = service
        self.coordinator = coordinator
        self.host = host
        self.snapshot_provider = snapshot_provider
        self.special_playlists: Dict[str, str] = dict(special_playlists or {})
        self.character_replies = character_replies
        self.rng = rng or random.Random()
        self.session_id = session_id
        self._lock = threading.Lock()
        self._closed = threading.Event()

        self._handlers: Dict[str, Callable[[ParsedArguments], str]] = {
            "toggle_playback": self._toggle_playback,
            "spotify_connect": self._spotify_connect,
            "play_music": self._play_music,
            "queue_track": self._queue_track,
            "play_random_music": self._play_random_music,
            "play_special_playlist": self._play_special_playlist,
            "volume": self._volume,
            "seek_playback": self._seek_playback,
            "skip_next": self._skip_next,
            "skip_previous": self._skip_previous,
            "repeat_mode": self._repeat_mode,
            "shuffle_mode": self._shuffle_mode,
            "add_to_favorites": self._add_to_favorites,
            "get_playlists": self._get_playlists,
            "add_to_playlist": self._add_to_playlist,
            "list_devices": self._list_devices,
            "transfer_to_device": self._transfer_to_device,
        }

    def close(self) -> None:
        """Reject further actions; an action already running completes."""
        self._closed.set()

    def handle(self, request: ActionRequest) -> Optional[str]:
        """Run one action and send its note.

        Returns:
            The note that was sent, or None once the dispatcher is closed
        """
        with self._lock:
            if self._closed.is_set():
                logger.info(f"Dispatcher closed, dropping action '{request.verb}'")
                return None

            with CorrelationContext(session_id=self.session_id, action=request.verb):
                log_action_start(logger, request.verb, request.arguments)
                note = self._execute(request)
                self._send(note)
                log_action_complete(logger, request.verb, note)
                return note

    def _execute(self, request: ActionRequest) -> str:
        try:
            parsed = parse_arguments(request.verb, request.arguments)
            handler = self._handlers.get(request.verb)
            if handler is None:
                raise UnsupportedActionError(f"Action '{request.verb}' is not supported.")
            return handler(parsed)
        except UnsupportedActionError as e:
            logger.warning(str(e))
            return str(e)
        except AuthError as e:
            log_error(logger, f"Authorization failed during '{request.verb}'", e)
            return AUTH_FAILED_NOTE
        except NoMatchError as e:
            logger.info(f"No match during '{request.verb}': {e}")
            return NO_RESULTS_NOTE
        except NoActiveDeviceError as e:
            logger.warning(f"No active device for '{request.verb}': {e}")
            return NO_DEVICE_NOTE
        except RateLimited as e:
            logger.warning(f"Rate limited during '{request.verb}': retry after {e.retry_after_ms}ms")
            seconds = max(1, round(e.retry_after_ms / 1000))
            return f"Spotify is busy right now. Please try again in {seconds} seconds."
        except TransientNetworkError as e:
            log_error(logger, f"Request failed during '{request.verb}'", e)
            return REQUEST_FAILED_NOTE

    def _send(self, note: str) -> None:
        self.host.send_note(note)
        if self.character_replies:
            self.host.trigger_reply()

    def _snapshot(self) -> Optional[PlaybackSnapshot]:
        return self.snapshot_provider()

    def _current_track(self):
        snapshot = self._snapshot()
        if snapshot is None or not snapshot.track_uri:
            return None, "Unknown Track"
        return snapshot.track_uri, snapshot.track_friendly_name

    # Handlers

    def _toggle_playback(self, args: ParsedArguments) -> str:
        snapshot = self._snapshot()
        is_playing = bool(snapshot and snapshot.is_playing)
        logger.info(f"Toggling playback, currently playing={is_playing}")
        if is_playing:
            self.service.pause()
            return "Playback toggled to: pause"
        self.service.resume()
        return "Playback toggled to: play"

    def _spotify_connect(self, args: ParsedArguments) -> str:
        return CONNECT_NOTE

    def _play_music(self, args: ParsedArguments) -> str:
        name = args.text("name")
        if not name:
            return "Request not identified."

        requested_type = args.text("type")
        if args.is_invalid("type"):
            logger.warning(f"Invalid type received, falling back to '{requested_type}'")

        try:
            target = self.coordinator.resolve(name, requested_type)
        except NoMatchError as e:
            logger.info(f"Nothing to play for '{name}': {e}")
            return "No matching results found to play."

        self.service.play(target.uri, kind=target.type)
        self.coordinator.record_play(target.uri)
        return f"Playing {target.type}: {target.friendly_name}"

    def _queue_track(self, args: ParsedArguments) -> str:
        name = args.text("name")
        if not name:
            return "Request not identified."

        try:
            target = self.coordinator.resolve(name, "track")
        except NoMatchError as e:
            logger.info(f"Nothing to queue for '{name}': {e}")
            return "No matching results found to queue."

        if target.type != "track":
            return f"Cannot queue {target.type}s. Try playing it instead."

        self.service.queue(target.uri)
        return f"Added to queue: {target.friendly_name}"

    def _play_random_music(self, args: ParsedArguments) -> str:
        tracks = self.service.top_tracks()
        if not tracks:
            return "No top tracks found to play randomly."

        track = self.rng.choice(tracks)
        self.service.play(track.uri, kind="track")
        return f"{track.friendly_name} has been selected based on your top tracks."

    def _play_special_playlist(self, args: ParsedArguments) -> str:
        name = args.text("name")
        if not name:
            return "Special playlist name not provided."

        key = normalise_special_name(name, self.rng)
        playlist_id = self.special_playlists.get(key)
        if not playlist_id:
            return f"No stored ID for '{name}'. Please add it in the configuration."

        self.service.play(f"spotify:playlist:{playlist_id}", kind="playlist")
        return f"Playing your playlist: {name}"

    def _volume(self, args: ParsedArguments) -> str:
        mode = args.text("type")
        if mode is None:
            if args.is_invalid("type"):
                return "Invalid volume change type. Please use 'set', 'increase', or 'decrease'."
            return "Volume change type not specified."

        snapshot = self._snapshot()
        if snapshot is None or not snapshot.has_device:
            return "No active Spotify device found to change volume."

        new_volume = compute_volume(mode, args.number("value"), snapshot.volume_percent)
        self.service.set_volume(new_volume)
        return f"Volume changed to {new_volume}%."

    def _seek_playback(self, args: ParsedArguments) -> str:
        target = args.text("target")
        if target is None:
            if args.is_invalid("target"):
                return ("Invalid seek target. Please use 'forward', 'backward', "
                        "'to_time', 'to_percent', or 'middle'.")
            return "Seek target not specified."

        snapshot = self._snapshot()
        if snapshot is None or not snapshot.has_track:
            return "No track is currently playing to seek within."

        try:
            position = compute_seek_position(target, args.number("value"),
                                             snapshot.progress_ms or 0, snapshot.duration_ms)
        except ValidationError as e:
            return str(e)

        self.service.seek(position)
        return f"Playback position updated to {format_ms(position)}."

    def _skip_next(self, args: ParsedArguments) -> str:
        self.service.skip_next()
        return "Skipped to the next track."

    def _skip_previous(self, args: ParsedArguments) -> str:
        self.service.skip_previous()
        return "Skipped to the previous track."

    def _repeat_mode(self, args: ParsedArguments) -> str:
        mode = args.get("mode", "track")
        self.service.set_repeat(mode)
        return f"Repeat mode set to: {mode}"

    def _shuffle_mode(self, args: ParsedArguments) -> str:
        mode = args.get("mode", "off")
        self.service.set_shuffle(mode == "on")
        return f"Shuffle mode set to: {mode}"

    def _add_to_favorites(self, args: ParsedArguments) -> str:
        track_uri, friendly_name = self._current_track()
        if not track_uri:
            return "No track is currently playing."

        track_id = extract_id_from_uri(track_uri)
        if not track_id:
            return "Could not extract track ID from current track."

        self.service.save_tracks([track_id])
        return f"Track '{friendly_name}' added to your Favorites."

    def _get_playlists(self, args: ParsedArguments) -> str:
        playlists = self.service.list_playlists()
        if not playlists:
            return "No playlists available."
        return f"Available playlists: {', '.join(playlists)}"

    def _add_to_playlist(self, args: ParsedArguments) -> str:
        wanted = clean_string(args.text("playlist"))
        if not wanted:
            return "No playlist specified."

        match = match_name(wanted, self.service.list_playlists())
        if not match.found:
            if match.suggestions:
                return f"Did you mean: {', '.join(match.suggestions)}?"
            return f"Playlist not found: {wanted}"

        track_uri, friendly_name = self._current_track()
        if not track_uri:
            return "No track is currently playing."

        self.service.add_to_playlist(extract_id_from_uri(match.value), [track_uri])
        return f"Track '{friendly_name}' added to playlist '{match.name}'."

    def _list_devices(self, args: ParsedArguments) -> str:
        devices = self.service.list_devices()
        if not devices:
            return "No devices available."
        return f"Available devices: {', '.join(devices)}"

    def _transfer_to_device(self, args: ParsedArguments) -> str:
        wanted = clean_string(args.text("device"))
        if not wanted:
            return "No device specified."

        match = match_name(wanted, self.service.list_devices())
        if not match.found:
            if match.suggestions:
                return f"Did you mean: {', '.join(match.suggestions)}?"
            return f"No device found matching: {wanted}"

        self.service.transfer_playback(match.value)
        return f"Playback transferred to: {match.name}"
