from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from .entities import PlaybackSnapshot, TrackRef, UserProfile


class MusicService(Protocol):
    """Port defining the typed client for the streaming service.

    Implementations translate transport failures into domain errors
    (AuthError, TransientNetworkError and subclasses) and never retry on
    their own beyond a single token refresh.
    """

    def search(self, query: str, category: str, market: Optional[str] = None,
               limit: int = 20) -> Optional[Dict[str, Any]]:
        """Run a single-category search and return the raw response payload."""

    def current_user(self) -> UserProfile:
        """Return the authorized user's id and market."""

    def current_playback(self) -> PlaybackSnapshot:
        """Return the live playback snapshot (empty when no player is active)."""

    def play(self, uri: str, kind: Optional[str] = None) -> None:
        """Start playback of a track/episode uri or a context uri."""

    def pause(self) -> None:
        """Pause playback."""

    def resume(self) -> None:
        """Resume playback."""

    def queue(self, uri: str) -> None:
        """Append a track to the play queue."""

    def skip_next(self) -> None:
        """Skip to the next track."""

    def skip_previous(self) -> None:
        """Skip to the previous track."""

    def set_volume(self, volume_percent: int) -> None:
        """Set the device volume (0-100)."""

    def seek(self, position_ms: int) -> None:
        """Seek within the current track."""

    def set_repeat(self, state: str) -> None:
        """Set repeat mode: track, context or off."""

    def set_shuffle(self, state: bool) -> None:
        """Enable or disable shuffle."""

    def top_tracks(self, limit: int = 20) -> List[TrackRef]:
        """Return the user's top tracks."""

    def list_playlists(self) -> Dict[str, str]:
        """Return the user's playlists as name -> uri."""

    def add_to_playlist(self, playlist_id: str, uris: Sequence[str]) -> None:
        """Add items to a playlist."""

    def save_tracks(self, track_ids: Sequence[str]) -> None:
        """Save tracks to the user's library."""

    def list_devices(self) -> Dict[str, str]:
        """Return available devices as name -> id."""

    def transfer_playback(self, device_id: str) -> None:
        """Move playback to another device."""


class SessionHost(Protocol):
    """Port for the host chat session that receives notes and state."""

    def send_note(self, text: str) -> None:
        """Post a short natural-language note into the conversation."""

    def trigger_reply(self) -> None:
        """Ask the conversational agent to react to the last note."""

    def set_flags(self, flags: Sequence[str]) -> None:
        """Push boolean flags (``name`` or ``!name``) to the session context."""

    def set_context(self, text: Optional[str]) -> None:
        """Replace the free-text 'now playing' context (None clears it)."""


class TokenProvider(Protocol):
    """Port for the auth provider that hands out valid access tokens."""

    def get_valid_access_token(self) -> str:
        """Return a non-expired access token, refreshing lazily. Raises AuthError."""

    def invalidate(self) -> None:
        """Force a refresh on the next access."""
