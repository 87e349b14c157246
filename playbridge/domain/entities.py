from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple


CANDIDATE_TYPES = ("track", "album", "artist", "playlist", "show", "episode")


@dataclass(frozen=True)
class Candidate:
    """A single resolved search hit for one category of the streaming service."""

    uri: str
    friendly_name: str
    type: str
    popularity: int = 0
    # Coarse category preference: tracks/episodes > albums/playlists/shows > artists
    priority: int = 0
    is_official: bool = False

    def __post_init__(self):
        if not self.uri:
            raise ValueError("Candidate uri must be non-empty")


@dataclass(frozen=True)
class ResolvedTarget:
    """Best entity chosen for a natural-language name."""

    uri: str
    friendly_name: str
    type: str


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Point-in-time read of the service's live playback state."""

    device_active: bool = False
    is_playing: bool = False
    track_id: Optional[str] = None
    track_uri: Optional[str] = None
    track_name: Optional[str] = None
    artist_names: Tuple[str, ...] = ()
    album_name: Optional[str] = None
    release_year: Optional[str] = None
    progress_ms: Optional[int] = None
    duration_ms: Optional[int] = None
    volume_percent: Optional[int] = None
    device_id: Optional[str] = None
    device_name: Optional[str] = None

    @classmethod
    def empty(cls) -> "PlaybackSnapshot":
        """Snapshot for 'no active player'."""
        return cls()

    @property
    def has_track(self) -> bool:
        return self.track_uri is not None and self.duration_ms is not None

    @property
    def has_device(self) -> bool:
        return self.device_id is not None or self.device_active

    @property
    def track_friendly_name(self) -> str:
        if not self.track_name:
            return "Unknown Track"
        if self.artist_names:
            return f"{self.track_name} by {', '.join(self.artist_names)}"
        return self.track_name


@dataclass(frozen=True)
class ActionRequest:
    """A verb plus loosely-typed string arguments as received from the host."""

    verb: str
    arguments: Mapping[str, str] = field(default_factory=dict)

    def get(self, name: str) -> Optional[str]:
        value = self.arguments.get(name)
        return None if value is None else str(value)


@dataclass(frozen=True)
class UserProfile:
    """Identity of the authorized user as reported by the profile endpoint."""

    user_id: Optional[str] = None
    market: Optional[str] = None


@dataclass(frozen=True)
class TrackRef:
    """Minimal track description used for top-track selection."""

    uri: str
    name: str
    artists: Tuple[str, ...] = ()

    @property
    def friendly_name(self) -> str:
        if self.artists:
            return f"{self.name} by {', '.join(self.artists)}"
        return self.name


@dataclass(frozen=True)
class AuthToken:
    """OAuth token pair persisted in the per-user token file."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def to_json(self) -> Dict[str, Any]:
        """Serialize token to the token-file JSON shape."""
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AuthToken":
        """Deserialize token from the token-file JSON shape."""
        expires_at = datetime.fromisoformat(data["expiresAt"])
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken"),
            expires_at=expires_at,
        )
