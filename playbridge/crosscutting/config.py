import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values, find_dotenv

from playbridge.domain.errors import ConfigurationError
from playbridge.domain.normalization import normalise_special_name


DEFAULT_POLL_INTERVAL_SEC = 1.0
DEFAULT_POSITION_THRESHOLD_MS = 1000
DEFAULT_HISTORY_SIZE = 100
DEFAULT_SEARCH_LIMIT = 20

REQUIRED_KEYS = (
    'SPOTIFY_CLIENT_ID',
    'SPOTIFY_CLIENT_SECRET',
    'SPOTIFY_REDIRECT_URI',
    'PLAYBRIDGE_TOKEN_PATH',
)

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


def get_spotify_scopes() -> List[str]:
    """Get the Spotify scopes needed for playback control."""
    return [
        'user-read-private',            # Market and user id
        'user-read-playback-state',     # Monitor polling and device list
        'user-modify-playback-state',   # Play, pause, seek, volume, transfer
        'user-top-read',                # Random music from top tracks
        'playlist-read-private',
        'playlist-read-collaborative',
        'playlist-modify-private',      # Add to playlist
        'user-library-read',
        'user-library-modify',          # Add to favorites
    ]


def get_spotify_scope_string() -> str:
    """Get Spotify scopes as space-separated string."""
    return ' '.join(get_spotify_scopes())


def validate_spotify_scopes(scopes: str) -> bool:
    """Validate that provided scopes include all required ones."""
    return set(get_spotify_scopes()).issubset(set((scopes or '').split()))


def get_missing_spotify_scopes(scopes: str) -> List[str]:
    """Get list of missing required Spotify scopes, in declaration order."""
    provided = set((scopes or '').split())
    return [scope for scope in get_spotify_scopes() if scope not in provided]


def parse_special_playlists(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``Name=Id`` lines (newline or ';' separated) into a normalised map.

    Entries without '=' or with an empty id are ignored.
    """
    playlists: Dict[str, str] = {}
    if not raw:
        return playlists

    for line in raw.replace(';', '\n').splitlines():
        if '=' not in line:
            continue
        name, playlist_id = (part.strip() for part in line.split('=', 1))
        if not name or not playlist_id:
            continue
        playlists[normalise_special_name(name)] = playlist_id
    return playlists


@dataclass(frozen=True)
class Settings:
    """Validated runtime configuration."""

    client_id: str
    client_secret: str
    redirect_uri: str
    token_path: str
    special_playlists: Dict[str, str] = field(default_factory=dict)
    character_replies: bool = False
    poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC
    position_threshold_ms: int = DEFAULT_POSITION_THRESHOLD_MS
    history_size: int = DEFAULT_HISTORY_SIZE
    search_limit: int = DEFAULT_SEARCH_LIMIT

    @property
    def scopes(self) -> str:
        return get_spotify_scope_string()

    def summary(self) -> Dict[str, object]:
        """Configuration summary (without sensitive data)."""
        return {
            'client_id': self.client_id[:4] + '...' if self.client_id else None,
            'redirect_uri': self.redirect_uri,
            'token_path': self.token_path,
            'special_playlists': sorted(self.special_playlists),
            'character_replies': self.character_replies,
            'poll_interval_sec': self.poll_interval_sec,
            'position_threshold_ms': self.position_threshold_ms,
            'history_size': self.history_size,
            'search_limit': self.search_limit,
            'spotify_scopes': get_spotify_scopes(),
        }


def _read_environment(env_file: Optional[str]) -> Dict[str, str]:
    path = env_file if env_file is not None else find_dotenv(usecwd=True)
    values = {k: v for k, v in dotenv_values(path).items() if v is not None} if path else {}
    # Process environment wins over the .env file
    values.update(os.environ)
    return values


def _as_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {raw!r}")
    return value


def _as_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {raw!r}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None,
                  env_file: Optional[str] = None) -> Settings:
    """Load and validate settings.

    Args:
        env: Explicit mapping to read instead of the process environment and .env
        env_file: Path of a .env file; defaults to the nearest one found from cwd

    Raises:
        ConfigurationError: listing every missing required value, or on a bad value
    """
    if env is None:
        env = _read_environment(env_file)

    missing = [key for key in REQUIRED_KEYS if not (env.get(key) or '').strip()]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    token_path = os.path.abspath(os.path.expanduser(os.path.expandvars(env['PLAYBRIDGE_TOKEN_PATH'].strip())))
    if not token_path.endswith('.json'):
        raise ConfigurationError("PLAYBRIDGE_TOKEN_PATH must end with .json")

    return Settings(
        client_id=env['SPOTIFY_CLIENT_ID'].strip(),
        client_secret=env['SPOTIFY_CLIENT_SECRET'].strip(),
        redirect_uri=env['SPOTIFY_REDIRECT_URI'].strip(),
        token_path=token_path,
        special_playlists=parse_special_playlists(env.get('PLAYBRIDGE_SPECIAL_PLAYLISTS')),
        character_replies=(env.get('PLAYBRIDGE_CHARACTER_REPLIES') or '').strip().lower() in _TRUE_VALUES,
        poll_interval_sec=_as_float(env, 'PLAYBRIDGE_POLL_INTERVAL_SEC', DEFAULT_POLL_INTERVAL_SEC),
        position_threshold_ms=_as_int(env, 'PLAYBRIDGE_POSITION_THRESHOLD_MS', DEFAULT_POSITION_THRESHOLD_MS),
        history_size=_as_int(env, 'PLAYBRIDGE_HISTORY_SIZE', DEFAULT_HISTORY_SIZE),
        search_limit=_as_int(env, 'PLAYBRIDGE_SEARCH_LIMIT', DEFAULT_SEARCH_LIMIT),
    )


# Global instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def setup_config(env_file: Optional[str] = None,
                 env: Optional[Mapping[str, str]] = None) -> Settings:
    """Reload global settings from a custom .env file or mapping."""
    global _settings
    _settings = load_settings(env=env, env_file=env_file)
    return _settings
