import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import requests
import spotipy
from spotipy.exceptions import SpotifyException
from urllib3.exceptions import ReadTimeoutError

from playbridge.domain.entities import PlaybackSnapshot, TrackRef, UserProfile
from playbridge.domain.errors import (
    AuthError,
    NoActiveDeviceError,
    RateLimited,
    TransientNetworkError,
)
from playbridge.domain.normalization import release_year
from playbridge.domain.ports import TokenProvider

logger = logging.getLogger(__name__)

T = TypeVar('T')

PLAYABLE_ITEM_TYPES = ('track', 'episode')


def snapshot_from_playback(data: Optional[Dict[str, Any]]) -> PlaybackSnapshot:
    """Convert a currently-playing payload to a domain snapshot.

    Args:
        data: Payload of the playback state endpoint, None when nothing is active

    Returns:
        PlaybackSnapshot; track fields are set only for music tracks
    """
    if not data:
        return PlaybackSnapshot.empty()

    device = data.get('device') or {}
    item = data.get('item') or {}
    is_track = item.get('type', 'track') == 'track' and bool(item.get('uri'))

    track_fields: Dict[str, Any] = {}
    if is_track:
        album = item.get('album') or {}
        track_fields = {
            'track_id': item.get('id'),
            'track_uri': item.get('uri'),
            'track_name': item.get('name'),
            'artist_names': tuple(a.get('name') for a in item.get('artists') or [] if a and a.get('name')),
            'album_name': album.get('name'),
            'release_year': release_year(album.get('release_date')),
            'duration_ms': item.get('duration_ms'),
        }

    return PlaybackSnapshot(
        device_active=bool(device.get('is_active')),
        is_playing=bool(data.get('is_playing')),
        progress_ms=data.get('progress_ms'),
        volume_percent=device.get('volume_percent'),
        device_id=device.get('id'),
        device_name=device.get('name'),
        **track_fields,
    )


class SpotifyService:
    """Spotify playback/search client over spotipy.

    Every call fetches a valid token from the token provider; a 401 invalidates
    the token and retries once.
    """

    def __init__(self,
                 token_provider: TokenProvider,
                 client_factory: Callable[..., spotipy.Spotify] = spotipy.Spotify,
                 requests_timeout: int = 15):
        """Initialize Spotify service.

        Args:
            token_provider: Source of valid access tokens
            client_factory: Builds a client from ``auth`` and ``requests_timeout``
            requests_timeout: Per-request timeout in seconds
        """
        self.token_provider = token_provider
        self.client_factory = client_factory
        self.requests_timeout = requests_timeout
        self._client: Optional[spotipy.Spotify] = None
        self._client_token: Optional[str] = None

    def _get_client(self) -> spotipy.Spotify:
        token = self.token_provider.get_valid_access_token()
        if self._client is None or token != self._client_token:
            self._client = self.client_factory(auth=token, requests_timeout=self.requests_timeout)
            self._client_token = token
        return self._client

    def _map_error(self, error: SpotifyException, operation: str) -> Exception:
        status = getattr(error, 'http_status', None)
        if status == 401:
            return AuthError(f"Spotify rejected credentials during {operation}")
        if status == 429:
            headers = getattr(error, 'headers', None) or {}
            try:
                retry_after = int(headers.get('Retry-After', 1))
            except (TypeError, ValueError):
                retry_after = 1
            return RateLimited(retry_after_ms=retry_after * 1000,
                               message=f"Rate limited during {operation}")
        reason = str(getattr(error, 'reason', '') or '')
        if status == 404 and ('NO_ACTIVE_DEVICE' in reason or 'no active device' in str(error).lower()):
            return NoActiveDeviceError(f"No active device for {operation}")
        return TransientNetworkError(f"Spotify error during {operation}: {error}")

    def _call(self, operation: str, fn: Callable[[spotipy.Spotify], T]) -> T:
        for attempt in range(2):
            client = self._get_client()
            try:
                return fn(client)
            except SpotifyException as e:
                if getattr(e, 'http_status', None) == 401 and attempt == 0:
                    logger.warning(f"Spotify token rejected during {operation}, refreshing...")
                    self.token_provider.invalidate()
                    continue
                raise self._map_error(e, operation) from e
            except ReadTimeoutError as e:
                logger.warning(f"Read timeout during {operation}")
                raise TransientNetworkError(f"Timeout during {operation}") from e
            except requests.exceptions.RequestException as e:
                raise TransientNetworkError(f"Network error during {operation}: {e}") from e
        # Unreachable: the second attempt either returns or raises
        raise AuthError(f"Spotify rejected credentials during {operation}")

    # Search and profile

    def search(self, query: str, category: str, market: Optional[str] = None,
               limit: int = 20) -> Optional[Dict[str, Any]]:
        return self._call(f"{category} search",
                          lambda sp: sp.search(q=query, limit=limit, type=category, market=market))

    def current_user(self) -> UserProfile:
        me = self._call("profile lookup", lambda sp: sp.current_user()) or {}
        return UserProfile(user_id=me.get('id'), market=me.get('country'))

    def current_playback(self) -> PlaybackSnapshot:
        return snapshot_from_playback(self._call("playback state", lambda sp: sp.current_playback()))

    # Playback control

    def play(self, uri: str, kind: Optional[str] = None) -> None:
        if not kind and uri.count(':') >= 2:
            kind = uri.split(':')[1]
        if kind in PLAYABLE_ITEM_TYPES:
            self._call("play", lambda sp: sp.start_playback(uris=[uri]))
        else:
            self._call("play", lambda sp: sp.start_playback(context_uri=uri))
        logger.info(f"Started playback of {uri}")

    def pause(self) -> None:
        self._call("pause", lambda sp: sp.pause_playback())

    def resume(self) -> None:
        self._call("resume", lambda sp: sp.start_playback())

    def queue(self, uri: str) -> None:
        self._call("queue", lambda sp: sp.add_to_queue(uri))

    def skip_next(self) -> None:
        self._call("skip next", lambda sp: sp.next_track())

    def skip_previous(self) -> None:
        self._call("skip previous", lambda sp: sp.previous_track())

    def set_volume(self, volume_percent: int) -> None:
        self._call("volume", lambda sp: sp.volume(int(volume_percent)))

    def seek(self, position_ms: int) -> None:
        self._call("seek", lambda sp: sp.seek_track(int(position_ms)))

    def set_repeat(self, state: str) -> None:
        self._call("repeat", lambda sp: sp.repeat(state))

    def set_shuffle(self, state: bool) -> None:
        self._call("shuffle", lambda sp: sp.shuffle(bool(state)))

    # Library

    def top_tracks(self, limit: int = 20) -> List[TrackRef]:
        response = self._call("top tracks", lambda sp: sp.current_user_top_tracks(limit=limit)) or {}
        tracks = []
        for item in response.get('items') or []:
            if not item or not item.get('uri'):
                continue
            artists = tuple(a.get('name') for a in item.get('artists') or [] if a and a.get('name'))
            tracks.append(TrackRef(uri=item['uri'], name=item.get('name') or 'Unknown Track', artists=artists))
        return tracks

    def list_playlists(self) -> Dict[str, str]:
        """Return the user's playlists as name -> uri, following pagination."""
        playlists: Dict[str, str] = {}
        page = self._call("list playlists", lambda sp: sp.current_user_playlists(limit=50))
        while page:
            for item in page.get('items') or []:
                if item and item.get('name') and item.get('uri'):
                    playlists.setdefault(item['name'], item['uri'])
            if not page.get('next'):
                break
            current = page
            page = self._call("list playlists", lambda sp: sp.next(current))
        return playlists

    def add_to_playlist(self, playlist_id: str, uris: Sequence[str]) -> None:
        self._call("add to playlist", lambda sp: sp.playlist_add_items(playlist_id, list(uris)))

    def save_tracks(self, track_ids: Sequence[str]) -> None:
        self._call("save tracks", lambda sp: sp.current_user_saved_tracks_add(tracks=list(track_ids)))

    # Devices

    def list_devices(self) -> Dict[str, str]:
        response = self._call("list devices", lambda sp: sp.devices()) or {}
        return {
            device['name']: device['id']
            for device in response.get('devices') or []
            if device and device.get('name') and device.get('id')
        }

    def transfer_playback(self, device_id: str) -> None:
        self._call("transfer playback", lambda sp: sp.transfer_playback(device_id, force_play=True))
