from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from playbridge.domain.entities import Candidate
from playbridge.domain.errors import TransientNetworkError
from playbridge.domain.ports import MusicService


logger = logging.getLogger(__name__)

SEARCH_CATEGORIES = ("track", "album", "artist", "playlist", "show", "episode")

OFFICIAL_OWNER_ID = "spotify"
OFFICIAL_PLAYLIST_POPULARITY = 1000
OWNED_PLAYLIST_BOOST = 50

MAX_RECENCY_BOOST = 100.0
RECENCY_HALF_LIFE_MONTHS = 12.0


def calculate_recency_boost(release_date: Optional[str], now: Optional[datetime] = None) -> int:
    """Exponential half-life boost for recently released albums.

    boost = 100 * 0.5 ** (months_since_release / 12), rounded. Dates are
    'YYYY', 'YYYY-MM' or 'YYYY-MM-DD'; anything else yields 0.
    """
    if not release_date:
        return 0
    parts = release_date.split("-")
    try:
        year = int(parts[0])
        month = int(parts[1]) if len(parts) > 1 else 1
    except ValueError:
        return 0
    if not 1 <= month <= 12:
        return 0

    now = now or datetime.now(timezone.utc)
    months_old = (now.year - year) * 12 + now.month - month
    if months_old < 0:
        months_old = 0

    decay = 0.5 ** (months_old / RECENCY_HALF_LIFE_MONTHS)
    return int(round(MAX_RECENCY_BOOST * decay))


def _items(response: Optional[Dict[str, Any]], key: str) -> Iterable[Dict[str, Any]]:
    if not response:
        return []
    section = response.get(key) or {}
    return [item for item in (section.get("items") or []) if item]


def _artist_names(entity: Dict[str, Any]) -> str:
    names = [(a or {}).get("name") or "Unknown Artist" for a in entity.get("artists") or [] if a]
    return ", ".join(names)


def _available_in(entity: Dict[str, Any], market: Optional[str]) -> bool:
    if not market:
        return True
    markets = entity.get("available_markets")
    if markets is None:
        return True
    return market in markets


class CandidateSearchEngine:
    """Fans out one query per category and normalizes hits into candidates."""

    def __init__(self,
                 service: MusicService,
                 max_workers: int = len(SEARCH_CATEGORIES),
                 limit: int = 20,
                 clock: Optional[Callable[[], datetime]] = None):
        self.service = service
        self.max_workers = max_workers
        self.limit = limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def search(self,
               query: str,
               market: Optional[str] = None,
               user_id: Optional[str] = None,
               original_type: Optional[str] = None) -> List[Candidate]:
        """Return the unfiltered union of candidates from all categories."""
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                category: pool.submit(self._search_category, query, category, market)
                for category in SEARCH_CATEGORIES
            }
            # Join all categories; AuthError from any category propagates here.
            responses = {category: future.result() for category, future in futures.items()}

        extractors = {
            "track": lambda r: self._extract_tracks(r, market),
            "album": lambda r: self._extract_albums(r, market),
            "artist": self._extract_artists,
            "playlist": lambda r: self._extract_playlists(r, user_id, original_type),
            "show": lambda r: self._extract_shows(r, market),
            "episode": self._extract_episodes,
        }

        candidates: List[Candidate] = []
        for category in SEARCH_CATEGORIES:
            try:
                candidates.extend(extractors[category](responses[category]))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Malformed {category} response for '{query}': {e}")
        logger.debug(f"Search for '{query}' produced {len(candidates)} candidates")
        return candidates

    def _search_category(self, query: str, category: str,
                         market: Optional[str]) -> Optional[Dict[str, Any]]:
        try:
            return self.service.search(query, category, market=market, limit=self.limit)
        except TransientNetworkError as e:
            logger.warning(f"{category} search failed for '{query}': {e}")
            return None

    def _extract_tracks(self, response, market: Optional[str]) -> List[Candidate]:
        out = []
        for track in _items(response, "tracks"):
            if not track.get("uri"):
                continue
            if not _available_in(track, market):
                logger.info(f"Skipping Track '{track.get('name')}' - not available in {market}")
                continue
            album_name = (track.get("album") or {}).get("name") or "Unknown Album"
            out.append(Candidate(
                uri=track["uri"],
                friendly_name=f"Track: {track.get('name') or 'Unknown Track'} by {_artist_names(track)} (Album: {album_name})",
                type="track",
                popularity=int(track.get("popularity") or 0),
                priority=2,
            ))
        return out

    def _extract_albums(self, response, market: Optional[str]) -> List[Candidate]:
        out = []
        now = self._clock()
        for album in _items(response, "albums"):
            if not album.get("uri"):
                continue
            if not _available_in(album, market):
                logger.info(f"Skipping Album '{album.get('name')}' - not available in {market}")
                continue
            out.append(Candidate(
                uri=album["uri"],
                friendly_name=f"Album: {album.get('name') or 'Unknown Album'} by {_artist_names(album)}",
                type="album",
                popularity=calculate_recency_boost(album.get("release_date"), now),
                priority=1,
            ))
        return out

    def _extract_artists(self, response) -> List[Candidate]:
        out = []
        for artist in _items(response, "artists"):
            if not artist.get("uri"):
                continue
            out.append(Candidate(
                uri=artist["uri"],
                friendly_name=f"Artist: {artist.get('name') or 'Unknown Artist'}",
                type="artist",
                popularity=int(artist.get("popularity") or 0),
                priority=0,
            ))
        return out

    def _extract_playlists(self, response, user_id: Optional[str],
                           original_type: Optional[str]) -> List[Candidate]:
        out = []
        for playlist in _items(response, "playlists"):
            if not playlist.get("uri"):
                continue
            owner = playlist.get("owner") or {}
            owner_id = (owner.get("id") or "").lower()
            is_official = owner_id == OFFICIAL_OWNER_ID
            is_user_owned = bool(user_id) and owner_id == user_id.lower()

            popularity = 0
            if is_official:
                popularity = OFFICIAL_PLAYLIST_POPULARITY
            elif is_user_owned:
                # Genre lookups prefer official genre playlists over the user's own
                popularity = -OWNED_PLAYLIST_BOOST if original_type == "genre" else OWNED_PLAYLIST_BOOST

            owner_name = owner.get("display_name") or "Unknown Owner"
            out.append(Candidate(
                uri=playlist["uri"],
                friendly_name=f"Playlist: {playlist.get('name') or 'Unknown Playlist'} by {owner_name}",
                type="playlist",
                popularity=popularity,
                priority=1,
                is_official=is_official,
            ))
        return out

    def _extract_shows(self, response, market: Optional[str]) -> List[Candidate]:
        out = []
        for show in _items(response, "shows"):
            if not show.get("uri"):
                continue
            if not _available_in(show, market):
                logger.info(f"Skipping Show '{show.get('name')}' - not available in {market}")
                continue
            out.append(Candidate(
                uri=show["uri"],
                friendly_name=f"Show: {show.get('name') or 'Unknown Show'} by {show.get('publisher') or 'Unknown Publisher'}",
                type="show",
                popularity=0,
                priority=1,
            ))
        return out

    def _extract_episodes(self, response) -> List[Candidate]:
        out = []
        for episode in _items(response, "episodes"):
            if not episode.get("uri"):
                continue
            out.append(Candidate(
                uri=episode["uri"],
                friendly_name=f"Episode: {episode.get('name') or 'Unknown Episode'}",
                type="episode",
                popularity=0,
                priority=2,
            ))
        return out
