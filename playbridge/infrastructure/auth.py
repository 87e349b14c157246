import json
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import requests
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from playbridge.crosscutting.config import Settings, get_spotify_scope_string
from playbridge.domain.entities import AuthToken
from playbridge.domain.errors import AuthError, ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_URL = 'https://accounts.spotify.com/api/token'
# Refresh slightly early so a token never expires mid-request
EXPIRY_MARGIN = timedelta(seconds=60)


def token_path_for_user(path: str, user_id: str) -> str:
    """Insert the user id before the .json suffix: tokens.json -> tokens.<user>.json."""
    if not path.endswith('.json'):
        raise ConfigurationError("Token path must end with .json")
    if not user_id:
        return path
    return f"{path[:-5]}.{user_id}.json"


class TokenManager:
    """Owns the token file and hands out valid access tokens.

    Refreshes lazily through spotipy's OAuth helper and persists every new
    token. Safe to share between the monitor thread and the dispatcher.
    """

    def __init__(self,
                 settings: Settings,
                 token_path: Optional[str] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 oauth_factory: Optional[Callable[[], SpotifyOAuth]] = None):
        """Initialize token manager.

        Args:
            settings: Validated settings with client credentials
            token_path: Token file override (e.g. a per-user path)
            clock: Returns the current aware datetime
            oauth_factory: Builds the SpotifyOAuth helper used for refresh and authorize URLs
        """
        self.settings = settings
        self.token_path = token_path or settings.token_path
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._oauth_factory = oauth_factory or self._default_oauth
        self._token: Optional[AuthToken] = None
        self._force_refresh = False
        self._lock = threading.Lock()

    def _default_oauth(self) -> SpotifyOAuth:
        return SpotifyOAuth(
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            redirect_uri=self.settings.redirect_uri,
            scope=get_spotify_scope_string(),
            cache_handler=MemoryCacheHandler(),
            open_browser=False,
        )

    def load_token(self) -> Optional[AuthToken]:
        """Load token from the token file, None when absent or unreadable."""
        if not os.path.exists(self.token_path):
            return None

        try:
            with open(self.token_path, 'r') as f:
                return AuthToken.from_json(json.load(f))
        except (json.JSONDecodeError, IOError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load token from {self.token_path}: {e}")
            return None

    def save_token(self, token: AuthToken) -> None:
        """Save token to the token file, creating its directory."""
        directory = os.path.dirname(self.token_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(self.token_path, 'w') as f:
            json.dump(token.to_json(), f, indent=2)

        self._token = token
        logger.debug(f"Token saved to {self.token_path}")

    def get_valid_access_token(self) -> str:
        """Return a usable access token, refreshing it when expired.

        Raises:
            AuthError: when no token is stored or the refresh fails
        """
        with self._lock:
            token = self._token or self.load_token()
            if token is None:
                raise AuthError("No Spotify token found. Run 'playbridge auth' to authorize.")

            if self._force_refresh or token.is_expired(self._clock() + EXPIRY_MARGIN):
                token = self._refresh(token)
                self._force_refresh = False

            self._token = token
            return token.access_token

    def invalidate(self) -> None:
        """Force a refresh on the next access (after a 401)."""
        with self._lock:
            self._force_refresh = True

    def _refresh(self, token: AuthToken) -> AuthToken:
        if not token.refresh_token:
            raise AuthError("Spotify token expired and no refresh token is available")

        logger.info("Refreshing Spotify access token...")
        try:
            token_info = self._oauth_factory().refresh_access_token(token.refresh_token)
        except (SpotifyOauthError, requests.RequestException) as e:
            raise AuthError(f"Failed to refresh Spotify token: {e}")

        if not token_info or 'access_token' not in token_info:
            raise AuthError("Failed to refresh Spotify token: invalid response")

        refreshed = self._token_from_response(token_info, fallback_refresh=token.refresh_token)
        self.save_token(refreshed)
        logger.info("Spotify access token refreshed successfully")
        return refreshed

    def _token_from_response(self, data: Dict[str, Any],
                             fallback_refresh: Optional[str] = None) -> AuthToken:
        if data.get('expires_at'):
            expires_at = datetime.fromtimestamp(int(data['expires_at']), tz=timezone.utc)
        else:
            expires_at = self._clock() + timedelta(seconds=int(data.get('expires_in', 3600)))
        return AuthToken(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token') or fallback_refresh,
            expires_at=expires_at,
        )

    def get_authorize_url(self, state: Optional[str] = None) -> str:
        """Build the authorization URL for the code flow."""
        return self._oauth_factory().get_authorize_url(state=state)

    def exchange_code(self, code: str) -> AuthToken:
        """Exchange an authorization code for tokens and persist them.

        Raises:
            AuthError: when the token endpoint rejects the code
        """
        if not code:
            raise AuthError("Missing authorization code")

        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.settings.redirect_uri,
            'client_id': self.settings.client_id,
            'client_secret': self.settings.client_secret,
        }

        try:
            response = requests.post(TOKEN_URL, data=data, timeout=15)
        except requests.RequestException as e:
            raise AuthError(f"Token exchange failed: {e}")

        if response.status_code != 200:
            logger.error(f"Token exchange failed: {response.status_code} - {response.text}")
            raise AuthError(f"Token exchange failed with status {response.status_code}")

        token = self._token_from_response(response.json())
        with self._lock:
            self.save_token(token)
            self._force_refresh = False
        logger.info("OAuth tokens saved successfully")
        return token
