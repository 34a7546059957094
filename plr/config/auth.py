"""
Token storage and refresh for provider authorization

The interactive OAuth authorization flow is handled outside plr; this
module only keeps an already obtained token usable. A provider instance
owns one TokenCache: the cached token, the JSON file it persists to, and a
lock guarding the read-check-refresh-write sequence. The decision and the
construction of a refreshed token are pure functions of (old token, clock),
so they can be tested without network or sleeping.

Token file format (JSON, mode 0600):
    access_token, refresh_token, token_type, expires_at (epoch seconds), scope
"""

import json
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import requests

from ..exceptions import AuthError
from ..utils.helpers import atomic_write_text
from ..utils.logger import get_logger


# Refresh this many seconds before the real expiry
EXPIRY_BUFFER_SECONDS = 300

REQUIRED_FIELDS = ('access_token', 'refresh_token', 'expires_at')

TokenRefresher = Callable[[str], Dict[str, Any]]


def is_token_expired(token_info: Dict[str, Any], now: float, buffer: int = EXPIRY_BUFFER_SECONDS) -> bool:
    """
    Check if an access token is expired or about to expire

    Args:
        token_info: Token dictionary with ``expires_at``
        now: Current epoch time in seconds
        buffer: Safety margin in seconds

    Returns:
        True when the token must be refreshed before use
    """
    expires_at = token_info.get('expires_at')
    if expires_at is None:
        return True
    return now >= float(expires_at) - buffer


def refresh_token_info(old_token: Dict[str, Any], now: float, response: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the refreshed token from the old one and a token endpoint response

    Spotify may or may not rotate the refresh token; the old one is kept
    when the response omits it.

    Args:
        old_token: Token being replaced
        now: Epoch time the response was received
        response: Parsed token endpoint JSON

    Returns:
        New token dictionary

    Raises:
        AuthError: If the response carries no access token
    """
    if 'access_token' not in response:
        raise AuthError("Token endpoint response has no access_token")
    expires_in = int(response.get('expires_in', 3600))
    return {
        'access_token': response['access_token'],
        'token_type': response.get('token_type', old_token.get('token_type', 'Bearer')),
        'expires_in': expires_in,
        'expires_at': int(now) + expires_in,
        'refresh_token': response.get('refresh_token', old_token.get('refresh_token')),
        'scope': response.get('scope', old_token.get('scope', '')),
    }


def load_token_file(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """
    Read a stored token

    Returns:
        Token dictionary, or None when the file does not exist

    Raises:
        AuthError: If the file is unreadable or lacks required fields
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            token_data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        raise AuthError(f"Failed to read token file {path}: {e}", details={'path': str(path)}) from e

    if not isinstance(token_data, dict) or not all(key in token_data for key in REQUIRED_FIELDS):
        raise AuthError(
            f"Token file {path} is missing required fields ({', '.join(REQUIRED_FIELDS)})",
            details={'path': str(path)}
        )
    return token_data


def save_token_file(path: Union[str, Path], token_info: Dict[str, Any]) -> None:
    """Write a token atomically with owner-only permissions"""
    atomic_write_text(path, json.dumps(token_info, indent=2), mode=0o600)


class SpotifyTokenRefresher:
    """Exchanges a refresh token at the Spotify accounts endpoint"""

    def __init__(self, client_id: str, client_secret: str, token_url: str, timeout: int = 30):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout

    def __call__(self, refresh_token: str) -> Dict[str, Any]:
        """
        Request a new access token

        Raises:
            AuthError: If credentials are missing or the request fails
        """
        if not self.client_id or not self.client_secret:
            raise AuthError("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET are required to refresh the token")

        data = {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
        }
        headers = {'Content-Type': 'application/x-www-form-urlencoded'}
        try:
            response = requests.post(self.token_url, headers=headers, data=data, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise AuthError(f"Failed to refresh Spotify token: {e}") from e


class TokenCache:
    """
    Lazily refreshed access token owned by one provider instance

    Attributes:
        path: Token file location
        refresher: Callable exchanging a refresh token for a token response
        clock: Callable returning epoch seconds
    """

    def __init__(
        self,
        path: Union[str, Path],
        refresher: TokenRefresher,
        clock: Callable[[], float] = time.time
    ):
        self.path = Path(path)
        self.refresher = refresher
        self.clock = clock
        self.logger = get_logger(__name__)
        self._token: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()

    def get_access_token(self) -> str:
        """
        Return a valid access token, refreshing and persisting it if needed

        Raises:
            AuthError: If no token is stored or the refresh fails
        """
        with self._lock:
            if self._token is None:
                self._token = load_token_file(self.path)
            if self._token is None:
                raise AuthError(
                    f"No stored credentials; place an authorized token file at {self.path}",
                    details={'path': str(self.path)}
                )

            if is_token_expired(self._token, self.clock()):
                self.logger.debug("Access token expired, refreshing")
                response = self.refresher(self._token['refresh_token'])
                self._token = refresh_token_info(self._token, self.clock(), response)
                try:
                    save_token_file(self.path, self._token)
                except OSError as e:
                    raise AuthError(f"Failed to store refreshed token at {self.path}: {e}") from e

            return self._token['access_token']

    def invalidate(self) -> None:
        """Force a refresh on the next access (e.g. after an HTTP 401)"""
        with self._lock:
            if self._token is not None:
                self._token = dict(self._token, expires_at=0)
