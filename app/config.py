"""
Service configuration.

Values come from environment variables, optionally loaded from a .env file
in the project root.
"""
import os
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)


def _get_float_env(key: str, default: float) -> float:
    """Get a float value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            pass
    return default


def _get_int_env(key: str, default: int) -> int:
    """Get an int value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            pass
    return default


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_BASE_URL = 'https://api.stormglass.io/v2'

# Timeout for Stormglass requests (in seconds)
DEFAULT_TIMEOUT_SECONDS = 10.0

# Maximum response size accepted from the upstream API (1 MB)
DEFAULT_MAX_RESPONSE_SIZE = 1 * 1024 * 1024

# Rate limit for the tides endpoint (slowapi syntax)
DEFAULT_RATE_LIMIT = '30/minute'


ApiKeyListener = Callable[[str], None]


class Settings:
    """
    Runtime settings for the tide service.

    The Stormglass API key can be replaced at runtime; listeners registered
    with `subscribe` are told about the new key so they can refetch.
    """

    def __init__(
        self,
        api_key: str = '',
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_response_size: int = DEFAULT_MAX_RESPONSE_SIZE,
        rate_limit: str = DEFAULT_RATE_LIMIT,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout_seconds = timeout_seconds
        self.max_response_size = max_response_size
        self.rate_limit = rate_limit
        self._listeners: List[ApiKeyListener] = []

    @classmethod
    def from_env(cls) -> 'Settings':
        """Build settings from environment variables."""
        return cls(
            api_key=os.environ.get('STORMGLASS_API_KEY', ''),
            base_url=os.environ.get('STORMGLASS_BASE_URL', DEFAULT_BASE_URL),
            timeout_seconds=_get_float_env('TIDE_API_TIMEOUT', DEFAULT_TIMEOUT_SECONDS),
            max_response_size=_get_int_env('TIDE_MAX_RESPONSE_SIZE', DEFAULT_MAX_RESPONSE_SIZE),
            rate_limit=os.environ.get('TIDE_RATE_LIMIT', DEFAULT_RATE_LIMIT),
        )

    @property
    def api_key(self) -> str:
        return self._api_key

    @property
    def masked_api_key(self) -> Optional[str]:
        """Key shortened for logs, e.g. 'abcd1234...wxyz'."""
        if not self._api_key:
            return None
        if len(self._api_key) <= 12:
            return '***'
        return f"{self._api_key[:8]}...{self._api_key[-4:]}"

    def update_api_key(self, new_key: str) -> None:
        """Replace the API key and notify listeners."""
        self._api_key = new_key.strip()
        for listener in list(self._listeners):
            listener(self._api_key)

    def subscribe(self, listener: ApiKeyListener) -> Callable[[], None]:
        """
        Register a callback for API key changes.

        Returns:
            A function that removes the callback again
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
