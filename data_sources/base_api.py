"""
Base API Client with rate limiting and error handling.
All remote pricing clients (Scryfall, etc.) inherit from this.
"""

from typing import Optional, Dict, Any, Tuple, Union
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
import time
import logging
import threading
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from core.constants import (
    API_TIMEOUT_DEFAULT,
    RATE_LIMIT_COOLDOWN,
    RETRY_DELAY_DEFAULT,
    USER_AGENT_DEFAULT,
)

# Get logger - configuration should be done by application entrypoint, not library modules
logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when API rate limit is hit"""

    def __init__(self, retry_after: int = RETRY_DELAY_DEFAULT):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after {retry_after} seconds.")


class APIError(Exception):
    """Generic API error"""
    pass


def parse_retry_after(value: Optional[str]) -> int:
    """
    Seconds to wait according to a Retry-After header.

    The header is either a number of seconds or an HTTP-date. Anything
    missing or unparseable yields RETRY_DELAY_DEFAULT.
    """
    if value is None:
        return RETRY_DELAY_DEFAULT
    value = str(value).strip()
    try:
        return max(0, int(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable Retry-After header: {value!r}")
        return RETRY_DELAY_DEFAULT
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0, int((when - datetime.now(timezone.utc)).total_seconds()))


class RateLimiter:
    """
    Thread-safe admission gate with a single slot.

    At most one call holds the slot at a time. A caller acquiring the slot
    additionally waits until ``min_interval`` has passed since the previous
    holder released it, so consecutive calls stay spaced even when the
    remote side answers instantly.

    Usage:
        limiter = RateLimiter(min_interval=0.1)
        with limiter:
            session.get(...)
    """

    def __init__(self, min_interval: float = RATE_LIMIT_COOLDOWN):
        """
        Args:
            min_interval: Seconds between one release and the next admission
        """
        self.min_interval = min_interval
        self.last_release_time = 0.0
        self._slot = threading.Lock()
        # Guards last_release_time and the counters below
        self.lock = threading.Lock()
        self.admitted = 0
        self.total_wait = 0.0

    def acquire(self) -> None:
        """Block until the slot is free and the cooldown has elapsed."""
        self._slot.acquire()
        with self.lock:
            since_release = time.time() - self.last_release_time
            sleep_time = self.min_interval - since_release
        if sleep_time > 0:
            logger.debug(f"Rate limiting: sleeping {sleep_time:.3f}s")
            time.sleep(sleep_time)
        with self.lock:
            self.admitted += 1
            self.total_wait += max(0.0, sleep_time)

    def release(self) -> None:
        """Free the slot and start the cooldown."""
        with self.lock:
            self.last_release_time = time.time()
        self._slot.release()

    def stats(self) -> Dict[str, float]:
        """Return simple limiter metrics for observability."""
        with self.lock:
            return {
                "admitted": self.admitted,
                "total_wait": self.total_wait,
                "min_interval": self.min_interval,
            }

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


TimeoutType = Union[int, float, Tuple[int, int], Tuple[float, float]]


class BaseAPIClient:
    """
    Base class for remote API clients.
    Provides rate limiting, connection pooling and error handling.
    """

    # Connection pool settings (shared across instances)
    POOL_CONNECTIONS = 10  # Number of connection pools to cache
    POOL_MAXSIZE = 20      # Max connections per pool
    MAX_RETRIES = 3        # Retries for connection errors only
    BACKOFF_FACTOR = 0.5   # Exponential backoff multiplier

    def __init__(
            self,
            base_url: str,
            min_interval: float = RATE_LIMIT_COOLDOWN,
            user_agent: Optional[str] = None,
            timeout: TimeoutType = API_TIMEOUT_DEFAULT,
    ):
        """
        Args:
            base_url: Base URL for the API
            min_interval: Cooldown between consecutive calls in seconds
            user_agent: Custom User-Agent header
            timeout: Request timeout in seconds (or a (connect, read) tuple)
        """
        self.base_url = base_url.rstrip('/')
        self.rate_limiter = RateLimiter(min_interval=min_interval)
        self.timeout: TimeoutType = timeout  # may be int or (connect, read)

        # Scryfall asks API consumers to identify themselves
        self.user_agent = user_agent or USER_AGENT_DEFAULT

        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': self.user_agent,
            'Accept': 'application/json'
        })

        # Status codes are never retried here: a non-2xx answer is a failed
        # fetch and the caller's staleness window decides when to try again.
        retry_strategy = Retry(
            total=self.MAX_RETRIES,
            connect=self.MAX_RETRIES,
            read=0,
            status=0,
            backoff_factor=self.BACKOFF_FACTOR,
            allowed_methods=["GET", "POST"],
            raise_on_status=False
        )
        adapter = HTTPAdapter(
            pool_connections=self.POOL_CONNECTIONS,
            pool_maxsize=self.POOL_MAXSIZE,
            max_retries=retry_strategy
        )
        self.session.mount('https://', adapter)
        self.session.mount('http://', adapter)

        logger.info(
            f"Initialized {self.__class__.__name__} - Cooldown: {min_interval}s, "
            f"Timeout: {timeout}, Pool: {self.POOL_MAXSIZE}"
        )

    def _make_request(
            self,
            method: str,
            endpoint: str,
            params: Optional[Dict] = None,
            data: Optional[Dict] = None,
            timeout_override: Optional[TimeoutType] = None,
    ) -> Dict[str, Any]:
        """
        Make a rate-limited HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint (will be appended to base_url)
            params: Query parameters
            data: JSON request body (for POST/PUT)
            timeout_override: Per-request timeout

        Returns:
            JSON response as dict

        Raises:
            RateLimitExceeded: If API returns 429
            APIError: For other API errors, network failures and bad JSON
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        with self.rate_limiter:
            try:
                logger.debug(f"{method} {url} - params: {params}")

                response = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=data,
                    timeout=(timeout_override if timeout_override is not None else self.timeout)
                )
            except requests.RequestException as e:
                logger.error(f"Request failed: {e}")
                raise APIError(f"Request failed: {e}")

        # Handle rate limiting
        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get('Retry-After'))
            logger.warning(f"Rate limited! Retry after {retry_after}s")
            raise RateLimitExceeded(retry_after=retry_after)

        # Handle other errors
        if response.status_code >= 400:
            error_msg = f"API error {response.status_code}: {response.text[:200]}"
            logger.error(error_msg)
            raise APIError(error_msg)

        try:
            json_data = response.json()
        except ValueError as e:
            logger.error(f"Malformed response from {method} {endpoint}: {e}")
            raise APIError(f"Malformed response: {e}")

        logger.debug(f"Request successful: {method} {endpoint}")
        return json_data

    def get(self, endpoint: str, params: Optional[Dict] = None,
            timeout_override: Optional[TimeoutType] = None) -> Dict[str, Any]:
        """GET request wrapper"""
        return self._make_request('GET', endpoint, params=params,
                                  timeout_override=timeout_override)

    def post(self, endpoint: str, data: Optional[Dict] = None, params: Optional[Dict] = None,
             timeout_override: Optional[TimeoutType] = None) -> Dict[str, Any]:
        """POST request wrapper"""
        return self._make_request('POST', endpoint, params=params, data=data,
                                  timeout_override=timeout_override)

    def close(self):
        """Clean up resources"""
        self.session.close()
        logger.info(f"Closed {self.__class__.__name__}")

    def __enter__(self):
        """Context manager entry - returns self for use in 'with' blocks."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures session is closed."""
        self.close()
        return False  # Don't suppress exceptions
