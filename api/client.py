"""Authenticated API client with retry, timeout and response caching."""
import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import unquote

import requests
from bs4 import BeautifulSoup

from api.errors import (
    MalformedResponseError,
    NetworkError,
    NetworkUnavailableError,
    RequestError,
    RequestTimeoutError,
    UnauthorizedError,
    error_for_status,
)
from api.result import Err, Ok, Result
from processor.models import CacheEntry
from storage.local_storage import LocalStorage

logger = logging.getLogger(__name__)


@dataclass
class SyncEnvelope:
    """Response of the full-dataset sync endpoint."""
    success: bool
    events: Optional[List[Dict[str, Any]]] = None
    wishlist: Optional[List[Dict[str, Any]]] = None
    message: Optional[str] = None


def parse_sync_envelope(payload: Any) -> SyncEnvelope:
    """
    Validate the {success, data: {events, wishlist}, message} shape.

    A collection absent from 'data' is returned as None.

    Raises:
        MalformedResponseError: If the payload does not have the expected shape
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('success'), bool):
        raise MalformedResponseError("Sync response missing boolean 'success'")

    message = payload.get('message')
    if not payload['success']:
        return SyncEnvelope(success=False, message=message)

    data = payload.get('data')
    if not isinstance(data, dict):
        raise MalformedResponseError("Sync response missing 'data' object")

    collections = {}
    for name in ('events', 'wishlist'):
        value = data.get(name)
        if value is not None and not isinstance(value, list):
            raise MalformedResponseError(f"Sync response '{name}' is not a list")
        collections[name] = value

    return SyncEnvelope(success=True, message=message, **collections)


class ApiClient:
    """Client for the mobile API."""

    SYNC_ENDPOINT = '/mobile/v1/sync'
    CACHEABLE_ENDPOINTS = ('/mobile/v1/sync', '/mobile/v1/events', '/mobile/v1/wishlist')
    MUTATING_METHODS = ('POST', 'PUT', 'PATCH', 'DELETE')
    XSRF_PATTERN = re.compile(r'XSRF-TOKEN=([^;]+)')
    USER_AGENT = 'ConquistaMaisApp/1.0.0 (Python)'
    HEALTH_TIMEOUT = 5
    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        storage: LocalStorage,
        base_url: str,
        timeout: float = 30,
        max_retries: int = 3,
        retry_backoff: float = 1,
        cache_ttl: float = 300,
        session: Optional[requests.Session] = None,
        monitor=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the API client.

        Args:
            storage: Storage holding the session cookie
            base_url: API root, e.g. https://host/api
            timeout: Per-attempt deadline in seconds, covering connect and full body read
            max_retries: Maximum attempts per request
            retry_backoff: Delay before the second attempt; doubles each attempt
            cache_ttl: Lifetime of cached GET responses in seconds
            session: Optional requests session
            monitor: Optional NetworkMonitor consulted before uncached requests
            sleep: Function used to wait between attempts
            clock: Monotonic clock used for cache expiry and request deadlines
        """
        self.storage = storage
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.cache_ttl = cache_ttl
        self.session = session or requests.Session()
        self.monitor = monitor
        self._sleep = sleep
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._cache_lock = threading.Lock()

    @classmethod
    def from_config(cls, config, storage: LocalStorage, **kwargs) -> 'ApiClient':
        return cls(
            storage=storage,
            base_url=config.api_url,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
            cache_ttl=config.cache_ttl,
            **kwargs
        )

    def request(
        self,
        endpoint: str,
        method: str = 'GET',
        body: Any = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Result:
        """
        Make an authenticated request with caching and retries.

        Network, timeout and 5xx failures are retried with exponential
        backoff. Other 4xx responses fail immediately; 401 additionally
        clears the session cookie and the response cache.

        Args:
            endpoint: Path below the API root
            method: HTTP method
            body: JSON-serializable request body
            timeout: Per-attempt deadline overriding the default; it bounds
                the connect and the whole body read, not each socket read
            headers: Extra request headers

        Returns:
            Ok(payload) or Err(RequestError)
        """
        method = method.upper()
        url = f"{self.base_url}{endpoint}"
        start_time = time.time()
        cacheable = method == 'GET' and self._is_cacheable_endpoint(endpoint)

        logger.info(f"API Request: {method} {endpoint}")

        if cacheable:
            cached = self._get_cached_response(endpoint)
            if cached is not None:
                logger.info(f"Using cached response for: {endpoint}")
                return Ok(cached)

        if self.monitor is not None and not cacheable and not self.monitor.current().is_connected:
            logger.warning(f"Offline and {endpoint} is not cacheable")
            return Err(NetworkUnavailableError(
                f"No network connection for {method} {endpoint}"
            ))

        last_error: Optional[RequestError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                payload = self._make_request_attempt(
                    url, endpoint, method, body, timeout, headers, attempt
                )
            except UnauthorizedError as e:
                logger.warning("Session expired - clearing authentication data")
                self._handle_unauthorized()
                return Err(e)
            except RequestError as e:
                last_error = e

                if not e.retryable:
                    logger.error(
                        f"{e.kind} ({e.status}) for {endpoint} - not retrying: {e}"
                    )
                    return Err(e)

                if attempt == self.max_retries:
                    break

                # Calculate exponential backoff delay
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"Request failed (attempt {attempt}/{self.max_retries}): {e}. "
                    f"Retrying in {delay} seconds...",
                    extra={'endpoint': endpoint, 'status': e.status, 'error_type': e.kind}
                )
                self._sleep(delay)
                continue

            if cacheable:
                self._cache_response(endpoint, payload)
            return Ok(payload)

        duration = time.time() - start_time
        logger.error(
            f"All {self.max_retries} attempts failed for {endpoint} "
            f"({duration:.2f}s). Last error: {last_error}"
        )
        return Err(last_error)

    def _make_request_attempt(
        self,
        url: str,
        endpoint: str,
        method: str,
        body: Any,
        timeout: Optional[float],
        extra_headers: Optional[Dict[str, str]],
        attempt: int
    ) -> Any:
        """
        Perform a single request attempt.

        Returns:
            Parsed JSON payload, or text for non-JSON responses

        Raises:
            RequestError: Classified failure of this attempt
        """
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': self.USER_AGENT,
            'X-Requested-With': 'XMLHttpRequest'
        }
        headers.update(extra_headers or {})

        auth_cookie = self.storage.get_auth_cookie()
        if auth_cookie:
            headers['Cookie'] = auth_cookie

            if method in self.MUTATING_METHODS:
                xsrf_token = self._extract_xsrf_token(auth_cookie)
                if xsrf_token:
                    headers['X-XSRF-TOKEN'] = xsrf_token
                    logger.debug(f"XSRF token added to {method} {endpoint}")
                else:
                    logger.warning(f"XSRF token not found in cookie for {method} {endpoint}")
        else:
            logger.warning("No authentication cookie found")

        logger.debug(
            f"Attempt {attempt}/{self.max_retries}: {method} {url}",
            extra={'headers': self._sanitize_headers(headers)}
        )

        limit = timeout or self.timeout
        deadline = self._clock() + limit
        try:
            with self.session.request(
                method,
                url,
                headers=headers,
                json=body,
                timeout=limit,
                stream=True
            ) as response:
                content = self._read_body(response, deadline)
        except requests.Timeout as e:
            raise RequestTimeoutError(f"Request timeout: {method} {endpoint}") from e
        except requests.RequestException as e:
            raise NetworkError(f"Network request failed: {e}") from e

        if content is None:
            raise RequestTimeoutError(
                f"Request timeout: {method} {endpoint} exceeded {limit}s"
            )

        data = self._parse_body(response, content)

        if not response.ok:
            raise error_for_status(
                response.status_code,
                self._error_message(response, data),
                response=data
            )

        logger.info(f"Request succeeded: {endpoint} ({response.status_code})")
        return data

    def _read_body(self, response: requests.Response, deadline: float) -> Optional[bytes]:
        """
        Read the streamed body, giving up once the deadline has passed.

        requests applies its timeout to each socket read, so a server that
        trickles bytes is bounded here instead.

        Returns:
            Body bytes, or None if the deadline passed before the end
        """
        chunks = []
        for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
            chunks.append(chunk)
            if self._clock() > deadline:
                return None
        return b''.join(chunks)

    def _parse_body(self, response: requests.Response, content: bytes) -> Any:
        try:
            text = content.decode(response.encoding or 'utf-8', errors='replace')
        except LookupError:
            text = content.decode('utf-8', errors='replace')
        content_type = response.headers.get('Content-Type', '')
        if 'application/json' not in content_type:
            if response.ok:
                logger.warning(f"Response is not JSON: {content_type or 'no content type'}")
            return text

        try:
            return json.loads(text)
        except ValueError as e:
            if response.ok:
                raise MalformedResponseError(
                    f"Invalid JSON response from server: {e}",
                    status=response.status_code
                ) from e
            return text

    def _error_message(self, response: requests.Response, data: Any) -> str:
        fallback = f"HTTP {response.status_code}: {response.reason}"

        if isinstance(data, dict):
            return str(data.get('message') or data.get('error') or fallback)

        if isinstance(data, str) and data.strip():
            if 'html' in response.headers.get('Content-Type', ''):
                soup = BeautifulSoup(data, 'html.parser')
                if soup.title and soup.title.get_text(strip=True):
                    text = soup.title.get_text(strip=True)
                else:
                    text = soup.get_text(' ', strip=True)
                return f"{fallback} - {text[:200]}" if text else fallback
            return data.strip()[:200]

        return fallback

    def _extract_xsrf_token(self, cookie: str) -> Optional[str]:
        match = self.XSRF_PATTERN.search(cookie)
        return unquote(match.group(1)) if match else None

    def _handle_unauthorized(self) -> None:
        self.storage.clear_auth_cookie()
        self._clear_cache()
        logger.info("Authentication data cleared - reauthentication required")

    def _get_cached_response(self, endpoint: str) -> Any:
        with self._cache_lock:
            entry = self._cache.get(endpoint)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[endpoint]
                return None
            return entry.payload

    def _cache_response(self, endpoint: str, payload: Any) -> None:
        with self._cache_lock:
            self._cache[endpoint] = CacheEntry(
                endpoint_key=endpoint,
                payload=payload,
                expires_at=self._clock() + self.cache_ttl
            )

    def _clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        logger.info("API cache cleared")

    def _is_cacheable_endpoint(self, endpoint: str) -> bool:
        return any(cacheable in endpoint for cacheable in self.CACHEABLE_ENDPOINTS)

    @staticmethod
    def _sanitize_headers(headers: Dict[str, str]) -> Dict[str, str]:
        sanitized = dict(headers)
        for name in ('Cookie', 'X-XSRF-TOKEN'):
            if name in sanitized:
                sanitized[name] = sanitized[name][:20] + '...'
        return sanitized

    def sync_data(self) -> Result:
        """
        Fetch the full dataset (events and wishlist) in one request.

        Returns:
            Ok(SyncEnvelope) or Err(RequestError)
        """
        logger.info("Starting full data sync request")
        result = self.request(self.SYNC_ENDPOINT)
        if not result.ok:
            return result

        try:
            envelope = parse_sync_envelope(result.value)
        except MalformedResponseError as e:
            logger.error(f"Malformed sync response: {e}")
            return Err(e)

        return Ok(envelope)

    def get_events(self, limit: Optional[int] = 50) -> Result:
        endpoint = '/mobile/v1/events'
        if limit:
            endpoint += f'?limit={limit}'
        return self.request(endpoint)

    def get_wishlist(self) -> Result:
        return self.request('/mobile/v1/wishlist')

    def add_to_wishlist(self, item_type: str, item_id: Any) -> Result:
        logger.info(f"Adding to wishlist: {item_type} #{item_id}")
        return self.request(
            '/mobile/v1/wishlist/add',
            method='POST',
            body={'type': item_type, 'item_id': item_id}
        )

    def remove_from_wishlist(self, wishlist_id: Any) -> Result:
        logger.info(f"Removing from wishlist: #{wishlist_id}")
        return self.request(f'/mobile/v1/wishlist/remove/{wishlist_id}', method='DELETE')

    def sync_wishlist(self, items: List[Dict[str, Any]]) -> Result:
        """Push a local wishlist snapshot to the server."""
        return self.request(
            '/mobile/v1/wishlist/sync',
            method='POST',
            body={'wishlist': items}
        )

    def check_health(self) -> Result:
        return self.request('/health', timeout=self.HEALTH_TIMEOUT)

    def clear_all_caches(self) -> None:
        self._clear_cache()

    def stats(self) -> Dict[str, Any]:
        """Return cache size and configuration."""
        with self._cache_lock:
            cache_size = len(self._cache)
        return {
            'cache_size': cache_size,
            'base_url': self.base_url,
            'timeout': self.timeout,
            'max_retries': self.max_retries,
            'retry_backoff': self.retry_backoff,
            'cache_ttl': self.cache_ttl
        }
