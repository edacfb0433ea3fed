"""Sequential, throttled image downloader producing base64 text."""
import base64
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class ImageResult:
    """Outcome for one requested image URL."""
    url: str
    encoded: Optional[str]
    skipped: bool = False


class ImageFetcher:
    """
    Download images one at a time and encode them as base64.

    A cooldown is enforced between the end of one download and the start
    of the next, including across separate fetch_many calls.
    """

    MAX_IMAGE_BYTES = 5 * 1024 * 1024
    CHUNK_SIZE = 64 * 1024
    USER_AGENT = 'ConquistaMaisApp/1.0'

    def __init__(
        self,
        timeout: float = 10,
        cooldown: float = 2,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the image fetcher.

        Args:
            timeout: Per-image request timeout in seconds
            cooldown: Minimum pause between two downloads in seconds
            session: Optional requests session
            sleep: Function used to wait out the cooldown
            clock: Monotonic clock
        """
        self.timeout = timeout
        self.cooldown = cooldown
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._last_fetch_at: Optional[float] = None

    def fetch_and_encode(self, url: Optional[str]) -> Optional[str]:
        """
        Download an image and return its base64 encoding.

        The body is streamed; a declared Content-Length over
        MAX_IMAGE_BYTES is rejected before reading, and the download is
        aborted as soon as the received bytes pass the limit.

        Args:
            url: Image URL

        Returns:
            Base64 text, or None on timeout, HTTP error, non-image content
            or oversized body
        """
        if not url:
            return None

        self._wait_for_cooldown()
        logger.info(f"Downloading image: {url}")

        try:
            with self.session.get(
                url,
                timeout=self.timeout,
                headers={'Accept': 'image/*', 'User-Agent': self.USER_AGENT},
                stream=True
            ) as response:
                response.raise_for_status()

                content_type = response.headers.get('Content-Type', '')
                if not content_type.startswith('image/'):
                    logger.error(f"Invalid content type for {url}: {content_type or 'none'}")
                    return None

                content_length = response.headers.get('Content-Length')
                if content_length and content_length.isdigit() and int(content_length) > self.MAX_IMAGE_BYTES:
                    logger.error(f"Image too large ({content_length} bytes declared): {url}")
                    return None

                content = bytearray()
                for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                    content.extend(chunk)
                    if len(content) > self.MAX_IMAGE_BYTES:
                        logger.error(f"Image too large (over {self.MAX_IMAGE_BYTES} bytes): {url}")
                        return None
        except requests.Timeout:
            logger.error(f"Timeout downloading image: {url}")
            return None
        except requests.RequestException as e:
            logger.error(f"Error downloading image {url}: {e}")
            return None
        finally:
            self._last_fetch_at = self._clock()

        logger.info(f"Image downloaded: {url[:50]}...")
        return base64.b64encode(bytes(content)).decode('ascii')

    def fetch_many(self, urls: Iterable[Optional[str]], max_count: int = 5) -> List[ImageResult]:
        """
        Download up to max_count distinct images sequentially.

        Args:
            urls: Image URLs; empty values and duplicates are dropped
            max_count: Maximum number of downloads in this call

        Returns:
            One ImageResult per distinct URL, in first-seen order. URLs beyond
            max_count are returned with encoded=None and skipped=True.
        """
        unique_urls = list(dict.fromkeys(url for url in urls if url))
        if not unique_urls:
            return []

        limit = max(0, max_count)
        to_fetch = unique_urls[:limit]
        if len(unique_urls) > limit:
            logger.info(
                f"Downloading {len(to_fetch)} images (limited from {len(unique_urls)}) one at a time"
            )
        else:
            logger.info(f"Downloading {len(to_fetch)} images one at a time")

        results = [ImageResult(url=url, encoded=self.fetch_and_encode(url)) for url in to_fetch]
        results.extend(
            ImageResult(url=url, encoded=None, skipped=True) for url in unique_urls[limit:]
        )

        success_count = sum(1 for result in results if result.encoded)
        logger.info(f"Download complete: {success_count}/{len(to_fetch)} images downloaded")
        return results

    def _wait_for_cooldown(self) -> None:
        if self._last_fetch_at is None:
            return
        remaining = self.cooldown - (self._clock() - self._last_fetch_at)
        if remaining > 0:
            self._sleep(remaining)
