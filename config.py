"""Engine configuration."""
import os
from dataclasses import dataclass


@dataclass
class EngineConfig:
    """Plain configuration values for the sync engine. Durations in seconds."""
    base_url: str = 'https://conquistamais.zunostudio.com.br'
    api_path: str = '/api'
    request_timeout: float = 30
    max_retries: int = 3
    retry_backoff: float = 1
    cache_ttl: float = 300
    sync_interval: float = 10
    retry_delay: float = 30
    events_image_cap: int = 3
    wishlist_image_cap: int = 2
    wishlist_image_policy: str = 'skip'
    image_timeout: float = 10
    image_cooldown: float = 2
    table_name: str = ''
    log_level: str = 'INFO'

    @property
    def api_url(self) -> str:
        return self.base_url.rstrip('/') + self.api_path

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """
        Read configuration from SYNC_* environment variables.

        Returns:
            EngineConfig with defaults for unset variables
        """
        defaults = cls()
        return cls(
            base_url=os.environ.get('SYNC_BASE_URL', defaults.base_url),
            api_path=os.environ.get('SYNC_API_PATH', defaults.api_path),
            request_timeout=float(os.environ.get('SYNC_REQUEST_TIMEOUT', defaults.request_timeout)),
            max_retries=int(os.environ.get('SYNC_MAX_RETRIES', defaults.max_retries)),
            retry_backoff=float(os.environ.get('SYNC_RETRY_BACKOFF', defaults.retry_backoff)),
            cache_ttl=float(os.environ.get('SYNC_CACHE_TTL', defaults.cache_ttl)),
            sync_interval=float(os.environ.get('SYNC_INTERVAL', defaults.sync_interval)),
            retry_delay=float(os.environ.get('SYNC_RETRY_DELAY', defaults.retry_delay)),
            events_image_cap=int(os.environ.get('SYNC_EVENTS_IMAGE_CAP', defaults.events_image_cap)),
            wishlist_image_cap=int(os.environ.get('SYNC_WISHLIST_IMAGE_CAP', defaults.wishlist_image_cap)),
            wishlist_image_policy=os.environ.get('SYNC_WISHLIST_IMAGE_POLICY', defaults.wishlist_image_policy),
            image_timeout=float(os.environ.get('SYNC_IMAGE_TIMEOUT', defaults.image_timeout)),
            image_cooldown=float(os.environ.get('SYNC_IMAGE_COOLDOWN', defaults.image_cooldown)),
            table_name=os.environ.get('TABLE_NAME', defaults.table_name),
            log_level=os.environ.get('LOG_LEVEL', defaults.log_level)
        )
