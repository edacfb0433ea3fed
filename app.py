"""Wiring, logging setup and one-shot entry point for the offline sync engine."""
import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from api.client import ApiClient
from config import EngineConfig
from images.image_fetcher import ImageFetcher
from network.monitor import NetworkMonitor
from network.probes import ConnectivityProbe, HttpReachabilityProbe
from processor.models import SyncStatus
from storage.dynamodb_store import DynamoDBStore
from storage.key_value_store import InMemoryStore, KeyValueStore
from storage.local_storage import LocalStorage
from sync.orchestrator import SyncOrchestrator

# Attributes every LogRecord has; anything else came in through `extra`
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Engine:
    """Explicitly constructed set of engine components."""
    config: EngineConfig
    storage: LocalStorage
    monitor: NetworkMonitor
    client: ApiClient
    image_fetcher: ImageFetcher
    orchestrator: SyncOrchestrator

    def start(self) -> None:
        self.orchestrator.start()

    def close(self) -> None:
        self.orchestrator.stop()
        self.monitor.close()

    def capture_session(self, cookie: str) -> bool:
        """Store the session cookie handed over by the embedded web content."""
        return self.storage.save_auth_cookie(cookie)


def build_engine(
    config: Optional[EngineConfig] = None,
    store: Optional[KeyValueStore] = None,
    probe: Optional[ConnectivityProbe] = None,
    session: Optional[requests.Session] = None
) -> Engine:
    """
    Construct every component and inject its collaborators.

    Args:
        config: Engine configuration (read from the environment if omitted)
        store: Key-value backend; DynamoDB when TABLE_NAME is set, else in-memory
        probe: Connectivity probe; HTTP reachability of the base URL if omitted
        session: Shared requests session

    Returns:
        Engine with all components wired but not started
    """
    config = config or EngineConfig.from_env()
    session = session or requests.Session()

    if store is None:
        store = DynamoDBStore(config.table_name) if config.table_name else InMemoryStore()
    storage = LocalStorage(store)

    monitor = NetworkMonitor(probe or HttpReachabilityProbe(config.base_url, session=session))
    client = ApiClient.from_config(config, storage, session=session, monitor=monitor)
    image_fetcher = ImageFetcher(
        timeout=config.image_timeout,
        cooldown=config.image_cooldown,
        session=session
    )
    orchestrator = SyncOrchestrator.from_config(config, client, storage, monitor, image_fetcher)

    return Engine(
        config=config,
        storage=storage,
        monitor=monitor,
        client=client,
        image_fetcher=image_fetcher,
        orchestrator=orchestrator
    )


_STATUS_CODES = {
    SyncStatus.SUCCESS: 200,
    SyncStatus.ALREADY_RUNNING: 409,
    SyncStatus.NO_CONNECTION: 503,
    SyncStatus.FAILED: 500
}


def run_sync(event: Optional[Dict[str, Any]] = None, engine: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Run one manual sync cycle.

    Args:
        event: Optional trigger payload; 'auth_cookie' is stored before syncing
        engine: Pre-built engine; one is built from the environment if omitted

    Returns:
        Response dict with statusCode and summary statistics
    """
    event = event or {}
    owns_engine = engine is None

    if owns_engine:
        setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info("Manual sync started")

    try:
        if owns_engine:
            engine = build_engine()

        cookie = event.get('auth_cookie') or os.environ.get('SYNC_AUTH_COOKIE')
        if cookie:
            engine.capture_session(cookie)

        result = engine.orchestrator.full_sync()
        local = engine.orchestrator.get_local_data()

        body = {
            'message': f"Sync {result.status.value}",
            'statistics': result.to_dict(),
            'local_data': {
                'events': len(local.events),
                'wishlist': len(local.wishlist),
                'last_sync': local.last_sync
            },
            'client': engine.client.stats()
        }
        if result.error:
            body['error'] = result.error

        return {
            'statusCode': _STATUS_CODES[result.status],
            'body': json.dumps(body)
        }

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Manual sync failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    finally:
        if owns_engine and engine is not None:
            engine.close()


def main() -> int:
    response = run_sync()
    print(response['body'])
    return 0 if response['statusCode'] == 200 else 1


if __name__ == '__main__':
    sys.exit(main())
