"""Sync orchestrator driving full-dataset synchronization."""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from api.client import ApiClient
from api.errors import RequestError
from images.image_fetcher import ImageFetcher
from network.monitor import NetworkMonitor, Subscription
from processor.event_processor import EventProcessor
from processor.models import (
    ConnectivityState,
    Event,
    LocalData,
    SyncResult,
    SyncState,
    SyncStatus,
)
from storage.local_storage import LocalStorage, StorageError
from sync.timer import PeriodicTimer

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Server reported an unsuccessful sync."""


class SyncOrchestrator:
    """
    State machine that pulls the full dataset and persists it locally.

    At most one cycle runs at a time. While connected, a periodic timer
    triggers cycles; it is cancelled as soon as the device goes offline.
    """

    WISHLIST_POLICIES = ('skip', 'cap')

    def __init__(
        self,
        client: ApiClient,
        storage: LocalStorage,
        monitor: NetworkMonitor,
        image_fetcher: ImageFetcher,
        processor: Optional[EventProcessor] = None,
        sync_interval: float = 10,
        retry_delay: float = 30,
        events_image_cap: int = 3,
        wishlist_image_cap: int = 2,
        wishlist_image_policy: str = 'skip',
        timer_factory: Callable[[float, Callable[[], None]], PeriodicTimer] = PeriodicTimer,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the orchestrator.

        Args:
            client: API client used for the sync request
            storage: Local storage for snapshots and last-sync timestamp
            monitor: Network monitor driving automatic sync
            image_fetcher: Downloader for entity images
            processor: Entity simplifier
            sync_interval: Seconds between automatic cycles
            retry_delay: Seconds an automatic cycle waits after a failure
            events_image_cap: Maximum event images downloaded per cycle
            wishlist_image_cap: Maximum wishlist images downloaded per cycle
            wishlist_image_policy: 'skip' downloads nothing when more than the
                cap are missing; 'cap' downloads up to the cap
            timer_factory: Builds the periodic timer
            clock: Monotonic clock
        """
        if wishlist_image_policy not in self.WISHLIST_POLICIES:
            raise ValueError(f"Unknown wishlist image policy: {wishlist_image_policy}")

        self.client = client
        self.storage = storage
        self.monitor = monitor
        self.image_fetcher = image_fetcher
        self.processor = processor or EventProcessor()
        self.sync_interval = sync_interval
        self.retry_delay = retry_delay
        self.events_image_cap = events_image_cap
        self.wishlist_image_cap = wishlist_image_cap
        self.wishlist_image_policy = wishlist_image_policy
        self._timer_factory = timer_factory
        self._clock = clock

        self._state = SyncState.IDLE
        self._in_flight = threading.Lock()
        self._sync_in_progress = False
        self._timer: Optional[PeriodicTimer] = None
        self._timer_lock = threading.Lock()
        self._subscription: Optional[Subscription] = None
        self._failed_at: Optional[float] = None
        self.last_sync: Optional[str] = None
        self.last_error: Optional[str] = None

    @classmethod
    def from_config(cls, config, client, storage, monitor, image_fetcher, **kwargs) -> 'SyncOrchestrator':
        return cls(
            client=client,
            storage=storage,
            monitor=monitor,
            image_fetcher=image_fetcher,
            sync_interval=config.sync_interval,
            retry_delay=config.retry_delay,
            events_image_cap=config.events_image_cap,
            wishlist_image_cap=config.wishlist_image_cap,
            wishlist_image_policy=config.wishlist_image_policy,
            **kwargs
        )

    # Lifecycle

    def start(self) -> None:
        """Subscribe to connectivity changes and evaluate the timer once."""
        if self._subscription is None:
            self._subscription = self.monitor.subscribe(self._handle_network_change)
        self._handle_network_change(self.monitor.force_check())
        logger.info("SyncOrchestrator started")

    def stop(self) -> None:
        """Unsubscribe and cancel the timer. Safe to call repeatedly."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self.stop_auto_sync()
        logger.info("SyncOrchestrator stopped")

    def _handle_network_change(self, state: ConnectivityState) -> None:
        if state.is_connected:
            self.start_auto_sync()
        else:
            self.stop_auto_sync()

    def start_auto_sync(self) -> None:
        """Start the periodic timer unless one is already running."""
        with self._timer_lock:
            if self._timer is not None and self._timer.is_running:
                return
            self._timer = self._timer_factory(self.sync_interval, self._on_tick)
            self._timer.start()
        logger.info(f"Automatic sync started (every {self.sync_interval}s)")

    def stop_auto_sync(self) -> None:
        with self._timer_lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            logger.info("Automatic sync stopped")

    @property
    def auto_sync_active(self) -> bool:
        timer = self._timer
        return timer is not None and timer.is_running

    def _on_tick(self) -> None:
        state = self._state
        if state == SyncState.SYNCING or self._sync_in_progress:
            logger.debug("Tick dropped: sync in progress")
            return

        if state == SyncState.ERROR and self._failed_at is not None:
            elapsed = self._clock() - self._failed_at
            if elapsed < self.retry_delay:
                logger.debug(f"Tick dropped: retrying in {self.retry_delay - elapsed:.0f}s")
                return

        self.full_sync()

    # Sync cycle

    def full_sync(self) -> SyncResult:
        """
        Run one synchronization cycle.

        Never raises; failures are reported in the returned SyncResult and
        leave the orchestrator in the ERROR state until the next
        successful cycle.

        Returns:
            SyncResult with status success, no_connection, already_running or failed
        """
        if not self._in_flight.acquire(blocking=False):
            logger.info("Sync already running")
            return SyncResult(status=SyncStatus.ALREADY_RUNNING)

        start_time = time.time()
        self._sync_in_progress = True
        try:
            connectivity = self.monitor.force_check()
            if not connectivity.is_connected:
                logger.info("Sync skipped: no network connection")
                return SyncResult(
                    status=SyncStatus.NO_CONNECTION,
                    duration_seconds=time.time() - start_time,
                    error=connectivity.error
                )

            self._set_state(SyncState.SYNCING)
            logger.info("Sync started")

            try:
                result = self._run_cycle(start_time)
            except Exception as e:
                duration = time.time() - start_time
                message = str(e) or type(e).__name__
                self.last_error = message
                self._failed_at = self._clock()
                self._set_state(SyncState.ERROR)
                logger.error(
                    f"Sync failed: {message}",
                    extra={
                        'error_type': type(e).__name__,
                        'duration_seconds': round(duration, 2)
                    },
                    exc_info=not isinstance(e, (RequestError, StorageError, SyncError))
                )
                return SyncResult(
                    status=SyncStatus.FAILED,
                    duration_seconds=duration,
                    error=message
                )

            self.last_error = None
            self._failed_at = None
            self._set_state(SyncState.IDLE)
            logger.info(
                "Sync completed successfully",
                extra=result.to_dict()
            )
            return result
        finally:
            self._sync_in_progress = False
            self._in_flight.release()

    def _run_cycle(self, start_time: float) -> SyncResult:
        response = self.client.sync_data()
        if not response.ok:
            raise response.error

        envelope = response.value
        if not envelope.success:
            raise SyncError(envelope.message or 'Sync failed')

        previous_events = self.storage.get_events()
        previous_wishlist = self.storage.get_wishlist()
        image_index = self.processor.build_image_index(previous_events, previous_wishlist)
        images_downloaded = 0

        events = None
        if envelope.events is not None:
            events = self.processor.process_events(envelope.events)
            fetched = self._fill_images(events, image_index, self.events_image_cap, 'events')
            images_downloaded += len(fetched)
            image_index.update(fetched)
        else:
            logger.warning("Sync response has no events; keeping stored events")

        wishlist = None
        if envelope.wishlist is not None:
            wishlist = self.processor.process_wishlist(envelope.wishlist)
            fetched = self._fill_images(
                [item.event for item in wishlist],
                image_index,
                self.wishlist_image_cap,
                'wishlist',
                skip_over_cap=self.wishlist_image_policy == 'skip'
            )
            images_downloaded += len(fetched)
        else:
            logger.warning("Sync response has no wishlist; keeping stored wishlist")

        if events is not None and not self.storage.save_events([e.to_record() for e in events]):
            raise StorageError("Failed to save events")
        if wishlist is not None and not self.storage.save_wishlist([i.to_record() for i in wishlist]):
            raise StorageError("Failed to save wishlist")

        timestamp = datetime.now(timezone.utc).isoformat()
        if not self.storage.save_last_sync(timestamp):
            raise StorageError("Failed to save last sync timestamp")
        self.last_sync = timestamp

        return SyncResult(
            status=SyncStatus.SUCCESS,
            timestamp=timestamp,
            events_count=len(events) if events is not None else 0,
            wishlist_count=len(wishlist) if wishlist is not None else 0,
            images_downloaded=images_downloaded,
            duration_seconds=time.time() - start_time
        )

    def _fill_images(
        self,
        events: List[Event],
        image_index: Dict[str, str],
        cap: int,
        collection: str,
        skip_over_cap: bool = False
    ) -> Dict[str, str]:
        """
        Carry forward cached images and download missing ones.

        Returns:
            Newly downloaded images as image_url -> encoded data
        """
        missing = self.processor.carry_forward_images(events, image_index)
        if not missing or cap <= 0:
            return {}

        if skip_over_cap and len(missing) > cap:
            logger.info(
                f"Skipping {collection} images: {len(missing)} missing exceeds cap of {cap}"
            )
            return {}

        results = self.image_fetcher.fetch_many(missing, cap)
        fetched = {result.url: result.encoded for result in results if result.encoded}
        self.processor.merge_images(events, fetched)
        logger.info(f"Fetched {len(fetched)}/{len(missing)} missing {collection} images")
        return fetched

    # Read-only views

    def _set_state(self, state: SyncState) -> None:
        self._state = state

    def get_state(self) -> SyncState:
        return self._state

    def get_status(self) -> Dict[str, Any]:
        """Cheap snapshot of the orchestrator; never blocks on a running sync."""
        return {
            'state': self._state.value,
            'sync_in_progress': self._sync_in_progress,
            'auto_sync_active': self.auto_sync_active,
            'last_sync': self.last_sync,
            'last_error': self.last_error
        }

    def get_local_data(self) -> LocalData:
        """Read the persisted collections without touching the network."""
        events = self.storage.get_events()
        wishlist = self.storage.get_wishlist()
        return LocalData(
            events=events if isinstance(events, list) else [],
            wishlist=wishlist if isinstance(wishlist, list) else [],
            last_sync=self.storage.get_last_sync()
        )
