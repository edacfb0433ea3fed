"""Network monitor tracking connectivity and notifying subscribers."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from network.probes import ConnectivityProbe, Report
from processor.models import ConnectionKind, ConnectivityState

logger = logging.getLogger(__name__)

Handler = Callable[[ConnectivityState], None]


class Subscription:
    """Handle returned by NetworkMonitor.subscribe."""

    def __init__(self, monitor: 'NetworkMonitor', handler: Handler):
        self._monitor = monitor
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._monitor._remove(self)


class NetworkMonitor:
    """
    Observes device connectivity and fans out changes.

    Notifications run on a single dispatch thread, never inside the
    caller's frame, and only when connectedness or link kind changed
    since the previous notification.
    """

    def __init__(self, probe: ConnectivityProbe,
                 dispatcher: Optional[ThreadPoolExecutor] = None):
        """
        Initialize the monitor and listen for platform changes.

        Args:
            probe: Platform connectivity probe
            dispatcher: Executor used to deliver notifications
        """
        self.probe = probe
        self._dispatcher = dispatcher or ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix='network_dispatch'
        )
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []
        self._state = ConnectivityState(
            is_connected=False,
            connection_kind=ConnectionKind.UNKNOWN,
            observed_at=_now()
        )
        self._last_emitted = self._state
        self._closed = False
        self._remove_probe_listener = probe.add_listener(self._on_platform_report)
        logger.info("NetworkMonitor initialized")

    def current(self) -> ConnectivityState:
        """Return the last observed state without probing."""
        return self._state

    def subscribe(self, handler: Handler) -> Subscription:
        """
        Register a handler for connectivity changes.

        The handler is not called from within this method.

        Args:
            handler: Callable receiving the new ConnectivityState

        Returns:
            Subscription whose unsubscribe() removes the handler
        """
        subscription = Subscription(self, handler)
        with self._lock:
            self._subscriptions.append(subscription)
            count = len(self._subscriptions)
        logger.debug(f"NetworkMonitor: listener added (total: {count})")
        return subscription

    def force_check(self) -> ConnectivityState:
        """
        Actively probe connectivity.

        Probe failures are reported as a disconnected state carrying the
        error rather than raised.
        """
        try:
            report = self.probe.fetch()
            state = self._state_from_report(report)
        except Exception as e:
            logger.error(f"Network check failed: {e}")
            state = ConnectivityState(
                is_connected=False,
                connection_kind=ConnectionKind.UNKNOWN,
                observed_at=_now(),
                error=str(e)
            )

        self._update(state)
        logger.debug(
            "Network check completed",
            extra={
                'is_connected': state.is_connected,
                'connection_kind': state.connection_kind.value
            }
        )
        return state

    def wait_for_connection(self, timeout: float = 30) -> bool:
        """
        Block until connected or the timeout elapses.

        Returns:
            True if connected, False on timeout
        """
        if self._state.is_connected:
            return True

        connected = threading.Event()

        def on_change(state: ConnectivityState) -> None:
            if state.is_connected:
                connected.set()

        subscription = self.subscribe(on_change)
        try:
            # Re-check to cover a change that landed before subscribing
            if self._state.is_connected:
                return True
            return connected.wait(timeout)
        finally:
            subscription.unsubscribe()

    def connection_info(self) -> Dict[str, Any]:
        with self._lock:
            listeners = len(self._subscriptions)
        info = self._state.to_dict()
        info['listeners_count'] = listeners
        info['closed'] = self._closed
        return info

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait until queued notifications have been delivered."""
        with self._lock:
            if self._closed:
                return
            future = self._dispatcher.submit(lambda: None)
        future.result(timeout=timeout)

    def close(self) -> None:
        """Stop listening to the probe and drop all subscribers."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for subscription in self._subscriptions:
                subscription.active = False
            self._subscriptions.clear()
        self._remove_probe_listener()
        self._dispatcher.shutdown(wait=False)
        logger.info("NetworkMonitor closed")

    def _on_platform_report(self, report: Report) -> None:
        try:
            state = self._state_from_report(report)
        except (TypeError, AttributeError) as e:
            logger.warning(f"Ignoring malformed connectivity report {report!r}: {e}")
            return
        logger.info(
            "Network status changed",
            extra={
                'is_connected': state.is_connected,
                'connection_kind': state.connection_kind.value
            }
        )
        self._update(state)

    def _update(self, state: ConnectivityState) -> None:
        with self._lock:
            self._state = state
            if self._closed or state.same_link(self._last_emitted):
                return
            self._last_emitted = state
            # Submitted under the lock so notifications keep observation order
            self._dispatcher.submit(self._notify, state)

    def _notify(self, state: ConnectivityState) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        logger.debug(f"NetworkMonitor: notifying {len(subscriptions)} listeners")

        for index, subscription in enumerate(subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.handler(state)
            except Exception as e:
                logger.error(
                    f"NetworkMonitor: error in listener {index}: {e}",
                    exc_info=True
                )

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            count = len(self._subscriptions)
        logger.debug(f"NetworkMonitor: listener removed (total: {count})")

    @staticmethod
    def _state_from_report(report: Report) -> ConnectivityState:
        is_connected = bool(report.get('is_connected'))
        if report.get('is_internet_reachable') is False:
            is_connected = False
        return ConnectivityState(
            is_connected=is_connected,
            connection_kind=ConnectionKind.parse(report.get('kind')),
            observed_at=_now(),
            detail=report.get('reachable_detail')
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)
