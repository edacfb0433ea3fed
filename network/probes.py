"""Connectivity probes reporting platform network state."""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

Report = Dict[str, Any]


class ConnectivityProbe(ABC):
    """
    Source of raw connectivity reports.

    A report is a dict with 'is_connected', 'kind' and optionally
    'is_internet_reachable' and 'reachable_detail'.
    """

    def __init__(self):
        self._listeners: List[Callable[[Report], None]] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def fetch(self) -> Report:
        """Actively probe connectivity. May raise on platform errors."""

    def add_listener(self, callback: Callable[[Report], None]) -> Callable[[], None]:
        """
        Register a callback for asynchronous platform changes.

        Returns:
            Function that removes the callback
        """
        with self._listeners_lock:
            self._listeners.append(callback)

        def remove() -> None:
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return remove

    def _emit(self, report: Report) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            callback(report)


class ManualProbe(ConnectivityProbe):
    """Probe fed by the host application's platform callbacks."""

    def __init__(self, is_connected: bool = False, kind: str = 'unknown'):
        super().__init__()
        self._report: Report = {'is_connected': is_connected, 'kind': kind}

    def fetch(self) -> Report:
        return dict(self._report)

    def report(self, is_connected: bool, kind: str = 'wifi',
               reachable_detail: Optional[Dict[str, Any]] = None) -> None:
        """Record a platform change and forward it to listeners."""
        self._report = {
            'is_connected': is_connected,
            'kind': kind,
            'reachable_detail': reachable_detail
        }
        self._emit(dict(self._report))


class HttpReachabilityProbe(ConnectivityProbe):
    """Probe that issues a HEAD request against a known URL."""

    def __init__(self, url: str, timeout: float = 5, kind: str = 'other',
                 session: Optional[requests.Session] = None):
        """
        Initialize the reachability probe.

        Args:
            url: URL expected to answer while online
            timeout: HEAD request timeout in seconds
            kind: Connection kind to report; plain HTTP cannot tell wifi from cellular
            session: Optional requests session
        """
        super().__init__()
        self.url = url
        self.timeout = timeout
        self.kind = kind
        self.session = session or requests.Session()

    def fetch(self) -> Report:
        try:
            response = self.session.head(
                self.url, timeout=self.timeout, allow_redirects=True
            )
        except requests.RequestException as e:
            logger.debug(f"Reachability check failed for {self.url}: {e}")
            return {
                'is_connected': False,
                'kind': 'unknown',
                'reachable_detail': {'error': str(e)}
            }

        # Any HTTP answer means the origin is reachable
        return {
            'is_connected': True,
            'kind': self.kind,
            'reachable_detail': {'status': response.status_code}
        }

    def poll(self) -> Report:
        """Probe and forward the result to listeners."""
        report = self.fetch()
        self._emit(report)
        return report
