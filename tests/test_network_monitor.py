"""Unit tests for NetworkMonitor and connectivity probes."""
import threading
from unittest.mock import Mock

import pytest
import responses
from requests.exceptions import ConnectionError

from network.monitor import NetworkMonitor
from network.probes import HttpReachabilityProbe, ManualProbe
from processor.models import ConnectionKind


@pytest.fixture
def probe():
    return ManualProbe()


@pytest.fixture
def monitor(probe):
    monitor = NetworkMonitor(probe)
    yield monitor
    monitor.close()


class Recorder:
    """Handler collecting notifications and the thread they arrived on."""

    def __init__(self):
        self.states = []
        self.threads = []

    def __call__(self, state):
        self.states.append(state)
        self.threads.append(threading.current_thread())


class TestNetworkMonitor:
    """Test cases for NetworkMonitor class."""

    def test_initial_state_is_disconnected(self, monitor):
        state = monitor.current()

        assert state.is_connected is False
        assert state.connection_kind == ConnectionKind.UNKNOWN

    def test_subscribe_does_not_invoke_handler(self, monitor, probe):
        probe.report(True, 'wifi')
        monitor.flush(timeout=1)
        recorder = Recorder()

        monitor.subscribe(recorder)
        monitor.flush(timeout=1)

        assert recorder.states == []

    def test_notifications_run_on_dispatch_thread(self, monitor, probe):
        recorder = Recorder()
        monitor.subscribe(recorder)

        probe.report(True, 'wifi')
        monitor.flush(timeout=1)

        assert len(recorder.states) == 1
        assert recorder.states[0].is_connected is True
        assert recorder.states[0].connection_kind == ConnectionKind.WIFI
        assert recorder.threads[0] is not threading.current_thread()

    def test_duplicate_reports_are_not_emitted(self, monitor, probe):
        recorder = Recorder()
        monitor.subscribe(recorder)

        probe.report(True, 'wifi')
        probe.report(True, 'wifi')
        probe.report(True, 'cellular')
        probe.report(False, 'none')
        probe.report(False, 'unknown')
        monitor.flush(timeout=1)

        assert [(s.is_connected, s.connection_kind) for s in recorder.states] == [
            (True, ConnectionKind.WIFI),
            (True, ConnectionKind.CELLULAR),
            (False, ConnectionKind.UNKNOWN)
        ]

    def test_unreachable_internet_counts_as_disconnected(self, monitor, probe):
        probe._emit({'is_connected': True, 'is_internet_reachable': False, 'kind': 'wifi'})

        assert monitor.current().is_connected is False

    def test_failing_handler_does_not_block_others(self, monitor, probe):
        failing = Mock(side_effect=RuntimeError("boom"))
        recorder = Recorder()
        monitor.subscribe(failing)
        monitor.subscribe(recorder)

        probe.report(True, 'wifi')
        monitor.flush(timeout=1)

        failing.assert_called_once()
        assert len(recorder.states) == 1

    def test_unsubscribe_stops_notifications(self, monitor, probe):
        recorder = Recorder()
        subscription = monitor.subscribe(recorder)

        subscription.unsubscribe()
        subscription.unsubscribe()
        probe.report(True, 'wifi')
        monitor.flush(timeout=1)

        assert recorder.states == []
        assert monitor.connection_info()['listeners_count'] == 0

    def test_force_check_updates_state_and_notifies(self, monitor, probe):
        recorder = Recorder()
        monitor.subscribe(recorder)
        probe._report = {'is_connected': True, 'kind': 'cellular'}

        state = monitor.force_check()
        monitor.flush(timeout=1)

        assert state.is_connected is True
        assert state.connection_kind == ConnectionKind.CELLULAR
        assert monitor.current() == state
        assert len(recorder.states) == 1

    def test_force_check_reports_probe_error(self):
        probe = Mock()
        probe.fetch.side_effect = OSError("netinfo unavailable")
        monitor = NetworkMonitor(probe)

        try:
            state = monitor.force_check()
        finally:
            monitor.close()

        assert state.is_connected is False
        assert state.connection_kind == ConnectionKind.UNKNOWN
        assert state.error == "netinfo unavailable"

    def test_wait_for_connection(self, monitor, probe):
        timer = threading.Timer(0.05, probe.report, args=(True, 'wifi'))
        timer.start()

        try:
            assert monitor.wait_for_connection(timeout=2) is True
        finally:
            timer.cancel()

    def test_wait_for_connection_timeout(self, monitor):
        assert monitor.wait_for_connection(timeout=0.05) is False
        assert monitor.connection_info()['listeners_count'] == 0

    def test_close_stops_probe_listening(self, probe):
        monitor = NetworkMonitor(probe)
        recorder = Recorder()
        monitor.subscribe(recorder)

        monitor.close()
        monitor.close()
        probe.report(True, 'wifi')

        assert recorder.states == []
        assert monitor.current().is_connected is False
        assert monitor.connection_info()['closed'] is True


class TestHttpReachabilityProbe:
    """Test cases for HttpReachabilityProbe."""

    @responses.activate
    def test_reachable_origin_is_connected(self):
        responses.add(responses.HEAD, "https://api.example.com/health", status=404)
        probe = HttpReachabilityProbe("https://api.example.com/health")

        report = probe.fetch()

        assert report['is_connected'] is True
        assert report['kind'] == 'other'
        assert report['reachable_detail'] == {'status': 404}

    @responses.activate
    def test_reachability_detail_reaches_state(self):
        responses.add(responses.HEAD, "https://api.example.com/health", status=204)
        probe = HttpReachabilityProbe("https://api.example.com/health")
        monitor = NetworkMonitor(probe)

        try:
            state = monitor.force_check()

            assert state.detail == {'status': 204}
            assert monitor.connection_info()['detail'] == {'status': 204}
        finally:
            monitor.close()

    @responses.activate
    def test_unreachable_origin_is_disconnected(self):
        responses.add(responses.HEAD, "https://api.example.com/health", body=ConnectionError("down"))
        probe = HttpReachabilityProbe("https://api.example.com/health")

        report = probe.fetch()

        assert report['is_connected'] is False
        assert report['kind'] == 'unknown'

    @responses.activate
    def test_poll_forwards_to_monitor(self):
        responses.add(responses.HEAD, "https://api.example.com/health", status=200)
        probe = HttpReachabilityProbe("https://api.example.com/health", kind='wifi')
        monitor = NetworkMonitor(probe)

        try:
            probe.poll()
            state = monitor.current()
        finally:
            monitor.close()

        assert state.is_connected is True
        assert state.connection_kind == ConnectionKind.WIFI
