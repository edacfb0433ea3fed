"""Integration tests for engine wiring and the manual sync entry point."""
import base64
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest
import responses

from app import JsonFormatter, build_engine, main, run_sync, setup_logging
from config import EngineConfig
from network.probes import ManualProbe
from storage.key_value_store import InMemoryStore

BASE_URL = 'https://api.example.com'
SYNC_URL = f'{BASE_URL}/api/mobile/v1/sync'
IMAGE_URL = 'https://cdn.example.com/fair.png'
PNG_BYTES = b'\x89PNG\r\n\x1a\nfair'

SYNC_PAYLOAD = {
    'success': True,
    'data': {
        'events': [
            {'id': 1, 'title': 'Spring Fair', 'start': '2024-04-01 10:00', 'img': IMAGE_URL},
            {'id': 2, 'title': 'Book Club', 'start': '2024-04-02 18:00'}
        ],
        'wishlist': [
            {'wishlist_id': 7, 'event': {'id': 1, 'title': 'Spring Fair', 'img': IMAGE_URL}}
        ]
    }
}


@pytest.fixture
def config():
    return EngineConfig(
        base_url=BASE_URL,
        retry_backoff=0,
        image_cooldown=0,
        sync_interval=3600
    )


@pytest.fixture
def probe():
    return ManualProbe(is_connected=True, kind='wifi')


@pytest.fixture
def engine(config, probe):
    engine = build_engine(config, store=InMemoryStore(), probe=probe)
    yield engine
    engine.close()


class TestBuildEngine:
    """Test cases for build_engine."""

    def test_components_share_collaborators(self, engine, config):
        assert engine.client.storage is engine.storage
        assert engine.client.monitor is engine.monitor
        assert engine.orchestrator.client is engine.client
        assert engine.orchestrator.image_fetcher is engine.image_fetcher
        assert engine.client.base_url == f'{BASE_URL}/api'
        assert engine.image_fetcher.cooldown == 0
        assert engine.orchestrator.sync_interval == 3600

    def test_default_store_is_in_memory(self, config, probe):
        engine = build_engine(config, probe=probe)
        try:
            assert isinstance(engine.storage.store, InMemoryStore)
        finally:
            engine.close()

    @patch('app.DynamoDBStore')
    def test_table_name_selects_dynamodb(self, mock_store_class, config, probe):
        config.table_name = 'offline-sync'
        engine = build_engine(config, probe=probe)
        try:
            mock_store_class.assert_called_once_with('offline-sync')
            assert engine.storage.store is mock_store_class.return_value
        finally:
            engine.close()

    def test_start_enables_auto_sync(self, engine):
        engine.start()

        assert engine.orchestrator.auto_sync_active

    def test_config_from_env(self):
        env_vars = {
            'SYNC_BASE_URL': 'https://staging.example.com',
            'SYNC_MAX_RETRIES': '5',
            'SYNC_INTERVAL': '120',
            'SYNC_WISHLIST_IMAGE_POLICY': 'cap',
            'TABLE_NAME': 'staging-table'
        }
        with patch.dict(os.environ, env_vars):
            config = EngineConfig.from_env()

        assert config.api_url == 'https://staging.example.com/api'
        assert config.max_retries == 5
        assert config.sync_interval == 120.0
        assert config.wishlist_image_policy == 'cap'
        assert config.table_name == 'staging-table'
        assert config.cache_ttl == 300


class TestRunSync:
    """Test cases for the manual sync entry point."""

    @responses.activate
    def test_successful_sync(self, engine):
        responses.add(responses.GET, SYNC_URL, json=SYNC_PAYLOAD, status=200)
        responses.add(responses.GET, IMAGE_URL, body=PNG_BYTES, content_type='image/png')

        response = run_sync({'auth_cookie': 'laravel_session=abc'}, engine=engine)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Sync success'
        assert body['statistics']['events_count'] == 2
        assert body['statistics']['wishlist_count'] == 1
        assert body['statistics']['images_downloaded'] == 1
        assert body['local_data']['events'] == 2
        assert body['client']['cache_size'] == 1

        assert responses.calls[0].request.headers['Cookie'] == 'laravel_session=abc'
        stored = engine.storage.get_wishlist()[0]['event']
        assert stored['img_base64'] == base64.b64encode(PNG_BYTES).decode('ascii')

    def test_offline_sync(self, engine, probe):
        probe.report(False, 'none')

        response = run_sync(engine=engine)

        assert response['statusCode'] == 503
        assert json.loads(response['body'])['statistics']['status'] == 'no_connection'

    @responses.activate
    def test_unauthorized_sync(self, engine):
        engine.capture_session('laravel_session=expired')
        responses.add(responses.GET, SYNC_URL, json={'message': 'Unauthenticated.'}, status=401)

        response = run_sync(engine=engine)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['error'] == 'Unauthenticated.'
        assert engine.storage.get_auth_cookie() is None
        assert len(responses.calls) == 1

    @patch('app.build_engine')
    def test_engine_construction_failure(self, mock_build_engine):
        mock_build_engine.side_effect = Exception('Missing region')

        response = run_sync()

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Sync failed'
        assert body['error'] == 'Missing region'
        assert body['error_type'] == 'Exception'
        assert 'duration_seconds' in body

    @patch('app.build_engine')
    def test_owned_engine_is_closed(self, mock_build_engine):
        engine = Mock()
        engine.orchestrator.full_sync.side_effect = RuntimeError('boom')
        mock_build_engine.return_value = engine

        response = run_sync()

        assert response['statusCode'] == 500
        engine.close.assert_called_once()

    @patch('app.run_sync')
    def test_main_exit_code(self, mock_run_sync, capsys):
        mock_run_sync.return_value = {'statusCode': 503, 'body': '{}'}

        assert main() == 1
        assert capsys.readouterr().out.strip() == '{}'


class TestLogging:
    """Test cases for JSON logging."""

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord('sync', logging.INFO, __file__, 1, 'Sync done', (), None)
        record.events_count = 3

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Sync done'
        assert data['level'] == 'INFO'
        assert data['logger'] == 'sync'
        assert data['events_count'] == 3

    def test_setup_logging_installs_single_handler(self):
        root_logger = logging.getLogger()
        saved_handlers, saved_level = root_logger.handlers[:], root_logger.level
        try:
            setup_logging('DEBUG')
            setup_logging('WARNING')

            assert len(root_logger.handlers) == 1
            assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)
            assert root_logger.level == logging.WARNING
        finally:
            root_logger.handlers[:] = saved_handlers
            root_logger.setLevel(saved_level)
