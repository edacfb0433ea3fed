"""Unit tests for LocalStorage and InMemoryStore."""
from unittest.mock import Mock

import pytest

from storage.key_value_store import InMemoryStore, KeyValueStore
from storage.local_storage import LocalStorage, StorageKeys


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def storage(store):
    return LocalStorage(store)


class TestInMemoryStore:
    """Test cases for InMemoryStore class."""

    def test_values_are_copied(self, store):
        value = {'events': [1, 2]}
        store.set('key', value)
        value['events'].append(3)

        loaded = store.get('key')
        loaded['events'].append(4)

        assert store.get('key') == {'events': [1, 2]}

    def test_unserializable_value_rejected(self, store):
        assert store.set('key', {1, 2}) is False
        assert 'key' not in store

    def test_backend_must_implement_clear(self):
        class PartialStore(KeyValueStore):
            def get(self, key):
                return None

            def set(self, key, value):
                return True

            def remove(self, key):
                return True

        with pytest.raises(TypeError):
            PartialStore()

    def test_initial_values_and_clear(self):
        store = InMemoryStore({'a': 1, 'b': [2]})

        assert len(store) == 2
        assert store.clear() is True
        assert store.get('a') is None


class TestLocalStorage:
    """Test cases for LocalStorage class."""

    def test_collections_use_fixed_keys(self, storage, store):
        storage.save_events([{'id': 1}])
        storage.save_wishlist([{'wishlist_id': 2}])
        storage.save_last_sync('2024-01-01T00:00:00+00:00')
        storage.save_user_data({'name': 'Ana'})

        assert store.get(StorageKeys.EVENTS_DATA) == [{'id': 1}]
        assert store.get(StorageKeys.WISHLIST_DATA) == [{'wishlist_id': 2}]
        assert store.get(StorageKeys.LAST_SYNC) == '2024-01-01T00:00:00+00:00'
        assert storage.get_user_data() == {'name': 'Ana'}

    def test_auth_cookie_lifecycle(self, storage):
        assert storage.get_auth_cookie() is None

        assert storage.save_auth_cookie('laravel_session=abc; XSRF-TOKEN=def')
        assert storage.get_auth_cookie() == 'laravel_session=abc; XSRF-TOKEN=def'

        assert storage.clear_auth_cookie()
        assert storage.get_auth_cookie() is None

    def test_backend_exceptions_are_contained(self):
        backend = Mock()
        backend.get.side_effect = OSError("disk error")
        backend.set.side_effect = OSError("disk error")
        backend.remove.side_effect = OSError("disk error")
        backend.clear.side_effect = OSError("disk error")
        storage = LocalStorage(backend)

        assert storage.get_events() is None
        assert storage.save_events([]) is False
        assert storage.clear_auth_cookie() is False
        assert storage.clear_all() is False

    def test_rejected_write_returns_false(self):
        backend = Mock()
        backend.set.return_value = False

        assert LocalStorage(backend).save_last_sync('now') is False

    def test_clear_all(self, storage, store):
        storage.save_events([{'id': 1}])

        assert storage.clear_all() is True
        assert len(store) == 0
