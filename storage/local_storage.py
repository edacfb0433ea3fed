"""Typed access to the engine's persisted data."""
import logging
from typing import Any, Dict, List, Optional

from storage.key_value_store import KeyValueStore

logger = logging.getLogger(__name__)


class StorageKeys:
    """Fixed logical keys used by the engine."""
    USER_DATA = '@completa_user_data'
    EVENTS_DATA = '@completa_events_data'
    WISHLIST_DATA = '@completa_wishlist_data'
    AUTH_COOKIE = '@completa_auth_cookie'
    LAST_SYNC = '@completa_last_sync'


class StorageError(Exception):
    """Persistence layer failed during a sync cycle."""


class LocalStorage:
    """
    Facade over a KeyValueStore.

    Reads degrade to None and writes report False; backend exceptions are
    logged and never raised.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def set_item(self, key: str, value: Any) -> bool:
        try:
            saved = self.store.set(key, value)
        except Exception as e:
            logger.error(f"Error saving to storage: {key}: {e}", exc_info=True)
            return False
        if saved:
            logger.debug(f"Data saved to storage: {key}")
        else:
            logger.error(f"Storage backend rejected write: {key}")
        return bool(saved)

    def get_item(self, key: str) -> Optional[Any]:
        try:
            return self.store.get(key)
        except Exception as e:
            logger.error(f"Error loading from storage: {key}: {e}", exc_info=True)
            return None

    def remove_item(self, key: str) -> bool:
        try:
            return bool(self.store.remove(key))
        except Exception as e:
            logger.error(f"Error removing from storage: {key}: {e}", exc_info=True)
            return False

    def clear_all(self) -> bool:
        try:
            cleared = self.store.clear()
        except Exception as e:
            logger.error(f"Error clearing storage: {e}", exc_info=True)
            return False
        logger.info("All storage cleared")
        return bool(cleared)

    def save_user_data(self, user_data: Dict[str, Any]) -> bool:
        return self.set_item(StorageKeys.USER_DATA, user_data)

    def get_user_data(self) -> Optional[Dict[str, Any]]:
        return self.get_item(StorageKeys.USER_DATA)

    def save_events(self, events: List[Dict[str, Any]]) -> bool:
        return self.set_item(StorageKeys.EVENTS_DATA, events)

    def get_events(self) -> Optional[List[Dict[str, Any]]]:
        return self.get_item(StorageKeys.EVENTS_DATA)

    def save_wishlist(self, wishlist: List[Dict[str, Any]]) -> bool:
        return self.set_item(StorageKeys.WISHLIST_DATA, wishlist)

    def get_wishlist(self) -> Optional[List[Dict[str, Any]]]:
        return self.get_item(StorageKeys.WISHLIST_DATA)

    def save_auth_cookie(self, cookie: str) -> bool:
        """Store the session cookie captured by the web view."""
        return self.set_item(StorageKeys.AUTH_COOKIE, cookie)

    def get_auth_cookie(self) -> Optional[str]:
        return self.get_item(StorageKeys.AUTH_COOKIE)

    def clear_auth_cookie(self) -> bool:
        return self.remove_item(StorageKeys.AUTH_COOKIE)

    def save_last_sync(self, timestamp: str) -> bool:
        return self.set_item(StorageKeys.LAST_SYNC, timestamp)

    def get_last_sync(self) -> Optional[str]:
        return self.get_item(StorageKeys.LAST_SYNC)
