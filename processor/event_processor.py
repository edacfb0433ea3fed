"""Event processor for simplifying server entities and planning image work."""
import logging
from typing import Any, Dict, Iterable, List, Optional

from processor.models import Event, WishlistItem

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processor for validating and simplifying synced entities."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def process_events(self, raw_events: Iterable[Dict[str, Any]]) -> List[Event]:
        """
        Simplify raw event payloads from the sync endpoint.

        Args:
            raw_events: Event dicts as returned by the server

        Returns:
            List of valid Event objects
        """
        raw_events = list(raw_events)
        events = []

        for raw in raw_events:
            try:
                event = self._process_single_event(raw)
                if event:
                    events.append(event)
            except (TypeError, AttributeError) as e:
                logger.warning(f"Failed to process event {raw!r:.80}: {e}")
                continue

        logger.info(
            f"Processed {len(events)} valid events out of "
            f"{len(raw_events)} total events"
        )
        return events

    def process_wishlist(self, raw_items: Iterable[Dict[str, Any]]) -> List[WishlistItem]:
        """
        Simplify raw wishlist payloads.

        Items whose event is missing or invalid are dropped, so every
        returned WishlistItem references a valid Event.

        Args:
            raw_items: Wishlist dicts as returned by the server

        Returns:
            List of valid WishlistItem objects
        """
        raw_items = list(raw_items)
        items = []

        for raw in raw_items:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping malformed wishlist item: {raw!r:.80}")
                continue

            wishlist_id = raw.get('wishlist_id')
            if wishlist_id is None:
                logger.warning("Wishlist item missing required field: wishlist_id")
                continue

            try:
                event = self._process_single_event(raw.get('event'))
            except (TypeError, AttributeError) as e:
                logger.warning(f"Failed to process wishlist item {wishlist_id}: {e}")
                continue

            if not event:
                logger.warning(
                    f"Wishlist item {wishlist_id} does not reference a valid event"
                )
                continue

            items.append(WishlistItem(wishlist_id=wishlist_id, event=event))

        logger.info(
            f"Processed {len(items)} valid wishlist items out of "
            f"{len(raw_items)} total items"
        )
        return items

    def _process_single_event(self, raw: Optional[Dict[str, Any]]) -> Optional[Event]:
        """
        Simplify a single event.

        Args:
            raw: Raw event dict

        Returns:
            Event object or None if validation fails
        """
        if not self._validate_required_fields(raw):
            return None

        description = raw.get('description')
        if isinstance(description, str):
            description = description[:self.MAX_DESCRIPTION_LENGTH]
        else:
            description = None

        image_url = raw.get('img')
        if not isinstance(image_url, str) or not image_url.strip():
            if image_url:
                logger.warning(f"Event {raw['id']} has invalid image reference: {image_url!r:.80}")
            image_url = None

        return Event(
            id=raw['id'],
            title=raw['title'].strip()[:self.MAX_TITLE_LENGTH],
            start=raw.get('start'),
            end=raw.get('end'),
            description=description,
            location=raw.get('loc'),
            category=raw.get('category'),
            image_url=image_url
        )

    def _validate_required_fields(self, raw: Optional[Dict[str, Any]]) -> bool:
        """
        Validate that required fields are present and non-empty.

        Args:
            raw: Raw event dict

        Returns:
            True if valid, False otherwise
        """
        if not isinstance(raw, dict):
            logger.warning("Event payload is not an object")
            return False

        if raw.get('id') is None:
            logger.warning("Event missing required field: id")
            return False

        title = raw.get('title')
        if not isinstance(title, str) or not title.strip():
            logger.warning(f"Event {raw['id']} missing required field: title")
            return False

        return True

    def build_image_index(self, *snapshots: Optional[List[Dict[str, Any]]]) -> Dict[str, str]:
        """
        Map image URL to cached encoded data from stored snapshots.

        Accepts event records and wishlist records (whose event sits
        under the 'event' key).

        Returns:
            Dictionary of image_url -> encoded image data
        """
        index = {}
        for snapshot in snapshots:
            for record in snapshot or []:
                if not isinstance(record, dict):
                    continue
                if isinstance(record.get('event'), dict):
                    record = record['event']
                url = record.get('img')
                data = record.get('img_base64')
                if isinstance(url, str) and url and data:
                    index[url] = data
        return index

    def carry_forward_images(self, events: List[Event], index: Dict[str, str]) -> List[str]:
        """
        Reuse cached images whose URL is unchanged.

        Args:
            events: Freshly synced events (modified in place)
            index: image_url -> encoded data from the previous snapshot

        Returns:
            Distinct image URLs still missing data, in first-seen order
        """
        missing = []
        for event in events:
            if not event.image_url:
                continue
            cached = index.get(event.image_url)
            if cached:
                event.image_data = cached
            elif event.image_url not in missing:
                missing.append(event.image_url)
        return missing

    def merge_images(self, events: List[Event], fetched: Dict[str, Optional[str]]) -> int:
        """
        Attach newly fetched images to events.

        Returns:
            Number of events that received image data
        """
        merged = 0
        for event in events:
            if event.image_data or not event.image_url:
                continue
            encoded = fetched.get(event.image_url)
            if encoded:
                event.image_data = encoded
                merged += 1
        return merged
