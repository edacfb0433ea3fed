"""DynamoDB-backed key-value store."""
import json
import logging
from typing import Any, List, Optional

import boto3
from botocore.exceptions import ClientError

from storage.key_value_store import KeyValueStore

logger = logging.getLogger(__name__)


class DynamoDBStore(KeyValueStore):
    """Key-value store on a DynamoDB table keyed by 'storage_key'."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    KEY_ATTRIBUTE = 'storage_key'
    VALUE_ATTRIBUTE = 'value'

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBStore for table: {table_name}")

    def get(self, key: str) -> Optional[Any]:
        """
        Read a value.

        Args:
            key: Storage key

        Returns:
            Decoded JSON value or None if missing or unreadable
        """
        try:
            response = self.table.get_item(Key={self.KEY_ATTRIBUTE: key})
        except ClientError as e:
            logger.error(f"Error loading {key} from DynamoDB: {e}")
            return None

        item = response.get('Item')
        if not item:
            return None

        try:
            return json.loads(item[self.VALUE_ATTRIBUTE])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Stored value for {key} is not valid JSON: {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        """
        Write a value as a JSON string.

        Returns:
            True on success, False otherwise
        """
        try:
            item = {
                self.KEY_ATTRIBUTE: key,
                self.VALUE_ATTRIBUTE: json.dumps(value)
            }
            self.table.put_item(Item=item)
            logger.debug(f"Data saved to DynamoDB: {key}")
            return True
        except (TypeError, ValueError) as e:
            logger.error(f"Value for {key} is not JSON serializable: {e}")
            return False
        except ClientError as e:
            logger.error(f"Error saving {key} to DynamoDB: {e}")
            return False

    def remove(self, key: str) -> bool:
        try:
            self.table.delete_item(Key={self.KEY_ATTRIBUTE: key})
            logger.debug(f"Data removed from DynamoDB: {key}")
            return True
        except ClientError as e:
            logger.error(f"Error removing {key} from DynamoDB: {e}")
            return False

    def keys(self) -> List[str]:
        """
        List every key using a paginated Scan.

        Returns:
            List of storage keys
        """
        response = self.table.scan(ProjectionExpression=self.KEY_ATTRIBUTE)
        items = response.get('Items', [])

        # Handle pagination
        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                ProjectionExpression=self.KEY_ATTRIBUTE,
                ExclusiveStartKey=response['LastEvaluatedKey']
            )
            items.extend(response.get('Items', []))

        return [item[self.KEY_ATTRIBUTE] for item in items]

    def clear(self) -> bool:
        """
        Delete every key in batches of 25 items.

        Returns:
            True if all batches were deleted
        """
        try:
            keys = self.keys()
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            return False

        ok = True
        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key={self.KEY_ATTRIBUTE: key})
            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                ok = False
                continue

        logger.info(f"Cleared {len(keys)} keys from {self.table_name}")
        return ok
