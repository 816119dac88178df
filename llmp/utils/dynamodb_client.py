"""
Amazon DynamoDB key-value store holding each user's serialized fact list.
"""

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import DynamoDBConfig
from .logging_config import get_logger

logger = get_logger(__name__)

KEY_ATTRIBUTE = 'pk'
VALUE_ATTRIBUTE = 'value'


class DynamoDBError(Exception):
    """Custom exception for DynamoDB errors."""
    pass


class DynamoDBFactStore:
    """Small-object blob store: one item per key, the value kept as a string attribute."""

    def __init__(self, config: DynamoDBConfig, client=None):
        """
        Initialize DynamoDB client.

        Args:
            config: DynamoDBConfig instance with table settings
            client: Optional pre-built dynamodb client
        """
        self.config = config
        self.table_name = config.table_name

        if client is None:
            kwargs = {'region_name': config.region}
            if config.endpoint_url:
                kwargs['endpoint_url'] = config.endpoint_url
            client = boto3.client('dynamodb', **kwargs)
        self.dynamodb = client

        logger.info(f'Initialized DynamoDB fact store on table: {self.table_name}')

    def get(self, key: str) -> Optional[str]:
        """
        Read the value stored under ``key``.

        Returns:
            The stored string, or None if the key is absent

        Raises:
            DynamoDBError: If the read fails
        """
        try:
            response = self.dynamodb.get_item(TableName=self.table_name,
                                              Key={KEY_ATTRIBUTE: {
                                                  'S': key
                                              }},
                                              ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error reading key {key}: {e}')
            raise DynamoDBError(f'Failed to read {key}: {e}')

        item = response.get('Item')
        if not item or VALUE_ATTRIBUTE not in item:
            return None
        return item[VALUE_ATTRIBUTE].get('S')

    def put(self, key: str, value: str) -> None:
        """
        Overwrite the value stored under ``key``.

        Raises:
            DynamoDBError: If the write fails
        """
        try:
            self.dynamodb.put_item(TableName=self.table_name,
                                   Item={
                                       KEY_ATTRIBUTE: {
                                           'S': key
                                       },
                                       VALUE_ATTRIBUTE: {
                                           'S': value
                                       }
                                   })
            logger.debug(f'Stored value for key {key}')
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error writing key {key}: {e}')
            raise DynamoDBError(f'Failed to write {key}: {e}')

    def create_table_if_not_exists(self) -> str:
        """
        Create the fact table with on-demand billing if it doesn't exist.

        Returns:
            'exists' or 'created'
        """
        try:
            self.dynamodb.describe_table(TableName=self.table_name)
            logger.debug(f'Table {self.table_name} already exists')
            return 'exists'
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'ResourceNotFoundException':
                logger.error(f'Error describing table {self.table_name}: {e}')
                raise DynamoDBError(f'Failed to describe table: {e}')
        except BotoCoreError as e:
            logger.error(f'Error describing table {self.table_name}: {e}')
            raise DynamoDBError(f'Failed to describe table: {e}')

        try:
            self.dynamodb.create_table(TableName=self.table_name,
                                       KeySchema=[{
                                           'AttributeName': KEY_ATTRIBUTE,
                                           'KeyType': 'HASH'
                                       }],
                                       AttributeDefinitions=[{
                                           'AttributeName': KEY_ATTRIBUTE,
                                           'AttributeType': 'S'
                                       }],
                                       BillingMode='PAY_PER_REQUEST')
            self.dynamodb.get_waiter('table_exists').wait(TableName=self.table_name)
            logger.info(f'Created table {self.table_name}')
            return 'created'
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error creating table {self.table_name}: {e}')
            raise DynamoDBError(f'Failed to create table: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the DynamoDB table.

        Returns:
            True if the table is reachable, False otherwise
        """
        try:
            response = self.dynamodb.describe_table(TableName=self.table_name)
            return response.get('Table', {}).get('TableStatus') == 'ACTIVE'
        except Exception as e:
            logger.error(f'DynamoDB health check failed: {e}')
            return False
