"""DynamoDB store for schedule sources, locations, shifts and their links."""
import logging
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from reconcile.models import (
    Location,
    ScheduleLink,
    ScheduleSourceConfig,
    Shift,
    ShiftEntry,
    ShiftType,
)

logger = logging.getLogger(__name__)


def _table(hash_key: str, range_key: str = None, indexes: List[dict] = None) -> dict:
    key_schema = [{'AttributeName': hash_key, 'KeyType': 'HASH'}]
    attributes = [{'AttributeName': hash_key, 'AttributeType': 'S'}]
    if range_key:
        key_schema.append({'AttributeName': range_key, 'KeyType': 'RANGE'})
        attributes.append({'AttributeName': range_key, 'AttributeType': 'S'})

    definition = {'KeySchema': key_schema, 'AttributeDefinitions': attributes}
    for index in indexes or []:
        attributes.append({'AttributeName': index['key'], 'AttributeType': 'S'})
        definition.setdefault('GlobalSecondaryIndexes', []).append({
            'IndexName': index['name'],
            'KeySchema': [{'AttributeName': index['key'], 'KeyType': 'HASH'}],
            'Projection': {'ProjectionType': 'ALL'},
        })
    return definition


TABLE_DEFINITIONS = {
    'schedules': _table('schedule_id'),
    'shift-types': _table('shift_type_id'),
    'locations': _table('location_id'),
    'shifts': _table('shift_id'),
    'schedule-shifts': _table('schedule_id', 'guid'),
    'shift-entries': _table(
        'entry_id',
        indexes=[{'name': 'shift-index', 'key': 'shift_id'}]
    ),
    'import-locks': _table('schedule_id'),
}


class DynamoDBStore:
    """Persistence for everything a schedule import reads and writes."""

    BATCH_BASE_DELAY = 0.05  # seconds
    BATCH_MAX_DELAY = 5

    def __init__(self, table_prefix: str, region_name: str = None):
        """
        Initialize DynamoDB resource and table references.

        Args:
            table_prefix: Prefix of all table names
            region_name: Optional AWS region, defaults to the environment
        """
        self.table_prefix = table_prefix
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.client = self.dynamodb.meta.client

        self.schedules = self._table('schedules')
        self.shift_types = self._table('shift-types')
        self.locations = self._table('locations')
        self.shifts = self._table('shifts')
        self.schedule_shifts = self._table('schedule-shifts')
        self.shift_entries = self._table('shift-entries')
        self.import_locks = self._table('import-locks')
        logger.info(f"Initialized DynamoDBStore with table prefix: {table_prefix}")

    def table_name(self, name: str) -> str:
        return f"{self.table_prefix}-{name}"

    def _table(self, name: str):
        return self.dynamodb.Table(self.table_name(name))

    def create_tables(self) -> None:
        """Create all tables with on-demand billing and wait until they exist."""
        for name, definition in TABLE_DEFINITIONS.items():
            table = self.dynamodb.create_table(
                TableName=self.table_name(name),
                BillingMode='PAY_PER_REQUEST',
                **definition
            )
            table.wait_until_exists()
            logger.info(f"Created table {table.name}")

    # Schedule sources

    def get_schedule(self, schedule_id: str) -> Optional[ScheduleSourceConfig]:
        response = self.schedules.get_item(Key={'schedule_id': schedule_id})
        item = response.get('Item')
        return self._item_to_schedule(item) if item else None

    def get_all_schedules(self) -> List[ScheduleSourceConfig]:
        return [self._item_to_schedule(item) for item in self._scan(self.schedules)]

    def save_schedule(self, schedule: ScheduleSourceConfig) -> None:
        self.schedules.put_item(Item=self._schedule_to_item(schedule))

    def touch_schedule(self, schedule_id: str, when: datetime) -> None:
        """Stamp the last import time of a schedule source."""
        self.schedules.update_item(
            Key={'schedule_id': schedule_id},
            UpdateExpression='SET updated_at = :now',
            ExpressionAttributeValues={':now': when.isoformat()}
        )

    def delete_schedule(self, schedule_id: str) -> None:
        self.schedules.delete_item(Key={'schedule_id': schedule_id})

    # Shift types

    def get_shift_type(self, shift_type_id: str) -> Optional[ShiftType]:
        response = self.shift_types.get_item(Key={'shift_type_id': shift_type_id})
        item = response.get('Item')
        if not item:
            return None
        return ShiftType(shift_type_id=item['shift_type_id'], name=item['name'])

    def put_shift_type(self, shift_type: ShiftType) -> None:
        self.shift_types.put_item(Item={
            'shift_type_id': shift_type.shift_type_id,
            'name': shift_type.name
        })

    # Locations

    def get_all_locations(self) -> List[Location]:
        return [
            Location(location_id=item['location_id'], name=item['name'])
            for item in self._scan(self.locations)
        ]

    def get_location(self, location_id: str) -> Optional[Location]:
        response = self.locations.get_item(Key={'location_id': location_id})
        item = response.get('Item')
        if not item:
            return None
        return Location(location_id=item['location_id'], name=item['name'])

    def create_location(self, name: str) -> Location:
        location = Location(location_id=str(uuid.uuid4()), name=name)
        self.locations.put_item(Item={
            'location_id': location.location_id,
            'name': location.name
        })
        return location

    # Shifts and links

    def get_shift(self, shift_id: str) -> Optional[Shift]:
        response = self.shifts.get_item(Key={'shift_id': shift_id})
        item = response.get('Item')
        return self._item_to_shift(item) if item else None

    def put_shift(self, shift: Shift) -> None:
        self.shifts.put_item(Item=self._shift_to_item(shift))

    def get_schedule_link(self, schedule_id: str, guid: str) -> Optional[ScheduleLink]:
        """
        Retrieve one link together with its shift.

        Args:
            schedule_id: Schedule source id
            guid: Event GUID

        Returns:
            ScheduleLink or None if the GUID was never imported
        """
        response = self.schedule_shifts.get_item(
            Key={'schedule_id': schedule_id, 'guid': guid}
        )
        item = response.get('Item')
        if not item:
            return None
        return ScheduleLink(
            schedule_id=item['schedule_id'],
            guid=item['guid'],
            shift_id=item['shift_id'],
            shift=self.get_shift(item['shift_id'])
        )

    def get_schedule_links(self, schedule_id: str) -> Dict[str, ScheduleLink]:
        """
        Retrieve all links of a schedule source with their shifts.

        Args:
            schedule_id: Schedule source id

        Returns:
            Dictionary mapping GUID to ScheduleLink
        """
        logger.info(f"Querying links of schedule {schedule_id}")

        try:
            items = self._query(
                self.schedule_shifts,
                KeyConditionExpression=Key('schedule_id').eq(schedule_id)
            )
            shifts = self._batch_get_shifts([item['shift_id'] for item in items])
        except ClientError as e:
            logger.error(f"Error loading links of schedule {schedule_id}: {e}")
            raise

        links = {
            item['guid']: ScheduleLink(
                schedule_id=item['schedule_id'],
                guid=item['guid'],
                shift_id=item['shift_id'],
                shift=shifts.get(item['shift_id'])
            )
            for item in items
        }
        logger.info(f"Retrieved {len(links)} links of schedule {schedule_id}")
        return links

    def create_shift_with_link(self, shift: Shift, link: ScheduleLink) -> None:
        """Write a new shift and its link in one transaction."""
        self.client.transact_write_items(TransactItems=[
            {'Put': {
                'TableName': self.shifts.name,
                'Item': self._shift_to_item(shift),
            }},
            {'Put': {
                'TableName': self.schedule_shifts.name,
                'Item': self._link_to_item(link),
                'ConditionExpression': 'attribute_not_exists(guid)',
            }},
        ])

    def delete_shift_with_link(self, link: ScheduleLink) -> None:
        """Delete a shift and its link in one transaction."""
        self.client.transact_write_items(TransactItems=[
            {'Delete': {
                'TableName': self.shifts.name,
                'Key': {'shift_id': link.shift_id},
            }},
            {'Delete': {
                'TableName': self.schedule_shifts.name,
                'Key': {'schedule_id': link.schedule_id, 'guid': link.guid},
            }},
        ])

    # Shift entries

    def get_shift_entries(self, shift_id: str) -> List[ShiftEntry]:
        items = self._query(
            self.shift_entries,
            IndexName='shift-index',
            KeyConditionExpression=Key('shift_id').eq(shift_id)
        )
        return [
            ShiftEntry(
                entry_id=item['entry_id'],
                shift_id=item['shift_id'],
                user_id=item['user_id'],
                angel_type=item['angel_type'],
                freeloaded=bool(item.get('freeloaded', False))
            )
            for item in items
        ]

    def put_shift_entry(self, entry: ShiftEntry) -> None:
        self.shift_entries.put_item(Item={
            'entry_id': entry.entry_id,
            'shift_id': entry.shift_id,
            'user_id': entry.user_id,
            'angel_type': entry.angel_type,
            'freeloaded': entry.freeloaded
        })

    # Import locks

    def acquire_import_lock(self, schedule_id: str, owner: str, ttl_seconds: int) -> bool:
        """
        Take the per-source import lease unless someone else holds it.

        Args:
            schedule_id: Schedule source id
            owner: Unique id of the caller
            ttl_seconds: Lease duration; expired leases can be taken over

        Returns:
            True if the lease was acquired, False if it is held elsewhere
        """
        now = int(time.time())
        try:
            self.import_locks.put_item(
                Item={
                    'schedule_id': schedule_id,
                    'owner': owner,
                    'expires_at': now + ttl_seconds
                },
                ConditionExpression='attribute_not_exists(schedule_id) OR expires_at < :now',
                ExpressionAttributeValues={':now': now}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                return False
            raise
        return True

    def release_import_lock(self, schedule_id: str, owner: str) -> None:
        try:
            self.import_locks.delete_item(
                Key={'schedule_id': schedule_id},
                ConditionExpression='#owner = :owner',
                ExpressionAttributeNames={'#owner': 'owner'},
                ExpressionAttributeValues={':owner': owner}
            )
        except ClientError as e:
            if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                raise
            logger.warning(f"Import lock of schedule {schedule_id} was taken over before release")

    # Helpers

    def _scan(self, table) -> List[dict]:
        response = table.scan()
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = table.scan(ExclusiveStartKey=response['LastEvaluatedKey'])
            items.extend(response.get('Items', []))

        return items

    def _query(self, table, **kwargs) -> List[dict]:
        response = table.query(**kwargs)
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = table.query(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
            items.extend(response.get('Items', []))

        return items

    def _batch_get_shifts(self, shift_ids: List[str]) -> Dict[str, Shift]:
        """Load shifts in chunks of 100 keys (BatchGetItem limit)."""
        shifts = {}
        unique_ids = list(dict.fromkeys(shift_ids))

        for i in range(0, len(unique_ids), 100):
            request = {
                self.shifts.name: {
                    'Keys': [{'shift_id': shift_id} for shift_id in unique_ids[i:i + 100]]
                }
            }
            attempt = 0
            while request:
                if attempt:
                    delay = min(self.BATCH_BASE_DELAY * (2 ** (attempt - 1)), self.BATCH_MAX_DELAY)
                    logger.warning(
                        f"Retrying unprocessed shift keys (attempt {attempt + 1}) in {delay} seconds"
                    )
                    time.sleep(delay)

                response = self.dynamodb.batch_get_item(RequestItems=request)
                for item in response['Responses'].get(self.shifts.name, []):
                    shifts[item['shift_id']] = self._item_to_shift(item)
                request = response.get('UnprocessedKeys') or None
                attempt += 1

        return shifts

    def _schedule_to_item(self, schedule: ScheduleSourceConfig) -> dict:
        item = {
            'schedule_id': schedule.schedule_id,
            'name': schedule.name,
            'url': schedule.url,
            'shift_type_id': schedule.shift_type_id,
            'needed_from_shift_type': schedule.needed_from_shift_type,
            'minutes_before': schedule.minutes_before,
            'minutes_after': schedule.minutes_after,
            'active_rooms': sorted(schedule.active_rooms),
        }

        if schedule.created_at:
            item['created_at'] = schedule.created_at.isoformat()
        if schedule.updated_at:
            item['updated_at'] = schedule.updated_at.isoformat()

        return item

    def _item_to_schedule(self, item: dict) -> ScheduleSourceConfig:
        return ScheduleSourceConfig(
            schedule_id=item['schedule_id'],
            name=item['name'],
            url=item['url'],
            shift_type_id=item['shift_type_id'],
            needed_from_shift_type=bool(item.get('needed_from_shift_type', False)),
            minutes_before=int(item.get('minutes_before', 0)),
            minutes_after=int(item.get('minutes_after', 0)),
            active_rooms=set(item.get('active_rooms', [])),
            created_at=self._parse_datetime(item.get('created_at')),
            updated_at=self._parse_datetime(item.get('updated_at'))
        )

    def _shift_to_item(self, shift: Shift) -> dict:
        item = {
            'shift_id': shift.shift_id,
            'title': shift.title,
            'shift_type_id': shift.shift_type_id,
            'location_id': shift.location_id,
            'start': shift.start.isoformat(),
            'end': shift.end.isoformat(),
            'url': shift.url,
            'transaction_id': shift.transaction_id,
            'needed_from_shift_type': shift.needed_from_shift_type,
        }

        # Add optional fields if present
        if shift.created_by:
            item['created_by'] = shift.created_by
        if shift.updated_by:
            item['updated_by'] = shift.updated_by
        if shift.created_at:
            item['created_at'] = shift.created_at.isoformat()
        if shift.updated_at:
            item['updated_at'] = shift.updated_at.isoformat()

        return item

    def _item_to_shift(self, item: dict) -> Shift:
        return Shift(
            shift_id=item['shift_id'],
            title=item['title'],
            shift_type_id=item['shift_type_id'],
            location_id=item['location_id'],
            start=datetime.fromisoformat(item['start']),
            end=datetime.fromisoformat(item['end']),
            url=item.get('url', ''),
            transaction_id=item['transaction_id'],
            needed_from_shift_type=bool(item.get('needed_from_shift_type', False)),
            created_by=item.get('created_by'),
            updated_by=item.get('updated_by'),
            created_at=self._parse_datetime(item.get('created_at')),
            updated_at=self._parse_datetime(item.get('updated_at'))
        )

    @staticmethod
    def _link_to_item(link: ScheduleLink) -> dict:
        return {
            'schedule_id': link.schedule_id,
            'guid': link.guid,
            'shift_id': link.shift_id
        }

    @staticmethod
    def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(value) if value else None
