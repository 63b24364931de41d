"""Integration tests for ScheduleImporter."""
from datetime import datetime, timezone
from unittest.mock import Mock
from zoneinfo import ZoneInfo

import pytest
from moto import mock_aws

from feed.xml_parser import ScheduleXmlParser
from reconcile.errors import (
    ImportInProgressError,
    InvalidShiftTypeError,
    ScheduleNotFoundError,
    ScheduleReadError,
    ScheduleRequestError,
)
from reconcile.importer import ScheduleImporter
from reconcile.models import DeleteReason, ScheduleSourceConfig, ShiftEntry, ShiftType
from reconcile.notifications import SHIFT_ENTRY_DELETING
from storage.dynamodb_store import DynamoDBStore

BERLIN = ZoneInfo('Europe/Berlin')
NOW = datetime(2024, 8, 1, 12, 0, tzinfo=BERLIN)

TALK = {'guid': 'guid-1', 'room': 'Main Hall', 'date': '2024-08-13T12:30:00+02:00', 'title': 'Opening'}
WORKSHOP = {'guid': 'guid-2', 'room': 'Workshop', 'date': '2024-08-13T14:00:00+02:00', 'language': 'de'}
SIDE = {'guid': 'guid-3', 'room': 'Side Stage', 'date': '2024-08-13T16:00:00+02:00'}


@pytest.fixture
def store(aws_credentials):
    with mock_aws():
        store = DynamoDBStore('test', region_name='us-east-1')
        store.create_tables()
        store.put_shift_type(ShiftType(shift_type_id='type-1', name='Talk Angel'))
        store.create_location('Main Hall')
        store.create_location('Workshop')
        yield store


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def importer(store, client, notifier):
    return ScheduleImporter(
        store=store,
        client=client,
        parser=ScheduleXmlParser(),
        notifier=notifier,
        timezone=BERLIN,
        clock=lambda: NOW
    )


@pytest.fixture
def config(importer):
    return importer.save_schedule(ScheduleSourceConfig(
        schedule_id='1',
        name='Test Conference',
        url='https://example.com/schedule.xml',
        shift_type_id='type-1',
        minutes_before=15,
        minutes_after=10,
        active_rooms={'Main Hall', 'Workshop'}
    ))


class TestSaveSchedule:
    """Test cases for saving schedule sources."""

    def test_save_new_schedule(self, importer, store, config):
        loaded = store.get_schedule('1')

        assert loaded.name == 'Test Conference'
        assert loaded.active_rooms == {'Main Hall', 'Workshop'}
        assert loaded.created_at == NOW

    def test_save_keeps_created_and_imported_timestamps(self, importer, store, config):
        store.touch_schedule('1', datetime(2024, 8, 2, tzinfo=BERLIN))

        importer.save_schedule(ScheduleSourceConfig(
            schedule_id='1',
            name='Renamed',
            url=config.url,
            shift_type_id='type-1'
        ))

        loaded = store.get_schedule('1')
        assert loaded.name == 'Renamed'
        assert loaded.created_at == NOW
        assert loaded.updated_at == datetime(2024, 8, 2, tzinfo=BERLIN)

    def test_save_with_unknown_shift_type(self, importer, store):
        with pytest.raises(InvalidShiftTypeError):
            importer.save_schedule(ScheduleSourceConfig(
                schedule_id='2', name='Other', url='https://example.com', shift_type_id='missing'
            ))

        assert store.get_schedule('2') is None


class TestPreview:
    """Test cases for ScheduleImporter.preview."""

    def test_preview_does_not_write(self, importer, store, client, config, schedule_xml):
        client.fetch.return_value = schedule_xml([TALK, WORKSHOP, SIDE])

        plan = importer.preview('1')

        assert set(plan.diff.added) == {'guid-1', 'guid-2'}
        assert [room.name for room in plan.diff.new_rooms] == ['Side Stage']
        assert plan.schedule.conference.title == 'Test Conference'
        assert plan.diff.added['guid-2'].title == 'Talk [de]'
        assert store.get_schedule_links('1') == {}
        assert 'Side Stage' not in {location.name for location in store.get_all_locations()}
        client.fetch.assert_called_once_with('https://example.com/schedule.xml')

    def test_preview_fetches_every_time(self, importer, client, config, schedule_xml):
        client.fetch.return_value = schedule_xml([TALK])

        importer.preview('1')
        importer.preview('1')

        assert client.fetch.call_count == 2


class TestCommit:
    """Test cases for ScheduleImporter.commit."""

    def test_commit_creates_shifts(self, importer, store, client, config, schedule_xml):
        client.fetch.return_value = schedule_xml([TALK, WORKSHOP, SIDE])

        result = importer.commit('1', actor='admin')

        assert result.added == 2
        assert result.locations_created == 1
        links = store.get_schedule_links('1')
        assert set(links) == {'guid-1', 'guid-2'}
        shift = links['guid-1'].shift
        assert shift.start == datetime(2024, 8, 13, 12, 15, tzinfo=BERLIN)
        assert shift.end == datetime(2024, 8, 13, 13, 40, tzinfo=BERLIN)
        assert shift.start.utcoffset().total_seconds() == 7200
        assert store.get_schedule('1').updated_at == NOW

    def test_commit_twice_is_stable(self, importer, store, client, config, schedule_xml):
        client.fetch.return_value = schedule_xml([TALK, WORKSHOP])
        importer.commit('1', actor='admin')

        result = importer.commit('1', actor='admin')

        assert (result.added, result.updated, result.deleted) == (0, 0, 0)
        assert importer.preview('1').diff.is_empty

    def test_commit_applies_changes(self, importer, store, client, config, schedule_xml, notifier):
        client.fetch.return_value = schedule_xml([TALK, WORKSHOP])
        importer.commit('1', actor='admin')
        workshop_shift = store.get_schedule_links('1')['guid-2'].shift
        store.put_shift_entry(ShiftEntry('entry-1', workshop_shift.shift_id, 'user-1', 'Angel'))

        moved = dict(TALK, date='2024-08-13T13:00:00+02:00')
        client.fetch.return_value = schedule_xml([moved])
        result = importer.commit('1', actor='editor')

        assert (result.added, result.updated, result.deleted) == (0, 1, 1)
        links = store.get_schedule_links('1')
        assert set(links) == {'guid-1'}
        assert links['guid-1'].shift.start == datetime(2024, 8, 13, 12, 45, tzinfo=BERLIN)
        assert links['guid-1'].shift.updated_by == 'editor'
        deleting = [call for call in notifier.notify.call_args_list if call.args[0] == SHIFT_ENTRY_DELETING]
        assert len(deleting) == 1
        assert deleting[0].args[1]['user_id'] == 'user-1'

    def test_deactivating_room_deletes_its_shifts(self, importer, store, client, config, schedule_xml):
        client.fetch.return_value = schedule_xml([TALK, WORKSHOP])
        importer.commit('1')
        config.active_rooms = {'Main Hall'}
        importer.save_schedule(config)

        plan = importer.preview('1')

        assert set(plan.diff.deleted) == {'guid-2'}
        assert plan.diff.deleted['guid-2'].reason == DeleteReason.ROOM_INACTIVE

    def test_fetch_failure_writes_nothing(self, importer, store, client, config):
        client.fetch.side_effect = ScheduleRequestError('connection refused')

        with pytest.raises(ScheduleRequestError):
            importer.commit('1')

        assert store.get_schedule_links('1') == {}
        assert store.get_schedule('1').updated_at is None
        # Lock is released after the failure
        assert store.acquire_import_lock('1', 'someone', 60) is True

    def test_parse_failure_writes_nothing(self, importer, store, client, config):
        client.fetch.return_value = b'<html>Maintenance</html>'

        with pytest.raises(ScheduleReadError):
            importer.commit('1')

        assert store.get_schedule_links('1') == {}
        assert len(store.get_all_locations()) == 2

    def test_invalid_shift_type_rejected_before_fetch(self, importer, store, client, config):
        store.shift_types.delete_item(Key={'shift_type_id': 'type-1'})

        with pytest.raises(InvalidShiftTypeError):
            importer.commit('1')

        client.fetch.assert_not_called()

    def test_unknown_schedule(self, importer, client):
        with pytest.raises(ScheduleNotFoundError):
            importer.commit('missing')

        client.fetch.assert_not_called()

    def test_concurrent_commit_is_rejected(self, importer, store, client, config, schedule_xml):
        client.fetch.return_value = schedule_xml([TALK])
        store.acquire_import_lock('1', 'other-run', 60)

        with pytest.raises(ImportInProgressError):
            importer.commit('1')

        client.fetch.assert_not_called()
        assert store.get_schedule_links('1') == {}

    def test_other_source_is_not_blocked(self, importer, store, client, config, schedule_xml):
        client.fetch.return_value = schedule_xml([TALK])
        store.acquire_import_lock('2', 'other-run', 60)

        assert importer.commit('1').added == 1


class TestDeleteSchedule:
    """Test cases for ScheduleImporter.delete_schedule."""

    def test_delete_removes_shifts_and_notifies(self, importer, store, client, config, schedule_xml, notifier):
        client.fetch.return_value = schedule_xml([TALK, WORKSHOP])
        importer.commit('1')
        links = store.get_schedule_links('1')
        store.put_shift_entry(ShiftEntry('entry-1', links['guid-1'].shift_id, 'user-1', 'Angel'))
        store.put_shift_entry(ShiftEntry('entry-2', links['guid-2'].shift_id, 'user-2', 'Angel'))
        notifier.reset_mock()

        deleted = importer.delete_schedule('1')

        assert deleted == 2
        assert store.get_schedule('1') is None
        assert store.get_schedule_links('1') == {}
        assert store.get_shift(links['guid-1'].shift_id) is None
        assert [call.args[0] for call in notifier.notify.call_args_list] == [SHIFT_ENTRY_DELETING] * 2

    def test_delete_unknown_schedule(self, importer):
        with pytest.raises(ScheduleNotFoundError):
            importer.delete_schedule('missing')

    def test_delete_while_importing(self, importer, store, config):
        store.acquire_import_lock('1', 'other-run', 60)

        with pytest.raises(ImportInProgressError):
            importer.delete_schedule('1')

        assert store.get_schedule('1') is not None
