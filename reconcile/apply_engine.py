"""Apply engine writing a schedule diff to the store."""
import logging
import uuid
from dataclasses import replace
from datetime import datetime, tzinfo
from typing import Callable, Dict, Optional

from feed.models import Room
from reconcile.models import (
    ImportResult,
    Location,
    NormalizedEvent,
    ScheduleDiff,
    ScheduleLink,
    ScheduleSourceConfig,
    Shift,
)
from reconcile.notifications import SHIFT_ENTRY_DELETING, SHIFT_UPDATING
from reconcile.transaction_id import schedule_transaction_id

logger = logging.getLogger(__name__)


class ApplyEngine:
    """Applies a ScheduleDiff: rooms first, then creates, updates and deletes."""

    def __init__(
        self,
        store,
        notifier,
        timezone: tzinfo,
        clock: Callable[[], datetime] = None
    ):
        """
        Initialize the apply engine.

        Args:
            store: DynamoDBStore (or compatible) holding locations, shifts and links
            notifier: Sink with a ``notify(name, payload)`` method
            timezone: Processing timezone used for audit timestamps
            clock: Optional callable returning the current time
        """
        self.store = store
        self.notifier = notifier
        self.timezone = timezone
        self.clock = clock or (lambda: datetime.now(self.timezone))

    def apply(
        self,
        config: ScheduleSourceConfig,
        diff: ScheduleDiff,
        actor: Optional[str] = None
    ) -> ImportResult:
        """
        Apply a diff in fixed order.

        Store errors are not caught: they stop the remaining steps and
        leave the ones already written in place. Every shift is written or
        deleted together with its link, so running the import again picks
        up where it stopped.

        Args:
            config: Schedule source the diff was computed for
            diff: Output of the diff engine
            actor: User performing the import

        Returns:
            ImportResult with the number of applied changes
        """
        logger.info(
            f'Started schedule "{config.name}" import',
            extra={'schedule': config.schedule_id}
        )

        for room in diff.new_rooms:
            self.create_location(room)

        locations = {location.name: location for location in self.store.get_all_locations()}

        for event in diff.added.values():
            self.create_shift(config, event, self._location_for(event, locations), actor)

        for event in diff.changed.values():
            self.update_shift(config, event, self._location_for(event, locations), actor)

        deleted = 0
        for deleted_event in diff.deleted.values():
            if self.delete_shift(config, deleted_event.guid):
                deleted += 1

        self.store.touch_schedule(config.schedule_id, self.clock())
        logger.info(
            f'Ended schedule "{config.name}" import',
            extra={'schedule': config.schedule_id}
        )

        return ImportResult(
            locations_created=len(diff.new_rooms),
            added=len(diff.added),
            updated=len(diff.changed),
            deleted=deleted
        )

    def create_location(self, room: Room) -> Location:
        location = self.store.create_location(room.name)
        logger.info(
            f'Created schedule location "{room.name}"',
            extra={'location': room.name}
        )
        return location

    def create_shift(
        self,
        config: ScheduleSourceConfig,
        event: NormalizedEvent,
        location: Location,
        actor: Optional[str]
    ) -> Shift:
        """
        Create a shift and its link for a new event.

        Args:
            config: Schedule source
            event: Normalized event
            location: Location of the event's room
            actor: User performing the import

        Returns:
            Created Shift
        """
        now = self.clock()
        shift = Shift(
            shift_id=str(uuid.uuid4()),
            title=event.title,
            shift_type_id=config.shift_type_id,
            location_id=location.location_id,
            start=event.start,
            end=event.end,
            url=event.url,
            transaction_id=schedule_transaction_id(config.schedule_id),
            needed_from_shift_type=config.needed_from_shift_type,
            created_by=actor,
            created_at=now,
            updated_at=now
        )
        link = ScheduleLink(
            schedule_id=config.schedule_id,
            guid=event.guid,
            shift_id=shift.shift_id
        )
        self.store.create_shift_with_link(shift, link)

        self._log_shift('Created', shift, location.name, event.guid)
        return shift

    def update_shift(
        self,
        config: ScheduleSourceConfig,
        event: NormalizedEvent,
        location: Location,
        actor: Optional[str]
    ) -> Shift:
        """
        Overwrite the linked shift of a changed event.

        Emits ``shift.updating`` with the old and the new shift.

        Args:
            config: Schedule source
            event: Normalized event
            location: Location of the event's room
            actor: User performing the import

        Returns:
            Updated Shift
        """
        link = self.store.get_schedule_link(config.schedule_id, event.guid)
        if link is None:
            raise LookupError(f"No link for event {event.guid} of schedule {config.schedule_id}")

        now = self.clock()
        old_shift = link.shift
        if old_shift is None:
            logger.warning(
                f"Shift {link.shift_id} of event {event.guid} is missing, recreating it"
            )
            shift = Shift(
                shift_id=link.shift_id,
                title=event.title,
                shift_type_id=config.shift_type_id,
                location_id=location.location_id,
                start=event.start,
                end=event.end,
                url=event.url,
                transaction_id=schedule_transaction_id(config.schedule_id),
                created_by=actor,
                created_at=now
            )
        else:
            shift = replace(old_shift)

        shift.title = event.title
        shift.shift_type_id = config.shift_type_id
        shift.start = event.start
        shift.end = event.end
        shift.location_id = location.location_id
        shift.url = event.url
        shift.needed_from_shift_type = config.needed_from_shift_type
        shift.updated_by = actor
        shift.updated_at = now
        self.store.put_shift(shift)

        self.notifier.notify(SHIFT_UPDATING, {'shift': shift, 'old_shift': old_shift})

        self._log_shift('Updated', shift, location.name, event.guid)
        return shift

    def delete_shift(self, config: ScheduleSourceConfig, guid: str) -> bool:
        """
        Delete the shift linked to a GUID together with its link.

        Users signed up for the shift are announced with one
        ``shift.entry.deleting`` notification each before anything is removed.

        Args:
            config: Schedule source
            guid: Event GUID

        Returns:
            True if a link was deleted, False if none existed
        """
        link = self.store.get_schedule_link(config.schedule_id, guid)
        if link is None:
            logger.warning(f"No link for event {guid} of schedule {config.schedule_id}")
            return False

        shift = link.shift
        location = None
        if shift is not None:
            location = self.store.get_location(shift.location_id)
            self._notify_entries_deleting(shift, location)

        self.store.delete_shift_with_link(link)

        if shift is None:
            logger.info(
                f"Deleted dangling schedule link ({guid})",
                extra={'guid': guid, 'schedule': config.schedule_id}
            )
        else:
            self._log_shift('Deleted', shift, location.name if location else '', guid)
        return True

    def _notify_entries_deleting(self, shift: Shift, location: Optional[Location]) -> None:
        shift_type = self.store.get_shift_type(shift.shift_type_id)

        for entry in self.store.get_shift_entries(shift.shift_id):
            self.notifier.notify(SHIFT_ENTRY_DELETING, {
                'user_id': entry.user_id,
                'start': shift.start,
                'end': shift.end,
                'name': shift_type.name if shift_type else '',
                'title': shift.title,
                'type': entry.angel_type,
                'location': location,
                'freeloaded': entry.freeloaded,
            })

    @staticmethod
    def _location_for(event: NormalizedEvent, locations: Dict[str, Location]) -> Location:
        location = locations.get(event.room)
        if location is None:
            raise LookupError(f'No location for room "{event.room}" of event {event.guid}')
        return location

    @staticmethod
    def _log_shift(action: str, shift: Shift, location_name: str, guid: str) -> None:
        logger.info(
            f'{action} schedule shift "{shift.title}" in "{location_name}" '
            f'({shift.start.isoformat()} {shift.end.isoformat()}, {guid})',
            extra={
                'shift': shift.title,
                'location': location_name,
                'from': shift.start.isoformat(),
                'to': shift.end.isoformat(),
                'guid': guid,
            }
        )
