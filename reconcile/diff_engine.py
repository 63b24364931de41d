"""Diff engine computing shift changes for a schedule snapshot."""
import logging
from datetime import timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Mapping

from feed.models import Event, Room, Schedule
from reconcile.models import (
    DeletedEvent,
    DeleteReason,
    Location,
    NormalizedEvent,
    ScheduleDiff,
    ScheduleLink,
    ScheduleSourceConfig,
)

logger = logging.getLogger(__name__)

UTC = timezone.utc


class DiffEngine:
    """Compares a schedule snapshot with the shifts already imported from it."""

    def __init__(self, timezone: tzinfo):
        """
        Initialize the diff engine.

        Args:
            timezone: Processing timezone shift times are stored in
        """
        self.timezone = timezone

    def diff(
        self,
        schedule: Schedule,
        config: ScheduleSourceConfig,
        links: Mapping[str, ScheduleLink],
        locations: Iterable[Location]
    ) -> ScheduleDiff:
        """
        Compute added, changed and deleted events plus unknown rooms.

        Only events in active rooms are imported. Linked events that are not
        in an active room any more are deleted, whether they vanished from the
        feed or their room was deactivated; the reason tells them apart.

        Args:
            schedule: Freshly parsed snapshot
            config: Settings of the schedule source
            links: Existing links of this source keyed by GUID, with shifts
            locations: All known locations

        Returns:
            ScheduleDiff for the snapshot
        """
        locations_by_name = {location.name: location for location in locations}

        incoming = self.normalize_events(schedule, config)
        published_guids = {event.guid for event in schedule.events}

        result = ScheduleDiff(new_rooms=self.new_rooms(schedule, locations_by_name))

        for guid, event in incoming.items():
            link = links.get(guid)
            if link is None:
                result.added[guid] = event
            elif self._differs(link, event, config, locations_by_name):
                result.changed[guid] = event

        for guid, link in links.items():
            if guid in incoming:
                continue
            reason = (
                DeleteReason.ROOM_INACTIVE
                if guid in published_guids
                else DeleteReason.REMOVED
            )
            result.deleted[guid] = DeletedEvent(guid=guid, reason=reason, shift=link.shift)

        logger.info(
            f"Schedule diff for {config.name}: {len(result.added)} to add, "
            f"{len(result.changed)} to update, {len(result.deleted)} to delete, "
            f"{len(result.new_rooms)} new rooms"
        )
        return result

    def normalize_events(
        self,
        schedule: Schedule,
        config: ScheduleSourceConfig
    ) -> Dict[str, NormalizedEvent]:
        """
        Normalize the events of all active rooms, keyed by GUID.

        Args:
            schedule: Parsed snapshot
            config: Settings of the schedule source

        Returns:
            Dictionary mapping GUID to NormalizedEvent
        """
        events = {}
        for day in schedule.days:
            for room in day.rooms:
                if room.name not in config.active_rooms:
                    continue
                for event in room.events:
                    events[event.guid] = self.normalize(event, config)
        return events

    def normalize(self, event: Event, config: ScheduleSourceConfig) -> NormalizedEvent:
        """
        Apply lead/trail buffers, processing timezone and language tag.

        Args:
            event: Event from the feed
            config: Settings of the schedule source

        Returns:
            NormalizedEvent as it is compared and stored
        """
        # Buffers are elapsed minutes, so shift in UTC before converting
        start = event.date.astimezone(UTC) - timedelta(minutes=config.minutes_before)
        end = event.end_date.astimezone(UTC) + timedelta(minutes=config.minutes_after)
        start = start.astimezone(self.timezone)
        end = end.astimezone(self.timezone)
        title = f"{event.title} [{event.language}]" if event.language else event.title

        return NormalizedEvent(
            guid=event.guid,
            title=title,
            room=event.room,
            start=start,
            end=end,
            url=event.url or '',
            event=event
        )

    @staticmethod
    def new_rooms(schedule: Schedule, locations_by_name: Mapping[str, Location]) -> List[Room]:
        """Rooms of the snapshot without a location, regardless of the room filter."""
        return [room for room in schedule.rooms if room.name not in locations_by_name]

    @staticmethod
    def _differs(
        link: ScheduleLink,
        event: NormalizedEvent,
        config: ScheduleSourceConfig,
        locations_by_name: Mapping[str, Location]
    ) -> bool:
        shift = link.shift
        if shift is None:
            # Link without shift row, rewrite it
            return True

        location = locations_by_name.get(event.room)
        location_id = location.location_id if location else ''

        return (
            shift.title != event.title or
            shift.shift_type_id != config.shift_type_id or
            shift.start != event.start or
            shift.end != event.end or
            shift.location_id != location_id or
            shift.url != event.url
        )
