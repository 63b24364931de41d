"""Parser for frab-style schedule XML documents."""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from feed.models import Conference, Day, Event, Room, Schedule
from reconcile.errors import ScheduleReadError

logger = logging.getLogger(__name__)


class ScheduleXmlParser:
    """Turns a schedule XML document into a Schedule snapshot."""

    def parse(self, data: Union[bytes, str]) -> Schedule:
        """
        Parse a schedule document.

        Args:
            data: Raw document as fetched from the feed

        Returns:
            Parsed Schedule

        Raises:
            ScheduleReadError: If the document is not a well-formed schedule
        """
        try:
            soup = BeautifulSoup(data, 'xml')
        except ParserRejectedMarkup as e:
            raise ScheduleReadError(str(e)) from e

        root = soup.find('schedule')
        if root is None:
            raise ScheduleReadError('Document has no schedule element')

        try:
            conference = self._parse_conference(root.find('conference', recursive=False))
            default_tz = self._conference_timezone(conference)

            days = [
                self._parse_day(day_elem, default_tz)
                for day_elem in root.find_all('day', recursive=False)
            ]
        except (KeyError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to parse schedule document: {e}")
            raise ScheduleReadError(str(e)) from e

        schedule = Schedule(
            version=self._text(root, 'version'),
            conference=conference,
            days=days
        )
        self._check_unique_guids(schedule)

        logger.info(
            f"Parsed schedule with {len(schedule.days)} days and "
            f"{len(schedule.events)} events"
        )
        return schedule

    def _parse_conference(self, element) -> Conference:
        if element is None:
            raise ValueError('Schedule has no conference element')

        title = self._text(element, 'title')
        if not title:
            raise ValueError('Conference has no title')

        start = self._text(element, 'start')
        end = self._text(element, 'end')
        days = self._text(element, 'days')

        return Conference(
            title=title,
            acronym=self._text(element, 'acronym'),
            start=self._parse_date(start) if start else None,
            end=self._parse_date(end) if end else None,
            days=int(days) if days else 0,
            timeslot_duration=self._text(element, 'timeslot_duration'),
            time_zone_name=self._text(element, 'time_zone_name') or None,
            base_url=self._text(element, 'base_url') or None
        )

    def _parse_day(self, element, default_tz) -> Day:
        start = element.get('start')
        end = element.get('end')

        rooms = []
        for room_elem in element.find_all('room', recursive=False):
            name = room_elem['name']
            events = [
                self._parse_event(event_elem, name, default_tz)
                for event_elem in room_elem.find_all('event', recursive=False)
            ]
            rooms.append(Room(name=name, events=events))

        return Day(
            index=int(element['index']),
            date=self._parse_date(element['date']),
            start=self._parse_datetime(start, default_tz) if start else None,
            end=self._parse_datetime(end, default_tz) if end else None,
            rooms=rooms
        )

    def _parse_event(self, element, room_name: str, default_tz) -> Event:
        guid = element['guid'].strip()
        if not guid:
            raise ValueError('Event without guid')

        event_id = element.get('id')

        return Event(
            guid=guid,
            event_id=int(event_id) if event_id else 0,
            room=room_name,
            title=self._text(element, 'title'),
            date=self._parse_datetime(self._text(element, 'date'), default_tz),
            duration=self._parse_duration(self._text(element, 'duration')),
            subtitle=self._text(element, 'subtitle'),
            type=self._text(element, 'type'),
            start=self._text(element, 'start'),
            abstract=self._text(element, 'abstract'),
            slug=self._text(element, 'slug'),
            track=self._text(element, 'track'),
            language=self._text(element, 'language') or None,
            description=self._text(element, 'description'),
            url=self._text(element, 'url') or None
        )

    def _check_unique_guids(self, schedule: Schedule) -> None:
        seen = set()
        for event in schedule.events:
            if event.guid in seen:
                raise ScheduleReadError(f"Duplicate event guid {event.guid}")
            seen.add(event.guid)

    @staticmethod
    def _text(element, name: str) -> str:
        child = element.find(name, recursive=False)
        if child is None:
            return ''
        return child.get_text(strip=True)

    @staticmethod
    def _conference_timezone(conference: Conference):
        if not conference.time_zone_name:
            return timezone.utc
        try:
            return ZoneInfo(conference.time_zone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                f"Unknown conference time zone {conference.time_zone_name}, using UTC"
            )
            return timezone.utc

    @staticmethod
    def _parse_date(value: str) -> date:
        return date.fromisoformat(value.strip())

    @staticmethod
    def _parse_datetime(value: str, default_tz) -> datetime:
        """
        Parse an ISO 8601 timestamp.

        Args:
            value: Timestamp, with or without UTC offset
            default_tz: Zone applied when the timestamp has no offset

        Returns:
            Timezone-aware datetime
        """
        parsed = datetime.fromisoformat(value.strip())
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=default_tz)
        return parsed

    @staticmethod
    def _parse_duration(value: str) -> timedelta:
        """Parse durations of the form HH:MM or HH:MM:SS."""
        parts = value.strip().split(':')
        if len(parts) not in (2, 3):
            raise ValueError(f"Invalid duration {value!r}")

        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
        return timedelta(hours=hours, minutes=minutes, seconds=seconds)
