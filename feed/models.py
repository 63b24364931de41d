"""Data models for a parsed conference schedule snapshot."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional


@dataclass
class Event:
    """Single timetabled event as published in the schedule feed."""
    guid: str
    event_id: int
    room: str
    title: str
    date: datetime
    duration: timedelta
    subtitle: str = ''
    type: str = ''
    start: str = ''
    abstract: str = ''
    slug: str = ''
    track: str = ''
    language: Optional[str] = None
    description: str = ''
    url: Optional[str] = None

    @property
    def end_date(self) -> datetime:
        """Event end, derived from start date and elapsed duration."""
        end = self.date.astimezone(timezone.utc) + self.duration
        return end.astimezone(self.date.tzinfo)


@dataclass
class Room:
    """Room of one schedule day with the events held in it."""
    name: str
    events: List[Event] = field(default_factory=list)


@dataclass
class Day:
    """One schedule day."""
    index: int
    date: date
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    rooms: List[Room] = field(default_factory=list)


@dataclass
class Conference:
    """Conference metadata from the schedule header."""
    title: str
    acronym: str = ''
    start: Optional[date] = None
    end: Optional[date] = None
    days: int = 0
    timeslot_duration: str = ''
    time_zone_name: Optional[str] = None
    base_url: Optional[str] = None


@dataclass
class Schedule:
    """Complete snapshot parsed from one fetch of a schedule feed."""
    version: str
    conference: Conference
    days: List[Day] = field(default_factory=list)

    @property
    def rooms(self) -> List[Room]:
        """Distinct rooms over all days, in order of first appearance."""
        rooms = {}
        for day in self.days:
            for room in day.rooms:
                rooms.setdefault(room.name, Room(name=room.name))
        return list(rooms.values())

    @property
    def events(self) -> List[Event]:
        return [
            event
            for day in self.days
            for room in day.rooms
            for event in room.events
        ]
