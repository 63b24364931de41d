"""Data models for schedule reconciliation."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from feed.models import Event, Room, Schedule


@dataclass
class ScheduleSourceConfig:
    """Import settings of one configured schedule feed."""
    schedule_id: str
    name: str
    url: str
    shift_type_id: str
    needed_from_shift_type: bool = False
    minutes_before: int = 0
    minutes_after: int = 0
    active_rooms: Set[str] = field(default_factory=set)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Location:
    """Persisted room."""
    location_id: str
    name: str


@dataclass
class ShiftType:
    shift_type_id: str
    name: str


@dataclass
class Shift:
    """Persisted local shift."""
    shift_id: str
    title: str
    shift_type_id: str
    location_id: str
    start: datetime
    end: datetime
    url: str
    transaction_id: str
    needed_from_shift_type: bool = False
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ScheduleLink:
    """Join between a schedule source event GUID and the shift it produced."""
    schedule_id: str
    guid: str
    shift_id: str
    shift: Optional[Shift] = None


@dataclass
class ShiftEntry:
    """Work assignment of a user on a shift."""
    entry_id: str
    shift_id: str
    user_id: str
    angel_type: str
    freeloaded: bool = False


@dataclass
class NormalizedEvent:
    """Feed event with buffers, processing timezone and language applied."""
    guid: str
    title: str
    room: str
    start: datetime
    end: datetime
    url: str
    event: Event


class DeleteReason(str, Enum):
    """Why a linked shift is scheduled for deletion."""
    REMOVED = 'removed'
    ROOM_INACTIVE = 'room_inactive'


@dataclass
class DeletedEvent:
    """Linked shift whose event is no longer imported."""
    guid: str
    reason: DeleteReason
    shift: Optional[Shift] = None


@dataclass
class ScheduleDiff:
    """Changes needed to bring a source's shifts in line with a snapshot."""
    added: Dict[str, NormalizedEvent] = field(default_factory=dict)
    changed: Dict[str, NormalizedEvent] = field(default_factory=dict)
    deleted: Dict[str, DeletedEvent] = field(default_factory=dict)
    new_rooms: List[Room] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.deleted or self.new_rooms)


@dataclass
class ImportResult:
    """Result of an applied import."""
    locations_created: int
    added: int
    updated: int
    deleted: int


@dataclass
class ImportPlan:
    """Preview of an import: the fetched snapshot and its diff."""
    config: ScheduleSourceConfig
    schedule: Schedule
    diff: ScheduleDiff
