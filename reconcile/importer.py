"""Schedule import service: preview, commit and removal of schedule sources."""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, tzinfo
from typing import Callable, Iterator, Optional, Tuple

from feed.models import Schedule
from reconcile.apply_engine import ApplyEngine
from reconcile.diff_engine import DiffEngine
from reconcile.errors import (
    ImportInProgressError,
    InvalidShiftTypeError,
    ScheduleNotFoundError,
)
from reconcile.models import ImportPlan, ImportResult, ScheduleDiff, ScheduleSourceConfig

logger = logging.getLogger(__name__)


class ScheduleImporter:
    """
    Runs imports of configured schedule sources.

    Commits and deletions of the same source must not overlap, both compute
    their changes from the links stored at the time they start. They hold a
    per-source lease in the store while running and fail with
    ImportInProgressError when another run holds it. Different sources are
    independent.
    """

    DEFAULT_LOCK_TTL_SECONDS = 900

    def __init__(
        self,
        store,
        client,
        parser,
        notifier,
        timezone: tzinfo,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        clock: Callable[[], datetime] = None
    ):
        """
        Initialize the importer.

        Args:
            store: DynamoDBStore (or compatible)
            client: Fetch collaborator with ``fetch(url) -> bytes``
            parser: Parser collaborator with ``parse(data) -> Schedule``
            notifier: Notification sink
            timezone: Processing timezone for shift times
            lock_ttl_seconds: Lease duration of the per-source lock
            clock: Optional callable returning the current time
        """
        self.store = store
        self.client = client
        self.parser = parser
        self.timezone = timezone
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock or (lambda: datetime.now(self.timezone))
        self.diff_engine = DiffEngine(timezone)
        self.apply_engine = ApplyEngine(store, notifier, timezone, clock=self.clock)

    def save_schedule(self, config: ScheduleSourceConfig) -> ScheduleSourceConfig:
        """
        Create or edit a schedule source.

        Raises:
            InvalidShiftTypeError: If the configured shift type does not exist
        """
        self._check_shift_type(config)

        existing = self.store.get_schedule(config.schedule_id)
        now = self.clock()
        config.created_at = existing.created_at if existing and existing.created_at else now
        if existing:
            config.updated_at = existing.updated_at
        self.store.save_schedule(config)

        logger.info(
            f"Schedule {config.name}: Url {config.url}, Shift Type {config.shift_type_id}, "
            f"({'from shift type' if config.needed_from_shift_type else 'from room'}), "
            f"minutes before/after {config.minutes_before}/{config.minutes_after}, "
            f"for: {', '.join(sorted(config.active_rooms))}",
            extra={'schedule': config.schedule_id}
        )
        return config

    def preview(self, schedule_id: str) -> ImportPlan:
        """
        Compute what an import would change without applying it.

        Args:
            schedule_id: Schedule source id

        Returns:
            ImportPlan with snapshot and diff
        """
        config = self.get_schedule(schedule_id)
        schedule, diff = self._fetch_and_diff(config)
        return ImportPlan(config=config, schedule=schedule, diff=diff)

    def commit(self, schedule_id: str, actor: Optional[str] = None) -> ImportResult:
        """
        Fetch, diff and apply a schedule source.

        Fetch and parse errors are raised before anything is written.

        Args:
            schedule_id: Schedule source id
            actor: User performing the import

        Returns:
            ImportResult of the applied diff
        """
        config = self.get_schedule(schedule_id)

        with self.import_lock(schedule_id):
            _, diff = self._fetch_and_diff(config)
            result = self.apply_engine.apply(config, diff, actor)

        logger.info(
            f"Schedule {config.name} imported: {result.added} added, "
            f"{result.updated} updated, {result.deleted} deleted, "
            f"{result.locations_created} locations created"
        )
        return result

    def delete_schedule(self, schedule_id: str) -> int:
        """
        Delete a schedule source and every shift imported from it.

        Each shift goes through the same deletion as an import, so users
        signed up for it are notified.

        Args:
            schedule_id: Schedule source id

        Returns:
            Number of deleted shifts
        """
        config = self.store.get_schedule(schedule_id)
        if config is None:
            raise ScheduleNotFoundError(schedule_id)

        deleted = 0
        with self.import_lock(schedule_id):
            for guid in self.store.get_schedule_links(schedule_id):
                if self.apply_engine.delete_shift(config, guid):
                    deleted += 1
            self.store.delete_schedule(schedule_id)

        logger.info(
            f"Schedule {config.name} deleted",
            extra={'schedule': schedule_id, 'shifts_deleted': deleted}
        )
        return deleted

    def get_schedule(self, schedule_id: str) -> ScheduleSourceConfig:
        """
        Load a schedule source and validate its shift type.

        Raises:
            ScheduleNotFoundError: If the source does not exist
            InvalidShiftTypeError: If its shift type does not exist
        """
        config = self.store.get_schedule(schedule_id)
        if config is None:
            raise ScheduleNotFoundError(schedule_id)
        self._check_shift_type(config)
        return config

    @contextmanager
    def import_lock(self, schedule_id: str) -> Iterator[str]:
        """Hold the per-source lease for the duration of the block."""
        owner = str(uuid.uuid4())
        if not self.store.acquire_import_lock(schedule_id, owner, self.lock_ttl_seconds):
            logger.warning(f"Schedule {schedule_id} is already being imported")
            raise ImportInProgressError(schedule_id)

        try:
            yield owner
        finally:
            self.store.release_import_lock(schedule_id, owner)

    def _fetch_and_diff(self, config: ScheduleSourceConfig) -> Tuple[Schedule, ScheduleDiff]:
        data = self.client.fetch(config.url)
        schedule = self.parser.parse(data)

        links = self.store.get_schedule_links(config.schedule_id)
        locations = self.store.get_all_locations()
        return schedule, self.diff_engine.diff(schedule, config, links, locations)

    def _check_shift_type(self, config: ScheduleSourceConfig) -> None:
        if self.store.get_shift_type(config.shift_type_id) is None:
            raise InvalidShiftTypeError(config.shift_type_id)
