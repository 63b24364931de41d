"""AWS Lambda handler for schedule imports."""
import json
import logging
import os
import time
from typing import Any, Dict
from zoneinfo import ZoneInfo

from feed.schedule_client import ScheduleClient
from feed.xml_parser import ScheduleXmlParser
from reconcile.errors import ScheduleImportError
from reconcile.importer import ScheduleImporter
from reconcile.models import ImportPlan, ScheduleSourceConfig
from reconcile.notifications import LoggingNotificationSink, SnsNotificationSink
from storage.dynamodb_store import DynamoDBStore

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including fields passed via ``extra``."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_importer() -> ScheduleImporter:
    """Wire the importer from environment configuration."""
    table_prefix = os.environ.get('TABLE_PREFIX', 'schedule-import')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    timezone = ZoneInfo(os.environ.get('LOCAL_TIMEZONE', 'UTC'))
    topic_arn = os.environ.get('NOTIFICATION_TOPIC_ARN')
    lock_ttl = int(os.environ.get('LOCK_TTL_SECONDS', '900'))

    notifier = SnsNotificationSink(topic_arn) if topic_arn else LoggingNotificationSink()

    return ScheduleImporter(
        store=DynamoDBStore(table_prefix=table_prefix),
        client=ScheduleClient(timeout=timeout_seconds),
        parser=ScheduleXmlParser(),
        notifier=notifier,
        timezone=timezone,
        lock_ttl_seconds=lock_ttl
    )


def config_from_payload(payload: Dict[str, Any]) -> ScheduleSourceConfig:
    """Build a schedule source configuration from a request payload."""
    return ScheduleSourceConfig(
        schedule_id=str(payload['schedule_id']),
        name=payload['name'],
        url=payload['url'],
        shift_type_id=str(payload['shift_type_id']),
        needed_from_shift_type=bool(payload.get('needed_from_shift_type', False)),
        minutes_before=int(payload.get('minutes_before', 0)),
        minutes_after=int(payload.get('minutes_after', 0)),
        active_rooms=set(payload.get('active_rooms', []))
    )


def plan_to_dict(plan: ImportPlan) -> Dict[str, Any]:
    """Render an import preview for the operator."""
    def event_dict(event):
        return {
            'guid': event.guid,
            'title': event.title,
            'room': event.room,
            'start': event.start.isoformat(),
            'end': event.end.isoformat(),
        }

    diff = plan.diff
    return {
        'schedule_id': plan.config.schedule_id,
        'conference': plan.schedule.conference.title,
        'locations': {
            'add': [room.name for room in diff.new_rooms],
        },
        'shifts': {
            'add': [event_dict(event) for event in diff.added.values()],
            'update': [event_dict(event) for event in diff.changed.values()],
            'delete': [
                {
                    'guid': deleted.guid,
                    'reason': deleted.reason.value,
                    'title': deleted.shift.title if deleted.shift else '',
                    'start': deleted.shift.start.isoformat() if deleted.shift else None,
                    'end': deleted.shift.end.isoformat() if deleted.shift else None,
                }
                for deleted in diff.deleted.values()
            ],
        },
    }


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for schedule imports.

    Args:
        event: Payload with ``action`` (save, preview, import, delete),
            ``schedule_id``, optional ``actor`` and, for save, ``schedule``
        context: Lambda context object

    Returns:
        Response dict with statusCode and a message key
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)

    start_time = time.time()
    action = event.get('action')
    logger.info(
        "Lambda execution started",
        extra={'action': action, 'schedule': event.get('schedule_id')}
    )

    try:
        importer = build_importer()

        if action == 'save':
            config = importer.save_schedule(config_from_payload(event['schedule']))
            body = {'message': 'schedule.edit.success', 'schedule_id': config.schedule_id}

        elif action == 'preview':
            plan = importer.preview(str(event['schedule_id']))
            body = {'message': 'schedule.preview.success', 'preview': plan_to_dict(plan)}

        elif action == 'import':
            result = importer.commit(str(event['schedule_id']), actor=event.get('actor'))
            body = {
                'message': 'schedule.import.success',
                'statistics': {
                    'locations_created': result.locations_created,
                    'shifts_added': result.added,
                    'shifts_updated': result.updated,
                    'shifts_deleted': result.deleted,
                }
            }

        elif action == 'delete':
            deleted = importer.delete_schedule(str(event['schedule_id']))
            body = {'message': 'schedule.delete.success', 'shifts_deleted': deleted}

        else:
            logger.warning(f"Unknown action {action!r}")
            return _response(400, {'message': 'schedule.action.unknown'})

    except ScheduleImportError as e:
        logger.error(
            f"Schedule {action} failed: {e.message_key}",
            extra={'error_type': type(e).__name__, 'detail': e.detail}
        )
        return _response(400, {
            'message': e.message_key,
            'duration_seconds': round(time.time() - start_time, 2)
        })

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'message': 'schedule.error',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(time.time() - start_time, 2)
        })

    body['duration_seconds'] = round(time.time() - start_time, 2)
    logger.info(
        "Lambda execution completed successfully",
        extra={'action': action, 'duration_seconds': body['duration_seconds']}
    )
    return _response(200, body)
