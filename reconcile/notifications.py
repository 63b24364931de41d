"""Sinks for domain notifications emitted during an import."""
import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Dict

import boto3

logger = logging.getLogger(__name__)

SHIFT_ENTRY_DELETING = 'shift.entry.deleting'
SHIFT_UPDATING = 'shift.updating'


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value):
        return asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_payload(payload: Dict[str, Any]) -> str:
    """Serialize a notification payload holding dataclasses and datetimes."""
    return json.dumps(payload, default=_json_default, sort_keys=True)


class LoggingNotificationSink:
    """Writes notifications to the log."""

    def notify(self, name: str, payload: Dict[str, Any]) -> None:
        logger.info(
            f"Notification {name}",
            extra={'notification': name, 'payload': serialize_payload(payload)}
        )


class SnsNotificationSink:
    """Publishes notifications to an SNS topic."""

    def __init__(self, topic_arn: str, region_name: str = None):
        """
        Initialize SNS client.

        Args:
            topic_arn: ARN of the topic receiving notifications
            region_name: Optional AWS region, defaults to the environment
        """
        self.topic_arn = topic_arn
        self.sns = boto3.client('sns', region_name=region_name)
        logger.info(f"Initialized SnsNotificationSink for topic: {topic_arn}")

    def notify(self, name: str, payload: Dict[str, Any]) -> None:
        """
        Publish a notification.

        Args:
            name: Notification name, used as the ``event`` message attribute
            payload: Notification payload
        """
        self.sns.publish(
            TopicArn=self.topic_arn,
            Message=serialize_payload(payload),
            MessageAttributes={
                'event': {'DataType': 'String', 'StringValue': name}
            }
        )
        logger.debug(f"Published {name} to {self.topic_arn}")
