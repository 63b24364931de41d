"""Shared fixtures."""
import os
from unittest.mock import patch

import pytest

SCHEDULE_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<schedule>
    <version>{version}</version>
    <conference>
        <title>Test Conference</title>
        <acronym>TC24</acronym>
        <start>2024-08-13</start>
        <end>2024-08-13</end>
        <days>1</days>
        <timeslot_duration>00:15</timeslot_duration>
        <time_zone_name>Europe/Berlin</time_zone_name>
        <base_url>https://example.com/tc24/</base_url>
    </conference>
    <day index="1" date="2024-08-13" start="2024-08-13T10:00:00+02:00" end="2024-08-14T02:00:00+02:00">
{rooms}
    </day>
</schedule>
"""

EVENT_TEMPLATE = """            <event guid="{guid}" id="{id}">
                <date>{date}</date>
                <start>{start}</start>
                <duration>{duration}</duration>
                <room>{room}</room>
                <slug>tc24-{id}</slug>
                <url>{url}</url>
                <title>{title}</title>
                <subtitle></subtitle>
                <track>General</track>
                <type>Talk</type>
                <language>{language}</language>
                <abstract>Abstract</abstract>
                <description>Description</description>
            </event>"""


def build_schedule_xml(events, version='1.0', rooms=None) -> bytes:
    """
    Render a one-day schedule document.

    Args:
        events: Dicts with guid, room, date and optional duration, title,
            language and url
        version: Schedule version string
        rooms: Room names to render even when they hold no events

    Returns:
        Encoded XML document
    """
    by_room = {name: [] for name in rooms or []}
    for index, event in enumerate(events, start=1):
        by_room.setdefault(event['room'], []).append(EVENT_TEMPLATE.format(
            guid=event['guid'],
            id=index,
            date=event['date'],
            start=event['date'][11:16],
            duration=event.get('duration', '01:00'),
            room=event['room'],
            url=event.get('url', ''),
            title=event.get('title', 'Talk'),
            language=event.get('language', '')
        ))

    rendered = '\n'.join(
        f'        <room name="{name}">\n' + '\n'.join(items) + '\n        </room>'
        for name, items in by_room.items()
    )
    return SCHEDULE_TEMPLATE.format(version=version, rooms=rendered).encode('utf-8')


@pytest.fixture
def schedule_xml():
    """Factory rendering schedule documents."""
    return build_schedule_xml


@pytest.fixture
def aws_credentials():
    """Fake AWS credentials for moto."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1',
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars
