"""Unit tests for deterministic transaction ids."""
import hashlib
import re

from reconcile.transaction_id import SCHEDULE_TRANSACTION_SALT, schedule_transaction_id, uuid_by

UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$')


def test_uuid_by_is_deterministic():
    assert uuid_by('42', 'abc') == uuid_by('42', 'abc')


def test_uuid_by_format():
    assert UUID_PATTERN.match(uuid_by('42'))
    assert UUID_PATTERN.match(uuid_by(42, SCHEDULE_TRANSACTION_SALT))


def test_uuid_by_uses_md5_of_value():
    digest = hashlib.md5(b'42').hexdigest()

    value = uuid_by('42')

    assert value.startswith(digest[0:8] + '-' + digest[8:12] + '-4' + digest[13:16])
    assert value.endswith(digest[20:32])


def test_uuid_by_name_is_prefix():
    assert uuid_by('42', '5c4ed01e').startswith('5c4ed01e-')


def test_uuid_by_short_name_is_zero_padded():
    assert uuid_by('42', 'abc').startswith('00000abc-')


def test_uuid_by_accepts_numbers():
    assert uuid_by(42) == uuid_by('42')


def test_schedule_transaction_id_stable_per_source():
    """Test the same source always yields the same id and other sources differ."""
    assert schedule_transaction_id('1') == schedule_transaction_id('1')
    assert schedule_transaction_id('1') != schedule_transaction_id('2')
    assert schedule_transaction_id('1').startswith(SCHEDULE_TRANSACTION_SALT)
