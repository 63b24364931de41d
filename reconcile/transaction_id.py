"""Deterministic transaction identifiers for imported shifts."""
import hashlib
from typing import Optional, Union

SCHEDULE_TRANSACTION_SALT = '5c4ed01e'


def uuid_by(value: Union[str, int, float], name: Optional[str] = None) -> str:
    """
    Generate a version 4 formatted UUID that depends only on its inputs.

    The md5 hex digest of ``value`` provides the random part. When ``name``
    is given (at most 8 hex characters, zero padded on the left) it replaces
    the leading characters, so all ids sharing a name share a prefix.

    Args:
        value: Any value that can be converted to a string
        name: Optional namespace prefix

    Returns:
        UUID string such as ``5c4ed01e-xxxx-4xxx-[89ab]xxx-xxxxxxxxxxxx``
    """
    digest = hashlib.md5(str(value).encode('utf-8')).hexdigest()

    if name:
        prefix = name[:8].rjust(8, '0')
        digest = prefix + digest[8:]

    variant = int(digest[16:20], 16) & 0x3fff | 0x8000

    return '%08s-%04s-4%03s-%04x-%012s' % (
        digest[0:8],
        digest[8:12],
        digest[13:16],
        variant,
        digest[20:32]
    )


def schedule_transaction_id(schedule_id: str) -> str:
    """Transaction id shared by all shifts created from a schedule source."""
    return uuid_by(schedule_id, SCHEDULE_TRANSACTION_SALT)
