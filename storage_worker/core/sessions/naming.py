"""
Mapping between session ids and object keys.

Path structure: {session_id}/session.tar.gz
Putting the session id first means a recursive listing groups naturally by
session (split on the first '/'), and everything belonging to a session
sits under one prefix.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from .errors import InvalidSessionIdError
from .models import ObjectInfo, SessionRecord

ARTIFACT_NAME = "session.tar.gz"
KEY_SEPARATOR = "/"

# No separators, no leading dot: keeps "..", "a/b" and hidden names out of keys.
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_session_id(session_id: str) -> str:
    """Return the id unchanged, or raise InvalidSessionIdError."""
    if not isinstance(session_id, str) or not SESSION_ID_PATTERN.fullmatch(session_id):
        raise InvalidSessionIdError(str(session_id))
    return session_id


def object_key_for(session_id: str) -> str:
    """Build the storage key for a session artifact."""
    return f"{validate_session_id(session_id)}{KEY_SEPARATOR}{ARTIFACT_NAME}"


def session_id_from_object_key(key: str) -> str:
    """Recover the session id from any key under a session prefix."""
    return key.split(KEY_SEPARATOR, 1)[0]


def to_session_record(
    session_id: str,
    entry: ObjectInfo,
    now: Optional[datetime] = None,
) -> SessionRecord:
    """
    Map a stat or list entry to a SessionRecord.

    A missing modification time falls back to `now` for display only.
    """
    modified = entry.last_modified or now or datetime.now(timezone.utc)
    return SessionRecord(
        session_id=session_id,
        created_at=modified,
        last_modified=modified,
        size=entry.size,
    )
