"""Session identifiers."""

import uuid

LOCAL_PREFIX = "loc-"


def new_session_id() -> str:
    """Client-local random session id, minted offline."""
    return f"{LOCAL_PREFIX}{uuid.uuid4().hex}"


def global_session_id(local_id: str, server_suffix: str | None) -> str:
    """Combine the local id with the suffix the server assigns on first sync."""
    return f"{local_id}.{server_suffix}" if server_suffix else local_id


def local_part(session_id: str) -> str:
    """Strip a server suffix, accepting either id form."""
    return session_id.split(".", 1)[0]
