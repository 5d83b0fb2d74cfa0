"""
Current-user context for request handlers.

The web layer enters ``current_user(member)`` for the duration of a request;
code inside can then track events without passing the member around.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Dict, Any, Optional

_current_member: ContextVar[Optional[Dict[str, Any]]] = ContextVar('intercom_current_member', default=None)


def get_current_user() -> Optional[Dict[str, Any]]:
    return _current_member.get()


@contextmanager
def current_user(member: Optional[Dict[str, Any]]):
    """Make member the current user within the block."""
    token = _current_member.set(member)
    try:
        yield member
    finally:
        _current_member.reset(token)


def track_event_for_current_user(intercom, event_name: str, event_data: Optional[Dict[str, Any]] = None) -> None:
    """Track an event for the current user. Raises TrackingError when nobody is logged in."""
    intercom.track_event(event_name, event_data, member=get_current_user())
