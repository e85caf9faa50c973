#!/usr/bin/env python3
"""
Ambient session handle.

Database.transaction() stores the active client session here so every
executor call made inside the block joins the transaction without the
query builder passing it around.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

_session: ContextVar[Optional[Any]] = ContextVar('mongolayer_session', default=None)


def current_session() -> Optional[Any]:
    """Get the session of the enclosing transaction, if any."""
    return _session.get()


def set_session(session: Any) -> Token:
    return _session.set(session)


def reset_session(token: Token):
    _session.reset(token)


def session_kwargs() -> Dict[str, Any]:
    """Keyword arguments for a driver call: {'session': s} or nothing."""
    session = _session.get()
    if session is None:
        return {}
    return {'session': session}
