"""PTY module for webtmux.

Provides the PTY-backed process, the session engine that bridges it to
a websocket, and the websocket router.
"""
from .backend import PTYBackend, build_environment
from .engine import SessionEngine, SessionOptions, SessionState, WebSocketTransport
from .router import create_session_router, session_options

__all__ = [
    'PTYBackend',
    'SessionEngine',
    'SessionOptions',
    'SessionState',
    'WebSocketTransport',
    'build_environment',
    'create_session_router',
    'session_options',
]
