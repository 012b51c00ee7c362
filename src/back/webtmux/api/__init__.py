"""FastAPI app and session bridge components for webtmux.

Example:
    # Simple usage with create_app()
    from webtmux.api import create_app
    app = create_app()

    # Custom configuration
    from webtmux.api import BridgeConfig, MultiplexerKind, create_app
    config = BridgeConfig(multiplexer=MultiplexerKind.TMUX, session_name='work')
    app = create_app(config)
"""

# Configuration
from .config import BridgeConfig, MultiplexerKind

# Errors
from .errors import (
    AuthError,
    BackendIOError,
    CommandError,
    ControllerOperationError,
    ControllerStartError,
    LockoutError,
    ParseError,
    ProtocolError,
    SpawnError,
    TransportClosed,
    WebtmuxError,
)

# Auth and rate limiting
from .auth import BasicAuthGate, extract_client_ip
from .rate_limiter import AuthRateLimiter, LockoutRule, LockoutStatus

# Router factories
from .modules.pty import create_session_router

# App factory
from .app import create_app

__all__ = [
    'AuthError',
    'AuthRateLimiter',
    'BackendIOError',
    'BasicAuthGate',
    'BridgeConfig',
    'CommandError',
    'ControllerOperationError',
    'ControllerStartError',
    'LockoutError',
    'LockoutRule',
    'LockoutStatus',
    'MultiplexerKind',
    'ParseError',
    'ProtocolError',
    'SpawnError',
    'TransportClosed',
    'WebtmuxError',
    'create_app',
    'create_session_router',
    'extract_client_ip',
]
