"""Multiplexer module for webtmux.

Controllers that drive tmux or psmux through their CLI and publish the
resulting layout for the session engine.
"""
from __future__ import annotations

from .controller import (
    DEFAULT_EVENT_CAPACITY,
    CommandRunner,
    MultiplexerController,
    run_command,
)
from .parser import parse_panes, parse_sessions, parse_windows
from .psmux import PsmuxController
from .tmux import TmuxController
from .types import Event, Layout, ModeState, Pane, SessionSummary, Window

CONTROLLERS: dict[str, type[MultiplexerController]] = {
    'tmux': TmuxController,
    'psmux': PsmuxController,
}


def create_controller(
    kind: str,
    session_name: str,
    runner: CommandRunner | None = None,
) -> MultiplexerController | None:
    """Build the controller for ``kind``, or None for plain shell sessions."""
    controller_cls = CONTROLLERS.get(kind)
    if controller_cls is None:
        return None
    return controller_cls(session_name, runner=runner)


__all__ = [
    'CONTROLLERS',
    'DEFAULT_EVENT_CAPACITY',
    'CommandRunner',
    'Event',
    'Layout',
    'ModeState',
    'MultiplexerController',
    'Pane',
    'PsmuxController',
    'SessionSummary',
    'TmuxController',
    'Window',
    'create_controller',
    'parse_panes',
    'parse_sessions',
    'parse_windows',
    'run_command',
]
