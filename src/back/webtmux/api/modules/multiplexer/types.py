"""Immutable layout snapshot types for terminal multiplexers.

Ids mirror the multiplexer's own scheme (``@N`` windows, ``%N`` panes)
so selections made by the browser round-trip without translation.
``to_dict()`` renders the camelCase JSON shape the client expects.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Pane:
    id: str
    index: int
    active: bool = False
    width: int = 0
    height: int = 0
    top: int = 0
    left: int = 0
    command: str = ''
    title: str = ''

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'index': self.index,
            'active': self.active,
            'width': self.width,
            'height': self.height,
            'top': self.top,
            'left': self.left,
            'command': self.command,
            'title': self.title,
        }


@dataclass(frozen=True)
class Window:
    id: str
    name: str
    index: int
    active: bool = False
    panes: tuple[Pane, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'index': self.index,
            'active': self.active,
            'panes': [pane.to_dict() for pane in self.panes],
        }


@dataclass(frozen=True)
class SessionSummary:
    id: str
    name: str
    windows: int = 0
    attached: bool = False
    active: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'windows': self.windows,
            'attached': self.attached,
            'active': self.active,
        }


@dataclass(frozen=True)
class Layout:
    """A complete multiplexer snapshot.

    Published whole by the controller; never mutated after construction.
    """
    session_id: str = ''
    session_name: str = ''
    sessions: tuple[SessionSummary, ...] = ()
    windows: tuple[Window, ...] = ()
    active_window_id: str = ''
    active_pane_id: str = ''

    def find_pane(self, pane_id: str) -> Pane | None:
        for window in self.windows:
            for pane in window.panes:
                if pane.id == pane_id:
                    return pane
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'sessionName': self.session_name,
            'sessions': [s.to_dict() for s in self.sessions],
            'windows': [w.to_dict() for w in self.windows],
            'activeWindowId': self.active_window_id,
            'activePaneId': self.active_pane_id,
        }


@dataclass(frozen=True)
class ModeState:
    in_copy_mode: bool
    pane_id: str = ''

    def to_dict(self) -> dict[str, Any]:
        return {'paneId': self.pane_id, 'inCopyMode': self.in_copy_mode}


@dataclass(frozen=True)
class Event:
    """Asynchronous controller notification."""
    type: str
    payload: str = ''
    data: dict[str, Any] = field(default_factory=dict)


EVENT_LAYOUT_CHANGED = 'layout-changed'
EVENT_SESSION_CHANGED = 'session-changed'
EVENT_MODE_CHANGED = 'mode-changed'
