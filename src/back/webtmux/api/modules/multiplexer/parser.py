"""Parsers for multiplexer listing output.

Pure text-to-struct functions. Each call is all-or-nothing: one line
that does not match the grammar fails the whole listing.

Grammar (one entry per line, blank lines skipped)::

    sessions: NAME: N windows (created ...) [WxH] [(attached)]
    windows:  INDEX: NAME[*] (K panes) [WxH]
    panes:    %ID: [WxH] ...ignored metadata...
"""
from __future__ import annotations

import re

from ...errors import ParseError
from .types import Pane, SessionSummary, Window

_SESSION_RE = re.compile(
    r'^(\S+): (\d+) windows \(created [^)]+\) \[(\d+)x(\d+)\](?: \(attached\))?$'
)
_WINDOW_RE = re.compile(r'^(\d+): (\S+?)(\*)? \((\d+) panes?\) \[(\d+)x(\d+)\]$')
_PANE_RE = re.compile(r'^(%\d+): \[(\d+)x(\d+)\]')


def _lines(output: str) -> list[str]:
    return [line.strip() for line in output.strip().splitlines() if line.strip()]


def parse_sessions(output: str) -> list[SessionSummary]:
    """Parse a session listing (``ls``).

    ``attached`` is a plain substring check on the line, independent of
    the regex groups. ``active`` is left False; the controller decides it.
    """
    sessions = []
    for line in _lines(output):
        match = _SESSION_RE.match(line)
        if match is None:
            raise ParseError(f'failed to parse session line: {line}', line=line)
        name = match.group(1)
        sessions.append(SessionSummary(
            id=name,
            name=name,
            windows=int(match.group(2)),
            attached='(attached)' in line,
        ))
    return sessions


def parse_windows(output: str) -> list[Window]:
    """Parse a window listing (``list-windows``).

    A trailing ``*`` on the name marks the active window. Window ids are
    derived from the index as ``@INDEX``.
    """
    windows = []
    for line in _lines(output):
        match = _WINDOW_RE.match(line)
        if match is None:
            raise ParseError(f'failed to parse window line: {line}', line=line)
        index = int(match.group(1))
        windows.append(Window(
            id=f'@{index}',
            name=match.group(2),
            index=index,
            active=match.group(3) == '*',
        ))
    return windows


def parse_panes(output: str) -> list[Pane]:
    """Parse a pane listing (``list-panes``).

    ``index`` is the 0-based position in the output, not the multiplexer's
    own pane index. The first pane listed is the active one.
    """
    panes = []
    for position, line in enumerate(_lines(output)):
        match = _PANE_RE.match(line)
        if match is None:
            raise ParseError(f'failed to parse pane line: {line}', line=line)
        panes.append(Pane(
            id=match.group(1),
            index=position,
            active=position == 0,
            width=int(match.group(2)),
            height=int(match.group(3)),
        ))
    return panes
