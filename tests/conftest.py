"""Pytest configuration for webtmux tests."""
import sys
from pathlib import Path

# Add src/back to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC_BACK = _PROJECT_ROOT / 'src' / 'back'
if str(_SRC_BACK) not in sys.path:
    sys.path.insert(0, str(_SRC_BACK))

import pytest

from webtmux.api.errors import CommandError


class FakeMux:
    """In-memory multiplexer answering the controller's CLI vocabulary.

    Listings are rendered in the plain grammar (``-F`` formats are
    ignored). The active pane of a window is always listed first, the
    way psmux orders its output.
    """

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.sessions: dict[str, dict] = {}
        self.attached: set[str] = set()
        self.fail: dict[str, str] = {}
        self.broken_listing: dict[str, str] = {}
        self._next_pane = 0

    # -- setup helpers -----------------------------------------------------

    def add_session(self, name: str, panes: int = 1, windows: int = 1) -> None:
        session = {'windows': [], 'active': 0}
        self.sessions[name] = session
        for _ in range(windows):
            self._add_window(session, 'bash')
            for _ in range(panes - 1):
                self._add_pane(session['windows'][-1])
        session['active'] = 0

    def _add_window(self, session: dict, name: str) -> dict:
        index = max((w['index'] for w in session['windows']), default=-1) + 1
        window = {'index': index, 'name': name, 'panes': [], 'active_pane': ''}
        session['windows'].append(window)
        session['active'] = index
        self._add_pane(window)
        return window

    def _add_pane(self, window: dict) -> str:
        pane_id = f'%{self._next_pane}'
        self._next_pane += 1
        window['panes'].append(pane_id)
        window['active_pane'] = pane_id
        return pane_id

    def _find_pane(self, pane_id: str):
        for session in self.sessions.values():
            for window in session['windows']:
                if pane_id in window['panes']:
                    return session, window
        return None, None

    def verbs(self) -> list[str]:
        return [call[1] for call in self.calls]

    # -- runner ------------------------------------------------------------

    def _error(self, binary: str, args: tuple[str, ...], message: str) -> CommandError:
        return CommandError(
            f'{binary} command failed ({" ".join(args)}): exit status 1: {message}',
            command=[binary, *args],
            returncode=1,
            stderr=message,
        )

    @staticmethod
    def _target(args: tuple[str, ...]) -> str:
        return args[args.index('-t') + 1] if '-t' in args else ''

    async def __call__(self, binary: str, *args: str) -> str:
        self.calls.append((binary, *args))
        verb = args[0]
        if verb in self.fail:
            raise self._error(binary, args, self.fail[verb])
        if verb in self.broken_listing:
            return self.broken_listing[verb]

        target = self._target(args)
        if verb == 'has-session':
            if target not in self.sessions:
                raise self._error(binary, args, f"can't find session: {target}")
            return ''
        if verb == 'new-session':
            self.add_session(args[args.index('-s') + 1])
            return ''
        if verb in ('ls', 'list-sessions'):
            return ''.join(
                f'{name}: {len(s["windows"])} windows (created Mon Jan  1 00:00:00 2024) [80x24]'
                + (' (attached)' if name in self.attached else '') + '\n'
                for name, s in self.sessions.items()
            )
        if verb == 'list-windows':
            session = self.sessions[target]
            return ''.join(
                f'{w["index"]}: {w["name"]}{"*" if w["index"] == session["active"] else ""} '
                f'({len(w["panes"])} panes) [80x24]\n'
                for w in session['windows']
            )
        if verb == 'list-panes':
            name, _, index = target.partition(':')
            window = next(w for w in self.sessions[name]['windows'] if w['index'] == int(index))
            ordered = [window['active_pane']] + [p for p in window['panes'] if p != window['active_pane']]
            return ''.join(f'{p}: [80x23] [history 0/2000, 0 bytes] {p}\n' for p in ordered)
        if verb == 'select-pane':
            session, window = self._find_pane(target)
            if window is None:
                raise self._error(binary, args, f"can't find pane: {target}")
            window['active_pane'] = target
            session['active'] = window['index']
            return ''
        if verb == 'select-window':
            for session in self.sessions.values():
                for window in session['windows']:
                    if f'@{window["index"]}' == target:
                        session['active'] = window['index']
                        return ''
            raise self._error(binary, args, f"can't find window: {target}")
        if verb == 'split-window':
            session = self.sessions[target]
            window = next(w for w in session['windows'] if w['index'] == session['active'])
            self._add_pane(window)
            return ''
        if verb == 'kill-pane':
            session, window = self._find_pane(target)
            if window is None:
                raise self._error(binary, args, f"can't find pane: {target}")
            window['panes'].remove(target)
            if not window['panes']:
                session['windows'].remove(window)
            elif window['active_pane'] == target:
                window['active_pane'] = window['panes'][0]
            return ''
        if verb == 'new-window':
            self._add_window(self.sessions[target], 'bash')
            return ''
        if verb == 'switch-client':
            if target not in self.sessions:
                raise self._error(binary, args, f"can't find session: {target}")
            return ''
        if verb in ('copy-mode', 'send-keys'):
            return ''
        raise self._error(binary, args, f'unknown command: {verb}')


@pytest.fixture
def fake_mux():
    """A fake multiplexer with one session ``main`` of one window, two panes."""
    mux = FakeMux()
    mux.add_session('main', panes=2)
    return mux
