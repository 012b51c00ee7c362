"""tmux controller: base capability set plus copy mode and scrolling.

tmux's default listings differ between versions, so every listing is
requested with an explicit ``-F`` format that renders the parser's
grammar. Window lines carry tmux's own window id after a tab, and pane
lines carry tab-separated metadata after the grammar prefix (active
flag, position, command, title); this variant reads both back.
"""
from __future__ import annotations

from dataclasses import replace

from ...errors import CommandError, ControllerOperationError
from .controller import MultiplexerController
from .parser import parse_panes, parse_windows
from .types import EVENT_MODE_CHANGED, Event, ModeState, Pane, Window

SESSION_FORMAT = (
    '#{session_name}: #{session_windows} windows (created #{session_created}) '
    '[#{window_width}x#{window_height}]#{?session_attached, (attached),}'
)
WINDOW_FORMAT = (
    '#{window_index}: #{window_name}#{?window_active,*,} '
    '(#{window_panes} panes) [#{window_width}x#{window_height}]'
    '\t#{window_id}'
)
PANE_FORMAT = (
    '#{pane_id}: [#{pane_width}x#{pane_height}]'
    '\t#{pane_active}\t#{pane_top}\t#{pane_left}'
    '\t#{pane_current_command}\t#{pane_title}'
)


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


class TmuxController(MultiplexerController):
    binary = 'tmux'
    supports_copy_mode = True

    def __init__(self, session_name: str, **kwargs):
        super().__init__(session_name, **kwargs)
        self._in_copy_mode = False

    @property
    def mode_state(self) -> ModeState:
        return ModeState(in_copy_mode=self._in_copy_mode, pane_id=self._copy_target())

    def _list_sessions_args(self) -> list[str]:
        return ['list-sessions', '-F', SESSION_FORMAT]

    def _list_windows_args(self) -> list[str]:
        return ['list-windows', '-t', self.session_name, '-F', WINDOW_FORMAT]

    def _list_panes_args(self, window: Window) -> list[str]:
        return [
            'list-panes', '-t', f'{self.session_name}:{window.index}',
            '-F', PANE_FORMAT,
        ]

    def _parse_windows(self, output: str) -> list[Window]:
        # window_id is global across sessions; the index is not
        listing, window_ids = [], []
        for line in output.splitlines():
            head, _, window_id = line.strip().partition('\t')
            if head:
                listing.append(head)
                window_ids.append(window_id.strip())
        windows = parse_windows('\n'.join(listing))
        return [
            replace(window, id=window_id) if window_id.startswith('@') else window
            for window, window_id in zip(windows, window_ids)
        ]

    def _parse_panes(self, output: str) -> list[Pane]:
        panes = parse_panes(output)
        metadata: dict[str, list[str]] = {}
        for line in output.splitlines():
            head, _, rest = line.strip().partition('\t')
            if head:
                metadata[head.split(':', 1)[0]] = rest.split('\t')

        if not any(metadata.get(p.id, [''])[0] == '1' for p in panes):
            return panes

        enriched = []
        for pane in panes:
            fields = metadata.get(pane.id, []) + [''] * 5
            active, top, left, command, title = fields[:5]
            enriched.append(replace(
                pane,
                active=active == '1',
                top=_to_int(top),
                left=_to_int(left),
                command=command,
                title=title,
            ))
        return enriched

    # -- copy mode ---------------------------------------------------------

    def _copy_target(self) -> str:
        layout = self.get_layout()
        if layout is not None and layout.active_pane_id:
            return layout.active_pane_id
        return self.session_name

    async def _run_mode_command(self, operation: str, *args: str) -> None:
        if self.stopped:
            raise ControllerOperationError(
                operation, RuntimeError('controller is stopped'),
            )
        try:
            await self._run(*args)
        except CommandError as exc:
            raise ControllerOperationError(operation, exc) from exc

    def _set_copy_mode(self, enabled: bool) -> ModeState:
        self._in_copy_mode = enabled
        state = self.mode_state
        self._emit(Event(EVENT_MODE_CHANGED, payload=state.pane_id, data=state.to_dict()))
        return state

    async def enter_copy_mode(self) -> ModeState:
        await self._run_mode_command(
            'enter copy mode', 'copy-mode', '-t', self._copy_target(),
        )
        return self._set_copy_mode(True)

    async def exit_copy_mode(self) -> ModeState:
        await self._run_mode_command(
            'exit copy mode', 'send-keys', '-t', self._copy_target(), '-X', 'cancel',
        )
        return self._set_copy_mode(False)

    async def _scroll(self, operation: str, direction: str, lines: int) -> None:
        if not self._in_copy_mode:
            await self.enter_copy_mode()
        await self._run_mode_command(
            operation,
            'send-keys', '-t', self._copy_target(),
            '-X', '-N', str(max(lines, 1)), direction,
        )

    async def scroll_up(self, lines: int) -> None:
        await self._scroll('scroll up', 'scroll-up', lines)

    async def scroll_down(self, lines: int) -> None:
        await self._scroll('scroll down', 'scroll-down', lines)
