"""Unit tests for TmuxController (format listings, copy mode, scrolling)."""
import pytest

from webtmux.api.errors import CommandError, ControllerOperationError
from webtmux.api.modules.multiplexer import TmuxController
from webtmux.api.modules.multiplexer.tmux import PANE_FORMAT, SESSION_FORMAT, WINDOW_FORMAT
from webtmux.api.modules.multiplexer.types import EVENT_MODE_CHANGED

SESSIONS = 'main: 1 windows (created Mon Jan  1 00:00:00 2024) [120x40] (attached)\n'
WINDOWS = '0: zsh* (2 panes) [120x40]\n'
# tmux lists panes in index order; the active flag is the second field
PANES = (
    '%0: [60x40]\t0\t0\t0\tzsh\thost-a\n'
    '%4: [59x40]\t1\t0\t61\tvim\tediting\n'
)


class ScriptedTmux:
    """Answers listings with fixed -F rendered output and records calls."""

    def __init__(self, panes=PANES, windows=WINDOWS):
        self.calls = []
        self.panes = panes
        self.windows = windows
        self.failing = set()

    async def __call__(self, binary, *args):
        self.calls.append((binary, *args))
        verb = args[0]
        if verb in self.failing:
            raise CommandError(f'{binary} {verb} failed', command=[binary, *args], returncode=1)
        return {
            'list-sessions': SESSIONS,
            'list-windows': self.windows,
            'list-panes': self.panes,
        }.get(verb, '')


@pytest.fixture
def tmux():
    return ScriptedTmux()


async def started(runner):
    controller = TmuxController('main', runner=runner)
    await controller.start()
    runner.calls.clear()
    return controller


class TestTmuxListings:

    @pytest.mark.asyncio
    async def test_listings_request_explicit_formats(self, tmux):
        controller = TmuxController('main', runner=tmux)
        await controller.start()
        assert ('tmux', 'list-sessions', '-F', SESSION_FORMAT) in tmux.calls
        assert ('tmux', 'list-windows', '-t', 'main', '-F', WINDOW_FORMAT) in tmux.calls
        assert ('tmux', 'list-panes', '-t', 'main:0', '-F', PANE_FORMAT) in tmux.calls

    @pytest.mark.asyncio
    async def test_active_pane_from_tmux_marker(self, tmux):
        controller = await started(tmux)
        layout = controller.get_layout()
        panes = layout.windows[0].panes
        assert [(p.id, p.active) for p in panes] == [('%0', False), ('%4', True)]
        assert layout.active_pane_id == '%4'

    @pytest.mark.asyncio
    async def test_pane_metadata(self, tmux):
        controller = await started(tmux)
        pane = controller.get_layout().find_pane('%4')
        assert (pane.top, pane.left) == (0, 61)
        assert pane.command == 'vim'
        assert pane.title == 'editing'
        assert (pane.width, pane.height) == (59, 40)

    @pytest.mark.asyncio
    async def test_first_pane_rule_without_marker(self):
        runner = ScriptedTmux(panes='%0: [60x40]\n%4: [59x40]\n')
        controller = await started(runner)
        assert controller.get_layout().active_pane_id == '%0'

    @pytest.mark.asyncio
    async def test_window_ids_come_from_tmux_not_index(self):
        runner = ScriptedTmux(
            panes='%0: [80x24]\t1\t0\t0\tzsh\thost\n',
            windows='0: zsh* (1 panes) [80x24]\t@3\n1: vim (1 panes) [80x24]\t@7\n',
        )
        controller = await started(runner)
        layout = controller.get_layout()
        assert [w.id for w in layout.windows] == ['@3', '@7']
        assert [w.index for w in layout.windows] == [0, 1]
        assert layout.active_window_id == '@3'

    @pytest.mark.asyncio
    async def test_panes_listed_by_window_index(self):
        runner = ScriptedTmux(windows='0: zsh* (2 panes) [120x40]\t@5\n')
        await TmuxController('main', runner=runner).start()
        assert ('tmux', 'list-panes', '-t', 'main:0', '-F', PANE_FORMAT) in runner.calls

    @pytest.mark.asyncio
    async def test_window_without_id_falls_back_to_index(self, tmux):
        controller = await started(tmux)
        assert controller.get_layout().windows[0].id == '@0'


class TestCopyMode:

    def test_supports_copy_mode(self):
        assert TmuxController.supports_copy_mode is True

    @pytest.mark.asyncio
    async def test_enter_and_exit(self, tmux):
        controller = await started(tmux)
        state = await controller.enter_copy_mode()
        assert state.in_copy_mode is True
        assert state.pane_id == '%4'
        assert tmux.calls == [('tmux', 'copy-mode', '-t', '%4')]

        state = await controller.exit_copy_mode()
        assert state.in_copy_mode is False
        assert tmux.calls[-1] == ('tmux', 'send-keys', '-t', '%4', '-X', 'cancel')
        assert controller.mode_state.in_copy_mode is False

    @pytest.mark.asyncio
    async def test_mode_changes_emit_events(self, tmux):
        controller = await started(tmux)
        while not controller.events.empty():
            controller.events.get_nowait()
        await controller.enter_copy_mode()
        event = controller.events.get_nowait()
        assert event.type == EVENT_MODE_CHANGED
        assert event.data == {'paneId': '%4', 'inCopyMode': True}

    @pytest.mark.asyncio
    async def test_failure_keeps_mode(self, tmux):
        controller = await started(tmux)
        tmux.failing.add('copy-mode')
        with pytest.raises(ControllerOperationError) as exc:
            await controller.enter_copy_mode()
        assert exc.value.operation == 'enter copy mode'
        assert controller.mode_state.in_copy_mode is False


class TestScroll:

    @pytest.mark.asyncio
    async def test_scroll_up_enters_copy_mode_first(self, tmux):
        controller = await started(tmux)
        await controller.scroll_up(5)
        assert tmux.calls == [
            ('tmux', 'copy-mode', '-t', '%4'),
            ('tmux', 'send-keys', '-t', '%4', '-X', '-N', '5', 'scroll-up'),
        ]
        assert controller.mode_state.in_copy_mode is True

    @pytest.mark.asyncio
    async def test_scroll_down_in_copy_mode(self, tmux):
        controller = await started(tmux)
        await controller.enter_copy_mode()
        tmux.calls.clear()
        await controller.scroll_down(3)
        assert tmux.calls == [
            ('tmux', 'send-keys', '-t', '%4', '-X', '-N', '3', 'scroll-down'),
        ]
