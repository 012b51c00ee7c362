"""Unit tests for the multiplexer controller base (via PsmuxController)."""
import pytest

from webtmux.api.errors import (
    CommandError,
    ControllerOperationError,
    ControllerStartError,
    ParseError,
)
from webtmux.api.modules.multiplexer import (
    PsmuxController,
    TmuxController,
    create_controller,
    run_command,
)
from webtmux.api.modules.multiplexer.types import (
    EVENT_LAYOUT_CHANGED,
    EVENT_SESSION_CHANGED,
)


async def started(fake_mux, **kwargs):
    controller = PsmuxController('main', runner=fake_mux, **kwargs)
    await controller.start()
    fake_mux.calls.clear()
    return controller


class TestStart:

    @pytest.mark.asyncio
    async def test_existing_session_is_attached_not_created(self, fake_mux):
        controller = PsmuxController('main', runner=fake_mux)
        await controller.start()
        assert fake_mux.verbs() == ['has-session', 'ls', 'list-windows', 'list-panes']
        assert fake_mux.calls[0] == ('psmux', 'has-session', '-t', 'main')

    @pytest.mark.asyncio
    async def test_missing_session_is_created(self, fake_mux):
        controller = PsmuxController('work', runner=fake_mux)
        await controller.start()
        assert ('psmux', 'new-session', '-d', '-s', 'work') in fake_mux.calls
        assert controller.get_layout().session_name == 'work'

    @pytest.mark.asyncio
    async def test_create_failure_raises_start_error(self, fake_mux):
        fake_mux.fail['new-session'] = 'server exited'
        controller = PsmuxController('work', runner=fake_mux)
        with pytest.raises(ControllerStartError):
            await controller.start()
        assert controller.get_layout() is None

    @pytest.mark.asyncio
    async def test_initial_refresh_failure_raises_start_error(self, fake_mux):
        fake_mux.broken_listing['ls'] = 'not a session listing'
        controller = PsmuxController('main', runner=fake_mux)
        with pytest.raises(ControllerStartError):
            await controller.start()


class TestRefreshLayout:

    @pytest.mark.asyncio
    async def test_layout_snapshot(self, fake_mux):
        fake_mux.add_session('build')
        fake_mux.attached.add('main')
        controller = await started(fake_mux)
        layout = controller.get_layout()

        assert layout.session_name == 'main'
        assert layout.session_id == 'main'
        assert [(s.name, s.active, s.attached) for s in layout.sessions] == [
            ('main', True, True),
            ('build', False, False),
        ]
        assert layout.active_window_id == '@0'
        assert layout.active_pane_id == '%1'
        assert [p.id for p in layout.windows[0].panes] == ['%1', '%0']

    @pytest.mark.asyncio
    async def test_at_most_one_active_session(self, fake_mux):
        fake_mux.add_session('a')
        fake_mux.add_session('b')
        controller = await started(fake_mux)
        assert sum(s.active for s in controller.get_layout().sessions) == 1

    @pytest.mark.asyncio
    async def test_pane_listing_failure_publishes_window_without_panes(self, fake_mux):
        controller = await started(fake_mux)
        fake_mux.broken_listing['list-panes'] = 'garbage'
        layout = await controller.refresh_layout()
        assert layout.windows[0].id == '@0'
        assert layout.windows[0].panes == ()
        assert layout.active_pane_id == ''

    @pytest.mark.asyncio
    async def test_session_listing_failure_keeps_previous_layout(self, fake_mux):
        controller = await started(fake_mux)
        before = controller.get_layout()
        fake_mux.broken_listing['ls'] = 'garbage'
        with pytest.raises(ParseError):
            await controller.refresh_layout()
        assert controller.get_layout() is before

    @pytest.mark.asyncio
    async def test_window_listing_command_failure_keeps_previous_layout(self, fake_mux):
        controller = await started(fake_mux)
        before = controller.get_layout()
        fake_mux.fail['list-windows'] = 'no server running'
        with pytest.raises(CommandError):
            await controller.refresh_layout()
        assert controller.get_layout() is before


class TestMutations:

    @pytest.mark.asyncio
    async def test_select_pane_runs_one_command_then_one_refresh(self, fake_mux):
        controller = await started(fake_mux)
        layout = await controller.select_pane('%0')
        assert fake_mux.verbs() == ['select-pane', 'ls', 'list-windows', 'list-panes']
        assert layout.active_pane_id == '%0'
        assert controller.get_layout() is layout

    @pytest.mark.asyncio
    async def test_select_missing_pane_leaves_layout_unchanged(self, fake_mux):
        controller = await started(fake_mux)
        before = controller.get_layout()
        with pytest.raises(ControllerOperationError) as exc:
            await controller.select_pane('%99')
        assert str(exc.value).startswith('select pane: ')
        assert "can't find pane: %99" in str(exc.value)
        assert isinstance(exc.value.cause, CommandError)
        assert fake_mux.verbs() == ['select-pane']
        assert controller.get_layout() is before

    @pytest.mark.asyncio
    async def test_split_pane_flags(self, fake_mux):
        controller = await started(fake_mux)
        await controller.split_pane(horizontal=True)
        await controller.split_pane(horizontal=False)
        splits = [c for c in fake_mux.calls if c[1] == 'split-window']
        assert splits == [
            ('psmux', 'split-window', '-t', 'main', '-h'),
            ('psmux', 'split-window', '-t', 'main', '-v'),
        ]
        assert len(controller.get_layout().windows[0].panes) == 4

    @pytest.mark.asyncio
    async def test_close_pane(self, fake_mux):
        controller = await started(fake_mux)
        layout = await controller.close_pane('%1')
        assert [p.id for p in layout.windows[0].panes] == ['%0']

    @pytest.mark.asyncio
    async def test_new_window_and_select_window(self, fake_mux):
        controller = await started(fake_mux)
        layout = await controller.new_window()
        assert [w.id for w in layout.windows] == ['@0', '@1']
        assert layout.active_window_id == '@1'

        layout = await controller.select_window('@0')
        assert layout.active_window_id == '@0'

    @pytest.mark.asyncio
    async def test_refresh_failure_after_mutation_returns_previous_layout(self, fake_mux):
        controller = await started(fake_mux)
        before = controller.get_layout()
        fake_mux.broken_listing['list-windows'] = 'garbage'
        layout = await controller.new_window()
        assert layout is before

    @pytest.mark.asyncio
    async def test_switch_session_updates_target(self, fake_mux):
        fake_mux.add_session('work')
        controller = await started(fake_mux)
        layout = await controller.switch_session('work')
        assert controller.session_name == 'work'
        assert layout.session_name == 'work'
        assert [s.name for s in layout.sessions if s.active] == ['work']

    @pytest.mark.asyncio
    async def test_switch_session_failure_keeps_target(self, fake_mux):
        controller = await started(fake_mux)
        with pytest.raises(ControllerOperationError):
            await controller.switch_session('nope')
        assert controller.session_name == 'main'


class TestStopAndEvents:

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, fake_mux):
        controller = await started(fake_mux)
        controller.stop()
        controller.stop()
        assert controller.stopped is True

    @pytest.mark.asyncio
    async def test_mutation_after_stop_fails_without_running(self, fake_mux):
        controller = await started(fake_mux)
        controller.stop()
        with pytest.raises(ControllerOperationError):
            await controller.select_pane('%0')
        assert fake_mux.calls == []

    @pytest.mark.asyncio
    async def test_refresh_emits_layout_changed(self, fake_mux):
        controller = await started(fake_mux)
        event = controller.events.get_nowait()
        assert event.type == EVENT_LAYOUT_CHANGED
        assert event.payload == 'main'

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self, fake_mux):
        fake_mux.add_session('work')
        controller = await started(fake_mux, event_capacity=2)
        await controller.switch_session('work')

        events = [controller.events.get_nowait(), controller.events.get_nowait()]
        assert controller.events.empty()
        assert [e.type for e in events] == [EVENT_SESSION_CHANGED, EVENT_LAYOUT_CHANGED]
        assert events[0].payload == 'work'
        assert events[0].data == {'previous': 'main'}


class TestRunCommand:

    @pytest.mark.asyncio
    async def test_returns_stdout(self):
        assert await run_command('sh', '-c', 'echo hello') == 'hello\n'

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        with pytest.raises(CommandError) as exc:
            await run_command('sh', '-c', 'echo boom >&2; exit 3')
        assert exc.value.returncode == 3
        assert exc.value.stderr == 'boom'

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        with pytest.raises(CommandError):
            await run_command('webtmux-no-such-binary', 'ls')


class TestCreateController:

    def test_none_means_plain_terminal(self):
        assert create_controller('none', 'main') is None

    def test_known_kinds(self):
        assert isinstance(create_controller('tmux', 'main'), TmuxController)
        assert isinstance(create_controller('psmux', 'main'), PsmuxController)
        assert create_controller('psmux', 'main').binary == 'psmux'
