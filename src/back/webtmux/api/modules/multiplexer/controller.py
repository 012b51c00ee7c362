"""Multiplexer controller base.

Drives an external multiplexer binary through one-shot subprocess calls,
parses its listings into an immutable ``Layout`` and publishes that
layout atomically. Variants (``PsmuxController``, ``TmuxController``)
choose the binary, the listing commands and any extra capabilities.

Concurrency:
  - Readers call ``get_layout()`` and always see a complete snapshot.
  - Refreshes are serialized; each one replaces the cached layout whole.
  - A failed refresh leaves the previous layout in place.
"""
from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import ClassVar

from ....observability import get_logger
from ....observability.metrics import MULTIPLEXER_COMMANDS_TOTAL
from ...errors import (
    CommandError,
    ControllerOperationError,
    ControllerStartError,
    ParseError,
)
from .parser import parse_panes, parse_sessions, parse_windows
from .types import (
    EVENT_LAYOUT_CHANGED,
    EVENT_SESSION_CHANGED,
    Event,
    Layout,
    Pane,
    Window,
)

logger = get_logger(__name__)

DEFAULT_EVENT_CAPACITY = 100

# runner(binary, *args) -> stdout; raises CommandError on failure
CommandRunner = Callable[..., Awaitable[str]]


async def run_command(binary: str, *args: str) -> str:
    """Run a multiplexer command and return its stdout.

    Raises:
        CommandError: If the binary is missing or exits non-zero.
    """
    command = [binary, *args]
    verb = args[0] if args else ''
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        MULTIPLEXER_COMMANDS_TOTAL.labels(verb=verb, outcome='error').inc()
        raise CommandError(
            f'{binary} command failed ({" ".join(args)}): {exc}',
            command=command,
        ) from exc

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        MULTIPLEXER_COMMANDS_TOTAL.labels(verb=verb, outcome='error').inc()
        detail = stderr.decode('utf-8', errors='replace').strip()
        raise CommandError(
            f'{binary} command failed ({" ".join(args)}): '
            f'exit status {proc.returncode}' + (f': {detail}' if detail else ''),
            command=command,
            returncode=proc.returncode,
            stderr=detail,
        )
    MULTIPLEXER_COMMANDS_TOTAL.labels(verb=verb, outcome='ok').inc()
    return stdout.decode('utf-8', errors='replace')


class MultiplexerController:
    """Capability set shared by every multiplexer variant.

    Subclasses set ``binary`` and may override the ``_*_args`` hooks to
    change how listings are requested, or ``_parse_windows`` and
    ``_parse_panes`` to enrich listing metadata.
    """

    binary: ClassVar[str] = ''
    supports_copy_mode: ClassVar[bool] = False

    def __init__(
        self,
        session_name: str,
        *,
        runner: CommandRunner | None = None,
        event_capacity: int = DEFAULT_EVENT_CAPACITY,
    ):
        self._session_name = session_name
        self._runner = runner or run_command
        self._layout: Layout | None = None
        self._layout_lock = threading.Lock()
        self._refresh_lock = asyncio.Lock()
        self._events: asyncio.Queue[Event] = asyncio.Queue(maxsize=event_capacity)
        self._stopped = False

    @property
    def session_name(self) -> str:
        return self._session_name

    @property
    def events(self) -> asyncio.Queue[Event]:
        """Bounded FIFO of notifications. Consumers should only ``get()``."""
        return self._events

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def _run(self, *args: str) -> str:
        return await self._runner(self.binary, *args)

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Ensure the target session exists, then load the initial layout.

        Raises:
            ControllerStartError: If the session cannot be created or read.
        """
        try:
            await self._run('has-session', '-t', self._session_name)
        except CommandError:
            logger.info(
                'multiplexer_session_create',
                binary=self.binary,
                session=self._session_name,
            )
            try:
                await self._run('new-session', '-d', '-s', self._session_name)
            except CommandError as exc:
                raise ControllerStartError(
                    f'failed to create {self.binary} session {self._session_name}: {exc}',
                    operation='start',
                ) from exc

        try:
            await self.refresh_layout()
        except (CommandError, ParseError) as exc:
            raise ControllerStartError(
                f'failed to get initial layout: {exc}', operation='start',
            ) from exc

    def stop(self) -> None:
        """Signal shutdown. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        logger.debug('multiplexer_controller_stopped', binary=self.binary)

    # -- layout ------------------------------------------------------------

    def get_layout(self) -> Layout | None:
        with self._layout_lock:
            return self._layout

    def _publish_layout(self, layout: Layout) -> None:
        with self._layout_lock:
            self._layout = layout

    def _list_sessions_args(self) -> list[str]:
        return ['ls']

    def _list_windows_args(self) -> list[str]:
        return ['list-windows', '-t', self._session_name]

    def _list_panes_args(self, window: Window) -> list[str]:
        return ['list-panes', '-t', f'{self._session_name}:{window.index}']

    def _parse_windows(self, output: str) -> list[Window]:
        return parse_windows(output)

    def _parse_panes(self, output: str) -> list[Pane]:
        return parse_panes(output)

    async def refresh_layout(self) -> Layout:
        """Re-read sessions, windows and panes and publish a new layout.

        A window whose panes cannot be listed or parsed is published with
        no panes. Failures listing sessions or windows propagate and keep
        the previous layout.
        """
        async with self._refresh_lock:
            sessions = parse_sessions(await self._run(*self._list_sessions_args()))
            target = self._session_name
            sessions = [replace(s, active=s.name == target) for s in sessions]
            session_id = next((s.id for s in sessions if s.active), '')

            windows = self._parse_windows(await self._run(*self._list_windows_args()))

            active_window_id = ''
            active_pane_id = ''
            populated = []
            for window in windows:
                try:
                    panes = self._parse_panes(
                        await self._run(*self._list_panes_args(window))
                    )
                except (CommandError, ParseError) as exc:
                    logger.warning(
                        'multiplexer_list_panes_failed',
                        window=window.id,
                        error=str(exc),
                    )
                    panes = []
                if window.active:
                    active_window_id = window.id
                    active_pane_id = next((p.id for p in panes if p.active), '')
                populated.append(replace(window, panes=tuple(panes)))

            layout = Layout(
                session_id=session_id,
                session_name=target,
                sessions=tuple(sessions),
                windows=tuple(populated),
                active_window_id=active_window_id,
                active_pane_id=active_pane_id,
            )
            self._publish_layout(layout)

        self._emit(Event(EVENT_LAYOUT_CHANGED, payload=target))
        return layout

    # -- events ------------------------------------------------------------

    def _emit(self, event: Event) -> None:
        """Queue an event without blocking; drop the oldest when full."""
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            try:
                dropped = self._events.get_nowait()
            except asyncio.QueueEmpty:
                dropped = None
            logger.debug(
                'multiplexer_event_dropped',
                dropped=dropped.type if dropped else None,
            )
            self._events.put_nowait(event)

    # -- mutations ---------------------------------------------------------

    async def _mutate(self, operation: str, *args: str) -> Layout | None:
        """Run one mutating command, then refresh.

        The command's own failure is wrapped in ControllerOperationError
        and no refresh is attempted. A refresh failure after a successful
        command is logged and the previous layout is kept.
        """
        if self._stopped:
            raise ControllerOperationError(
                operation, RuntimeError('controller is stopped'),
            )
        try:
            await self._run(*args)
        except CommandError as exc:
            raise ControllerOperationError(operation, exc) from exc

        try:
            return await self.refresh_layout()
        except (CommandError, ParseError) as exc:
            logger.warning(
                'multiplexer_refresh_failed',
                operation=operation,
                error=str(exc),
            )
            return self.get_layout()

    async def select_pane(self, pane_id: str) -> Layout | None:
        return await self._mutate('select pane', 'select-pane', '-t', pane_id)

    async def select_window(self, window_id: str) -> Layout | None:
        return await self._mutate('select window', 'select-window', '-t', window_id)

    async def split_pane(self, horizontal: bool) -> Layout | None:
        flag = '-h' if horizontal else '-v'
        return await self._mutate(
            'split pane', 'split-window', '-t', self._session_name, flag,
        )

    async def close_pane(self, pane_id: str) -> Layout | None:
        return await self._mutate('close pane', 'kill-pane', '-t', pane_id)

    async def new_window(self) -> Layout | None:
        return await self._mutate('new window', 'new-window', '-t', self._session_name)

    async def switch_session(self, session_name: str) -> Layout | None:
        if self._stopped:
            raise ControllerOperationError(
                'switch session', RuntimeError('controller is stopped'),
            )
        try:
            await self._run('switch-client', '-t', session_name)
        except CommandError as exc:
            raise ControllerOperationError('switch session', exc) from exc

        previous = self._session_name
        self._session_name = session_name
        self._emit(Event(
            EVENT_SESSION_CHANGED,
            payload=session_name,
            data={'previous': previous},
        ))
        try:
            return await self.refresh_layout()
        except (CommandError, ParseError) as exc:
            logger.warning(
                'multiplexer_refresh_failed',
                operation='switch session',
                error=str(exc),
            )
            return self.get_layout()
