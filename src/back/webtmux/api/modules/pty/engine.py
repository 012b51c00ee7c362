"""Session engine: one PTY, one websocket, zero or one multiplexer.

Lifecycle: CONNECTING -> ACTIVE -> CLOSING -> CLOSED.

While ACTIVE two pumps run concurrently:
  - outbound: backend bytes -> (clipboard interception) -> Output frames
  - inbound: socket frames -> dispatch by tag

When either pump stops the other is cancelled and the session closes.
Per-message failures (bad frames, parse errors, failed multiplexer
operations) are logged and the session continues; backend I/O failures
and a vanished client end it.
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ....observability import get_logger
from ....observability.metrics import SESSIONS_ACTIVE
from ...errors import (
    BackendIOError,
    ControllerOperationError,
    ParseError,
    ProtocolError,
    TransportClosed,
)
from ...protocol import (
    MULTIPLEXER_MESSAGES,
    SUPPORTED_ENCODINGS,
    ClientMessage,
    ClipboardInterceptor,
    Frame,
    ServerMessage,
    decode_input,
    encode_output,
    json_frame,
    parse_line_count,
    parse_resize,
    resolve_client_message,
    server_frame,
)
from ..multiplexer import Layout, ModeState, MultiplexerController

logger = get_logger(__name__)

ClipboardCallback = Callable[[bytes], None]
Handler = Callable[[bytes], Awaitable[None]]


class SessionState(str, Enum):
    CONNECTING = 'connecting'
    ACTIVE = 'active'
    CLOSING = 'closing'
    CLOSED = 'closed'


@dataclass
class SessionOptions:
    """Per-session settings derived from BridgeConfig."""
    permit_write: bool = True
    buffer_size: int = 1024
    reconnect_interval: int = 0  # 0 disables client auto-reconnect
    preferences: dict = field(default_factory=dict)
    title_format: str = '{command}@{hostname}'
    close_timeout: float = 10.0
    intercept_clipboard: bool = False


class WebSocketTransport:
    """Adapts a Starlette websocket to the engine's frame transport."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def receive(self) -> bytes | None:
        """Next raw frame, or None once the client has disconnected."""
        message = await self.websocket.receive()
        if message['type'] == 'websocket.disconnect':
            return None
        if message.get('bytes') is not None:
            return message['bytes']
        return (message.get('text') or '').encode('utf-8')

    async def send(self, frame: Frame) -> None:
        try:
            await self.websocket.send_text(frame.tag + frame.text)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportClosed(f'send failed: {exc}', operation='send') from exc

    async def close(self, code: int = 1000, reason: str = '') -> None:
        if (
            self.websocket.client_state == WebSocketState.DISCONNECTED
            or self.websocket.application_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.debug('websocket_close_failed', error=str(exc))


class SessionEngine:
    """Bridges one PTY backend and one client transport."""

    def __init__(
        self,
        transport: Any,
        backend: Any,
        controller: MultiplexerController | None = None,
        options: SessionOptions | None = None,
        *,
        on_clipboard: ClipboardCallback | None = None,
    ):
        self.transport = transport
        self.backend = backend
        self.controller = controller
        self.options = options or SessionOptions()
        self.on_clipboard = on_clipboard
        self.state = SessionState.CONNECTING
        self.encoding = ''

        self._interceptor = ClipboardInterceptor() if self.options.intercept_clipboard else None
        self._send_lock = asyncio.Lock()

        self._handlers: dict[ClientMessage, Handler] = {
            ClientMessage.INPUT: self._handle_input,
            ClientMessage.PING: self._handle_ping,
            ClientMessage.RESIZE_TERMINAL: self._handle_resize,
            ClientMessage.SET_ENCODING: self._handle_set_encoding,
        }
        self._multiplexer_handlers: dict[ClientMessage, Handler] = {
            ClientMessage.SELECT_PANE: self._handle_select_pane,
            ClientMessage.SELECT_WINDOW: self._handle_select_window,
            ClientMessage.SPLIT_PANE: self._handle_split_pane,
            ClientMessage.CLOSE_PANE: self._handle_close_pane,
            ClientMessage.NEW_WINDOW: self._handle_new_window,
            ClientMessage.SWITCH_SESSION: self._handle_switch_session,
        }
        if controller is not None and controller.supports_copy_mode:
            self._multiplexer_handlers.update({
                ClientMessage.COPY_MODE: self._handle_copy_mode,
                ClientMessage.SCROLL_UP: self._handle_scroll_up,
                ClientMessage.SCROLL_DOWN: self._handle_scroll_down,
            })

    # ── Lifecycle ──

    async def run(self) -> None:
        """Run both pumps until either side ends, then close."""
        self.state = SessionState.ACTIVE
        SESSIONS_ACTIVE.inc()
        logger.info('session_active', pid=getattr(self.backend, 'pid', None))
        try:
            try:
                await self.send_initial_messages()
            except TransportClosed as exc:
                logger.info('session_client_gone', error=str(exc))
                return

            outbound = asyncio.create_task(self._outbound_pump())
            inbound = asyncio.create_task(self._inbound_pump())
            done, pending = await asyncio.wait(
                {outbound, inbound}, return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                task.result()
        finally:
            try:
                await self.close()
            finally:
                SESSIONS_ACTIVE.dec()

    async def close(self, code: int = 1000, reason: str = '') -> None:
        """Close the backend (bounded wait) and the transport. Idempotent."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self.state = SessionState.CLOSING
        try:
            await self.backend.close(self.options.close_timeout)
        finally:
            await self.transport.close(code, reason)
            self.state = SessionState.CLOSED
            logger.info('session_closed')

    async def send_initial_messages(self) -> None:
        """Title, buffer size, reconnect hint, preferences, then layout."""
        await self.send(server_frame(ServerMessage.SET_WINDOW_TITLE, self.window_title()))
        await self.send(server_frame(ServerMessage.SET_BUFFER_SIZE, str(self.options.buffer_size)))
        if self.options.reconnect_interval > 0:
            await self.send(server_frame(
                ServerMessage.SET_RECONNECT, str(self.options.reconnect_interval),
            ))
        await self.send(json_frame(ServerMessage.SET_PREFERENCES, self.options.preferences))
        if self.controller is not None:
            await self.send_layout()

    def window_title(self) -> str:
        variables = dict(self.backend.window_title_variables())
        if isinstance(variables.get('argv'), (list, tuple)):
            variables['argv'] = ' '.join(variables['argv'])
        try:
            return self.options.title_format.format(**variables)
        except (KeyError, IndexError, ValueError) as exc:
            logger.warning('window_title_format_invalid', error=str(exc))
            return str(variables.get('command', ''))

    # ── Sending ──

    async def send(self, frame: Frame) -> None:
        async with self._send_lock:
            await self.transport.send(frame)

    async def send_layout(self, layout: Layout | None = None) -> None:
        if layout is None and self.controller is not None:
            layout = self.controller.get_layout()
        if layout is None:
            return
        try:
            frame = json_frame(ServerMessage.LAYOUT_UPDATE, layout.to_dict())
        except (TypeError, ValueError) as exc:
            logger.warning('layout_marshal_failed', error=str(exc))
            return
        await self.send(frame)

    async def send_mode(self, state: ModeState) -> None:
        try:
            frame = json_frame(ServerMessage.MODE_UPDATE, state.to_dict())
        except (TypeError, ValueError) as exc:
            logger.warning('mode_marshal_failed', error=str(exc))
            return
        await self.send(frame)

    # ── Pumps ──

    async def _outbound_pump(self) -> None:
        try:
            while True:
                data = await self.backend.read(self.options.buffer_size)
                if not data:
                    if self._interceptor is not None:
                        tail = self._interceptor.flush()
                        if tail:
                            await self._send_output(tail)
                    logger.info('session_backend_eof')
                    return
                if self._interceptor is not None:
                    data, clipboards = self._interceptor.feed(data)
                    for payload in clipboards:
                        self._deliver_clipboard(payload)
                if data:
                    await self._send_output(data)
        except BackendIOError as exc:
            logger.warning('session_backend_error', error=str(exc), operation=exc.operation)
        except TransportClosed as exc:
            logger.info('session_client_gone', error=str(exc))

    async def _send_output(self, data: bytes) -> None:
        await self.send(server_frame(ServerMessage.OUTPUT, encode_output(data)))

    def _deliver_clipboard(self, payload: bytes) -> None:
        if self.on_clipboard is not None:
            self.on_clipboard(payload)

    async def _inbound_pump(self) -> None:
        try:
            while True:
                data = await self.transport.receive()
                if data is None:
                    logger.info('session_client_disconnected')
                    return
                try:
                    await self.handle_message(data)
                except (ProtocolError, ParseError, ControllerOperationError) as exc:
                    logger.warning(
                        'session_message_failed',
                        error=str(exc),
                        operation=exc.operation,
                    )
        except BackendIOError as exc:
            logger.warning('session_backend_error', error=str(exc), operation=exc.operation)
        except TransportClosed as exc:
            logger.info('session_client_gone', error=str(exc))

    # ── Dispatch ──

    async def handle_message(self, data: bytes | str) -> None:
        """Dispatch one inbound frame.

        Raises:
            ProtocolError: For empty frames and unknown tags.
            ControllerOperationError: When a multiplexer operation fails.
            BackendIOError: When the PTY cannot be written or resized.
        """
        frame = Frame.decode(data)
        message = resolve_client_message(frame.tag)

        if message in MULTIPLEXER_MESSAGES:
            if self.controller is None:
                return
            handler = self._multiplexer_handlers.get(message)
        else:
            handler = self._handlers.get(message)

        if handler is None:
            raise ProtocolError(f'unknown message type: {frame.tag!r}', tag=frame.tag)
        await handler(frame.payload)

    async def _handle_input(self, payload: bytes) -> None:
        if not self.options.permit_write:
            return
        data = decode_input(payload, self.encoding)
        if data:
            await self.backend.write(data)

    async def _handle_ping(self, payload: bytes) -> None:
        await self.send(server_frame(ServerMessage.PONG))

    async def _handle_resize(self, payload: bytes) -> None:
        columns, rows = parse_resize(payload)
        await self.backend.resize(columns, rows)

    async def _handle_set_encoding(self, payload: bytes) -> None:
        name = payload.decode('utf-8', errors='replace').strip()
        if name not in SUPPORTED_ENCODINGS:
            raise ProtocolError(
                f'unsupported encoding: {name!r}', tag=ClientMessage.SET_ENCODING.value,
            )
        self.encoding = name

    async def _handle_select_pane(self, payload: bytes) -> None:
        await self.send_layout(await self.controller.select_pane(_text(payload)))

    async def _handle_select_window(self, payload: bytes) -> None:
        await self.send_layout(await self.controller.select_window(_text(payload)))

    async def _handle_split_pane(self, payload: bytes) -> None:
        await self.send_layout(await self.controller.split_pane(_text(payload) == 'h'))

    async def _handle_close_pane(self, payload: bytes) -> None:
        await self.send_layout(await self.controller.close_pane(_text(payload)))

    async def _handle_new_window(self, payload: bytes) -> None:
        await self.send_layout(await self.controller.new_window())

    async def _handle_switch_session(self, payload: bytes) -> None:
        await self.send_layout(await self.controller.switch_session(_text(payload)))

    async def _handle_copy_mode(self, payload: bytes) -> None:
        if _text(payload) == '1':
            state = await self.controller.enter_copy_mode()
        else:
            state = await self.controller.exit_copy_mode()
        await self.send_mode(state)

    async def _handle_scroll_up(self, payload: bytes) -> None:
        await self._scroll(self.controller.scroll_up, payload)

    async def _handle_scroll_down(self, payload: bytes) -> None:
        await self._scroll(self.controller.scroll_down, payload)

    async def _scroll(self, scroll: Callable[[int], Awaitable[None]], payload: bytes) -> None:
        was_in_copy_mode = self.controller.mode_state.in_copy_mode
        await scroll(parse_line_count(payload))
        state = self.controller.mode_state
        if state.in_copy_mode != was_in_copy_mode:
            await self.send_mode(state)


def _text(payload: bytes) -> str:
    return payload.decode('utf-8', errors='replace').strip()
