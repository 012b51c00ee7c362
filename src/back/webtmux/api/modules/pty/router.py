"""Session websocket router for webtmux."""
import hmac
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, WebSocket

from ....observability import get_logger, session_id_ctx
from ...config import BridgeConfig
from ...errors import ControllerStartError, ProtocolError, SpawnError
from ...protocol import WEBSOCKET_SUBPROTOCOL, parse_arguments, parse_handshake
from ..multiplexer import MultiplexerController, create_controller
from .backend import PTYBackend
from .engine import SessionEngine, SessionOptions, WebSocketTransport

logger = get_logger(__name__)

CLOSE_MALFORMED_HANDSHAKE = 4000
CLOSE_AUTH_FAILED = 4001
CLOSE_INTERNAL_ERROR = 1011

BackendFactory = Callable[..., Awaitable[Any]]
ControllerFactory = Callable[[str, str], MultiplexerController | None]


def session_options(config: BridgeConfig) -> SessionOptions:
    return SessionOptions(
        permit_write=config.permit_write,
        buffer_size=config.buffer_size,
        reconnect_interval=config.reconnect_interval if config.reconnect else 0,
        preferences=dict(config.preferences),
        title_format=config.title_format,
        close_timeout=config.close_timeout,
        intercept_clipboard=config.intercept_clipboard,
    )


def _log_clipboard(payload: bytes) -> None:
    logger.info('clipboard_intercepted', size=len(payload))


async def _start_controller(
    controller_factory: ControllerFactory,
    config: BridgeConfig,
) -> MultiplexerController | None:
    """Start the configured controller; on failure fall back to a plain terminal."""
    controller = controller_factory(config.multiplexer.value, config.session_name)
    if controller is None:
        return None
    try:
        await controller.start()
    except ControllerStartError as exc:
        logger.warning(
            'multiplexer_unavailable',
            multiplexer=config.multiplexer.value,
            session=config.session_name,
            error=str(exc),
        )
        controller.stop()
        return None
    return controller


def create_session_router(
    config: BridgeConfig,
    backend_factory: BackendFactory | None = None,
    controller_factory: ControllerFactory | None = None,
) -> APIRouter:
    """Create the session websocket router.

    Args:
        config: Bridge configuration
        backend_factory: ``async (command, argv, headers, *, close_timeout)``
            returning a started backend; defaults to PTYBackend.start
        controller_factory: ``(kind, session_name)`` returning a controller
            or None; defaults to create_controller

    Returns:
        FastAPI router with the session websocket endpoint
    """
    backend_factory = backend_factory or PTYBackend.start
    controller_factory = controller_factory or create_controller
    options = session_options(config)
    router = APIRouter(tags=['session'])

    @router.websocket(config.ws_path)
    async def session_websocket(websocket: WebSocket):
        """One terminal session per connection.

        The first frame is the JSON handshake; tagged traffic follows.
        """
        offered = websocket.scope.get('subprotocols') or []
        subprotocol = WEBSOCKET_SUBPROTOCOL if WEBSOCKET_SUBPROTOCOL in offered else None
        await websocket.accept(subprotocol=subprotocol)

        token = session_id_ctx.set(uuid.uuid4().hex[:12])
        try:
            message = await websocket.receive()
            if message['type'] == 'websocket.disconnect':
                logger.info('session_handshake_aborted')
                return
            try:
                handshake = parse_handshake(message.get('text') or message.get('bytes') or b'')
            except ProtocolError as exc:
                logger.warning('session_handshake_malformed', error=str(exc))
                await websocket.close(code=CLOSE_MALFORMED_HANDSHAKE, reason='malformed handshake')
                return

            if config.credential and not hmac.compare_digest(
                handshake.auth_token.encode('utf-8'), config.credential.encode('utf-8'),
            ):
                logger.warning('session_handshake_auth_failed')
                await websocket.close(code=CLOSE_AUTH_FAILED, reason='authentication failed')
                return

            argv = list(config.command[1:])
            if config.permit_arguments:
                argv.extend(parse_arguments(handshake.arguments))
            headers = {
                name: websocket.headers.getlist(name)
                for name in config.pass_headers
                if name in websocket.headers
            }

            controller = await _start_controller(controller_factory, config)
            try:
                try:
                    backend = await backend_factory(
                        config.command[0], argv, headers,
                        close_timeout=config.close_timeout,
                    )
                except SpawnError as exc:
                    logger.error('session_spawn_failed', error=str(exc), command=exc.command)
                    await websocket.close(code=CLOSE_INTERNAL_ERROR, reason='failed to start command')
                    return

                engine = SessionEngine(
                    WebSocketTransport(websocket),
                    backend,
                    controller,
                    options,
                    on_clipboard=_log_clipboard,
                )
                await engine.run()
            finally:
                if controller is not None:
                    controller.stop()
        finally:
            session_id_ctx.reset(token)

    return router
