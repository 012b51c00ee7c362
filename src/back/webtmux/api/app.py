"""Application factory for webtmux."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response

from ..observability.metrics import metrics_text
from ..observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .auth import BasicAuthGate
from .config import BridgeConfig
from .modules.pty import create_session_router
from .modules.pty.router import BackendFactory, ControllerFactory
from .rate_limiter import AuthRateLimiter

logger = logging.getLogger(__name__)


def create_app(
    config: BridgeConfig | None = None,
    rate_limiter: AuthRateLimiter | None = None,
    backend_factory: BackendFactory | None = None,
    controller_factory: ControllerFactory | None = None,
) -> FastAPI:
    """Create a pre-wired FastAPI application.

    The app owns the single AuthRateLimiter shared by every request
    (``app.state.rate_limiter``). Factories are injectable for tests.

    Args:
        config: Bridge configuration (defaults from WEBTMUX_* env vars)
        rate_limiter: Limiter instance; a fresh one by default
        backend_factory: Starts the PTY backend for each session
        controller_factory: Builds the multiplexer controller per session

    Returns:
        Configured FastAPI application
    """
    config = config or BridgeConfig()
    rate_limiter = rate_limiter or AuthRateLimiter()

    # Validate configuration at startup (fail-fast)
    try:
        config.validate_startup()
    except ValueError as e:
        logger.error('Configuration validation failed: %s', e)
        raise

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info('webtmux startup')
        logger.info('Command: %s', ' '.join(config.command))
        logger.info('Multiplexer: %s (session %s)', config.multiplexer.value, config.session_name)
        logger.info('Basic auth: %s', 'enabled' if config.auth_enabled else 'disabled')
        rate_limiter.start()
        try:
            yield
        finally:
            await rate_limiter.stop()
            logger.info('webtmux shutdown')

    app = FastAPI(
        title='webtmux',
        description='Terminal and multiplexer sessions over a websocket',
        version='0.1.0',
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.rate_limiter = rate_limiter

    # Innermost first: the gate sees requests after id/metrics/logging
    if config.credential:
        app.add_middleware(
            BasicAuthGate,
            credential=config.credential,
            rate_limiter=rate_limiter,
        )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(create_session_router(
        config,
        backend_factory=backend_factory,
        controller_factory=controller_factory,
    ))

    @app.get('/health')
    async def health():
        """Health check endpoint."""
        return {'status': 'ok'}

    @app.get('/config')
    async def get_config():
        """Client bootstrap document."""
        return {
            'preferences': config.preferences,
            'reconnect': config.reconnect,
            'reconnectInterval': config.reconnect_interval if config.reconnect else 0,
            'bufferSize': config.buffer_size,
            'multiplexer': config.multiplexer.value,
            'permitWrite': config.permit_write,
            'wsPath': config.ws_path,
        }

    @app.get('/metrics')
    async def metrics():
        """Prometheus exposition."""
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    return app
