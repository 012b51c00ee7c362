"""HTTP basic-auth gate in front of the session bridge.

A pure ASGI middleware so the same gate covers plain HTTP requests and
websocket upgrades. Order of checks for every gated request:
  1. Lockout (global first, then per-source): 429 + Retry-After.
  2. Missing or malformed Authorization header: 401 + challenge.
     Not counted as a failure.
  3. Credential mismatch: recorded as a failure, 401 + challenge.
  4. Match: the source's failure history is reset.
"""
from __future__ import annotations

import base64
import binascii
import hmac
from collections.abc import Iterable, Mapping

from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocket

from ..observability import get_logger
from .errors import AuthError, LockoutError
from .rate_limiter import SCOPE_GLOBAL, AuthRateLimiter, LockoutStatus

logger = get_logger(__name__)

AUTH_REALM = 'WebTmux'
DEFAULT_EXEMPT_PATHS = frozenset({'/health'})
WS_POLICY_VIOLATION = 1008


def _strip_port(address: str) -> str:
    address = address.strip()
    if address.startswith('['):
        end = address.find(']')
        if end != -1:
            return address[1:end]
    if address.count(':') == 1:
        return address.partition(':')[0]
    return address.strip('[]')


def extract_client_ip(headers: Mapping[str, str], peer: str | None = None) -> str:
    """Resolve the rate-limiting bucket for a request.

    Priority: first X-Forwarded-For entry, then X-Real-IP, then the
    transport peer. Ports and IPv6 brackets are stripped.
    """
    forwarded = headers.get('x-forwarded-for', '')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return _strip_port(first)

    real_ip = headers.get('x-real-ip', '').strip()
    if real_ip:
        return real_ip.strip('[]')

    return _strip_port(peer or '')


def parse_basic_credential(authorization: str) -> bytes:
    """Decode a ``Basic <base64>`` header into its ``user:pass`` bytes.

    Raises:
        AuthError: If the header is missing or malformed.
    """
    scheme, _, token = authorization.partition(' ')
    if scheme.lower() != 'basic' or not token:
        raise AuthError('missing or malformed Authorization header')
    try:
        return base64.b64decode(token.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AuthError(f'malformed basic credential: {exc}') from exc


def _scope_peer(scope: Scope) -> str | None:
    client = scope.get('client')
    if not client:
        return None
    host, port = client[0], client[1]
    if ':' in host:
        return f'[{host}]:{port}'
    return f'{host}:{port}'


class BasicAuthGate:
    """ASGI middleware enforcing one ``user:pass`` credential."""

    def __init__(
        self,
        app: ASGIApp,
        credential: str,
        rate_limiter: AuthRateLimiter,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ):
        self.app = app
        self._credential = credential.encode('utf-8')
        self.rate_limiter = rate_limiter
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope['type'] not in ('http', 'websocket') or scope.get('path') in self.exempt_paths:
            await self.app(scope, receive, send)
            return

        headers = {
            k.decode('latin-1').lower(): v.decode('latin-1')
            for k, v in scope.get('headers', [])
        }
        client_ip = extract_client_ip(headers, _scope_peer(scope))

        response = self.authenticate(headers.get('authorization', ''), client_ip)
        if response is None:
            await self.app(scope, receive, send)
            return

        if scope['type'] == 'http':
            await response(scope, receive, send)
            return

        websocket = WebSocket(scope, receive, send)
        if 'websocket.http.response' in scope.get('extensions', {}):
            await websocket.send_denial_response(response)
        else:
            await websocket.close(code=WS_POLICY_VIOLATION)

    def authenticate(self, authorization: str, client_ip: str) -> Response | None:
        """Return a denial response, or None when the request may proceed."""
        try:
            self.rate_limiter.ensure_allowed(client_ip)
        except LockoutError as exc:
            logger.warning(
                'auth_locked_out',
                client_ip=client_ip,
                scope=exc.scope,
                retry_after=round(exc.retry_after, 1),
            )
            return self._locked_out(exc)

        try:
            supplied = parse_basic_credential(authorization)
        except AuthError as exc:
            logger.info('auth_challenge', client_ip=client_ip, reason=str(exc))
            return self._challenge('Unauthorized')

        if not hmac.compare_digest(supplied, self._credential):
            self.rate_limiter.record_failure(client_ip)
            return self._challenge('Authorization failed')

        self.rate_limiter.record_success(client_ip)
        logger.debug('auth_success', client_ip=client_ip)
        return None

    @staticmethod
    def _challenge(detail: str) -> Response:
        return PlainTextResponse(
            detail,
            status_code=401,
            headers={'WWW-Authenticate': f'Basic realm="{AUTH_REALM}"'},
        )

    @staticmethod
    def _locked_out(exc: LockoutError) -> Response:
        if exc.scope == SCOPE_GLOBAL:
            detail = 'Too many failed login attempts. Service temporarily locked.'
        else:
            detail = 'Too many failed login attempts. Try again later.'
        return PlainTextResponse(
            detail,
            status_code=429,
            headers={'Retry-After': LockoutStatus(True, exc.retry_after).retry_after_header},
        )
