"""Wire protocol for the terminal websocket.

One websocket frame carries one message: an ASCII tag byte followed by
the payload. The first frame of a connection is a JSON handshake
(``{"AuthToken": ..., "Arguments": ...}``) and is not tagged.

  Inbound (browser -> bridge):
    1 Input, 2 Ping, 3 ResizeTerminal, 4 SetEncoding,
    5 SelectPane, 6 SelectWindow, 7 SplitPane, 8 ClosePane,
    9 CopyMode, B ScrollUp, C ScrollDown, D NewWindow, E SwitchSession

  Outbound (bridge -> browser):
    1 Output, 2 Pong, 3 SetWindowTitle, 4 SetPreferences,
    5 SetReconnect, 6 SetBufferSize, 7 LayoutUpdate, 9 ModeUpdate

Tag ``0`` marks unknown/legacy traffic in either direction and ``A`` is
reserved for session info.
"""
from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qs

from .errors import ProtocolError

WEBSOCKET_SUBPROTOCOL = 'webtty'
ENCODING_BASE64 = 'base64'
SUPPORTED_ENCODINGS = frozenset({ENCODING_BASE64})


class ClientMessage(str, Enum):
    UNKNOWN = '0'
    INPUT = '1'
    PING = '2'
    RESIZE_TERMINAL = '3'
    SET_ENCODING = '4'
    SELECT_PANE = '5'
    SELECT_WINDOW = '6'
    SPLIT_PANE = '7'
    CLOSE_PANE = '8'
    COPY_MODE = '9'
    SCROLL_UP = 'B'
    SCROLL_DOWN = 'C'
    NEW_WINDOW = 'D'
    SWITCH_SESSION = 'E'


class ServerMessage(str, Enum):
    UNKNOWN = '0'
    OUTPUT = '1'
    PONG = '2'
    SET_WINDOW_TITLE = '3'
    SET_PREFERENCES = '4'
    SET_RECONNECT = '5'
    SET_BUFFER_SIZE = '6'
    LAYOUT_UPDATE = '7'
    MODE_UPDATE = '9'
    SESSION_INFO = 'A'


MULTIPLEXER_MESSAGES = frozenset({
    ClientMessage.SELECT_PANE,
    ClientMessage.SELECT_WINDOW,
    ClientMessage.SPLIT_PANE,
    ClientMessage.CLOSE_PANE,
    ClientMessage.COPY_MODE,
    ClientMessage.SCROLL_UP,
    ClientMessage.SCROLL_DOWN,
    ClientMessage.NEW_WINDOW,
    ClientMessage.SWITCH_SESSION,
})


@dataclass(frozen=True)
class Frame:
    """One tagged message."""
    tag: str
    payload: bytes = b''

    def encode(self) -> bytes:
        return self.tag.encode('ascii') + self.payload

    @property
    def text(self) -> str:
        return self.payload.decode('utf-8', errors='replace')

    @classmethod
    def decode(cls, data: bytes | str) -> 'Frame':
        """Split raw frame data into tag and payload.

        Raises:
            ProtocolError: If the frame is empty.
        """
        if isinstance(data, str):
            data = data.encode('utf-8')
        if not data:
            raise ProtocolError('unexpected zero length frame')
        return cls(tag=chr(data[0]), payload=bytes(data[1:]))


def server_frame(message: ServerMessage, payload: bytes | str = b'') -> Frame:
    if isinstance(payload, str):
        payload = payload.encode('utf-8')
    return Frame(tag=message.value, payload=payload)


def json_frame(message: ServerMessage, document: dict) -> Frame:
    return server_frame(message, json.dumps(document, separators=(',', ':')))


def resolve_client_message(tag: str) -> ClientMessage:
    try:
        return ClientMessage(tag)
    except ValueError:
        raise ProtocolError(f'unknown message type: {tag!r}', tag=tag) from None


# ── Handshake ──


@dataclass(frozen=True)
class Handshake:
    auth_token: str = ''
    arguments: str = ''


def parse_handshake(data: bytes | str) -> Handshake:
    """Parse the untagged JSON document that opens every connection.

    Raises:
        ProtocolError: If the document is not a JSON object.
    """
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
        raise ProtocolError(f'malformed handshake: {exc}') from exc
    if not isinstance(document, dict):
        raise ProtocolError('malformed handshake: expected a JSON object')
    return Handshake(
        auth_token=str(document.get('AuthToken') or ''),
        arguments=str(document.get('Arguments') or ''),
    )


def parse_arguments(query: str) -> list[str]:
    """Extract ``arg`` values from a handshake query string (``?arg=a&arg=b``)."""
    return parse_qs(query.lstrip('?')).get('arg', [])


# ── Payload helpers ──


def parse_resize(payload: bytes) -> tuple[int, int]:
    """Parse a ``{"columns": int, "rows": int}`` resize payload.

    Returns:
        (columns, rows)
    """
    try:
        document = json.loads(payload)
        columns = int(document['columns'])
        rows = int(document['rows'])
    except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError, ValueError) as exc:
        raise ProtocolError(f'malformed resize payload: {exc}', tag=ClientMessage.RESIZE_TERMINAL.value) from exc
    if columns <= 0 or rows <= 0:
        raise ProtocolError(
            f'invalid terminal size {columns}x{rows}',
            tag=ClientMessage.RESIZE_TERMINAL.value,
        )
    return columns, rows


def parse_line_count(payload: bytes) -> int:
    """Decimal line count for scroll messages; 1 when absent, bad or <= 0."""
    try:
        lines = int(payload.decode('ascii').strip())
    except (UnicodeDecodeError, ValueError):
        return 1
    return lines if lines > 0 else 1


def decode_input(payload: bytes, encoding: str) -> bytes:
    if encoding != ENCODING_BASE64:
        return payload
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError(f'malformed base64 input: {exc}', tag=ClientMessage.INPUT.value) from exc


def encode_output(data: bytes) -> bytes:
    return base64.b64encode(data)


# ── Clipboard (OSC 52) interception ──

_OSC52_RE = re.compile(rb'\x1b\]52;[cpqs0-7]*;([A-Za-z0-9+/=?]*?)(?:\x07|\x1b\\)')
_OSC52_START = b'\x1b]52;'
_OSC_INTRODUCER = b'\x1b]'
DEFAULT_MAX_PENDING = 64 * 1024


class ClipboardInterceptor:
    """Strip OSC 52 clipboard reports from a byte stream.

    Sequences can straddle reads, so an unterminated OSC at the end of a
    chunk is held back until the next ``feed``. Holding is capped at
    ``max_pending`` bytes, after which the held bytes are released as-is.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING):
        self._pending = b''
        self._max_pending = max_pending

    def feed(self, data: bytes) -> tuple[bytes, list[bytes]]:
        """Return (bytes to forward, decoded clipboard payloads)."""
        buffer = self._pending + data
        self._pending = b''

        clipboards = []
        for match in _OSC52_RE.finditer(buffer):
            encoded = match.group(1)
            if not encoded or encoded == b'?':
                continue
            try:
                clipboards.append(base64.b64decode(encoded, validate=True))
            except (binascii.Error, ValueError):
                continue
        forward = _OSC52_RE.sub(b'', buffer)

        held = self._unterminated_tail(forward)
        if held and len(held) <= self._max_pending:
            self._pending = held
            forward = forward[:-len(held)]
        return forward, clipboards

    def flush(self) -> bytes:
        pending, self._pending = self._pending, b''
        return pending

    @staticmethod
    def _unterminated_tail(data: bytes) -> bytes:
        start = data.rfind(_OSC_INTRODUCER)
        if start != -1:
            tail = data[start:]
            unterminated = b'\x07' not in tail and b'\x1b\\' not in tail
            if unterminated and tail.startswith(_OSC52_START):
                return tail
        # a chunk may end partway through the OSC 52 introducer itself
        for size in range(min(len(_OSC52_START) - 1, len(data)), 0, -1):
            if data.endswith(_OSC52_START[:size]):
                return data[-size:]
        return b''
