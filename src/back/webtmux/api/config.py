"""Configuration for the webtmux session bridge."""
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum


class MultiplexerKind(str, Enum):
    """Multiplexer attached to each session.

    - NONE: plain shell, multiplexer messages are ignored
    - TMUX: tmux, with copy mode and scrolling
    - PSMUX: psmux, base capability set
    """
    NONE = 'none'
    TMUX = 'tmux'
    PSMUX = 'psmux'

    @classmethod
    def from_env(cls) -> 'MultiplexerKind':
        """Get the multiplexer from WEBTMUX_MULTIPLEXER (case-insensitive)."""
        kind_str = os.environ.get('WEBTMUX_MULTIPLEXER', 'none').strip().lower() or 'none'
        try:
            return cls(kind_str)
        except ValueError:
            raise ValueError(
                f"Invalid WEBTMUX_MULTIPLEXER='{kind_str}'. "
                f"Must be one of: {', '.join(k.value for k in cls)}"
            )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, '').strip().lower()
    if not raw:
        return default
    return raw in {'1', 'true', 'yes', 'on'}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, '').strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, '').strip()
    return int(raw) if raw else default


def _env_list(name: str) -> list[str]:
    return [item.strip() for item in os.environ.get(name, '').split(',') if item.strip()]


def _env_command() -> list[str]:
    return shlex.split(os.environ.get('WEBTMUX_COMMAND', ''))


def _env_preferences() -> dict:
    font_size = os.environ.get('WEBTMUX_FONT_SIZE', '').strip()
    if not font_size:
        return {}
    return {'fontSize': int(font_size)}


def default_command(multiplexer: MultiplexerKind, session_name: str) -> list[str]:
    """Command used when WEBTMUX_COMMAND is unset."""
    if multiplexer in (MultiplexerKind.TMUX, MultiplexerKind.PSMUX):
        return [multiplexer.value, 'new-session', '-A', '-s', session_name]
    return [os.environ.get('SHELL') or 'bash']


@dataclass
class BridgeConfig:
    """Central configuration for the app and every router factory.

    Passed explicitly into create_app(); nothing reads it globally.
    """
    command: list[str] = field(default_factory=_env_command)
    multiplexer: MultiplexerKind = field(default_factory=MultiplexerKind.from_env)
    session_name: str = field(default_factory=lambda: os.environ.get('WEBTMUX_SESSION', 'main'))

    # 'user:pass'; enables the basic-auth gate and the handshake token check
    credential: str | None = field(default_factory=lambda: os.environ.get('WEBTMUX_CREDENTIAL') or None)

    permit_write: bool = field(default_factory=lambda: _env_bool('WEBTMUX_PERMIT_WRITE', True))
    permit_arguments: bool = field(default_factory=lambda: _env_bool('WEBTMUX_PERMIT_ARGUMENTS', False))
    pass_headers: list[str] = field(default_factory=lambda: _env_list('WEBTMUX_PASS_HEADERS'))

    # Seconds; negative waits forever
    close_timeout: float = field(default_factory=lambda: _env_float('WEBTMUX_CLOSE_TIMEOUT', 10.0))

    reconnect: bool = field(default_factory=lambda: _env_bool('WEBTMUX_RECONNECT', False))
    reconnect_interval: int = field(default_factory=lambda: _env_int('WEBTMUX_RECONNECT_INTERVAL', 10))
    buffer_size: int = field(default_factory=lambda: _env_int('WEBTMUX_BUFFER_SIZE', 1024))
    preferences: dict = field(default_factory=_env_preferences)
    intercept_clipboard: bool = field(default_factory=lambda: _env_bool('WEBTMUX_INTERCEPT_CLIPBOARD', False))
    title_format: str = field(
        default_factory=lambda: os.environ.get('WEBTMUX_TITLE_FORMAT', '{command}@{hostname}')
    )
    ws_path: str = '/ws'

    def __post_init__(self) -> None:
        if isinstance(self.multiplexer, str) and not isinstance(self.multiplexer, MultiplexerKind):
            self.multiplexer = MultiplexerKind(self.multiplexer.lower())
        if not self.command:
            self.command = default_command(self.multiplexer, self.session_name)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.credential)

    def validate_startup(self) -> None:
        """Validate configuration at startup.

        Raises:
            ValueError: Listing every problem found.
        """
        problems = []
        if self.credential is not None and ':' not in self.credential:
            problems.append("WEBTMUX_CREDENTIAL must have the form 'user:pass'")
        if not self.command or not self.command[0]:
            problems.append('WEBTMUX_COMMAND must name a program to run')
        if self.buffer_size <= 0:
            problems.append(f'WEBTMUX_BUFFER_SIZE must be positive, got {self.buffer_size}')
        if self.reconnect_interval < 0:
            problems.append(
                f'WEBTMUX_RECONNECT_INTERVAL must not be negative, got {self.reconnect_interval}'
            )
        if not self.session_name:
            problems.append('WEBTMUX_SESSION must not be empty')

        if problems:
            raise ValueError(
                "Startup validation failed.\n"
                + "\n".join(f"  - {p}" for p in problems)
                + f"\n\nConfiguration:\n"
                f"  Command: {' '.join(self.command)}\n"
                f"  Multiplexer: {self.multiplexer.value}\n"
                f"  Session: {self.session_name}\n"
                f"\nFix the variables above and retry."
            )
