"""Unit tests for webtmux.api.config module."""
import pytest

from webtmux.api.config import BridgeConfig, MultiplexerKind, default_command


ENV_VARS = [
    'WEBTMUX_COMMAND', 'WEBTMUX_MULTIPLEXER', 'WEBTMUX_SESSION',
    'WEBTMUX_CREDENTIAL', 'WEBTMUX_PERMIT_WRITE', 'WEBTMUX_PERMIT_ARGUMENTS',
    'WEBTMUX_PASS_HEADERS', 'WEBTMUX_CLOSE_TIMEOUT', 'WEBTMUX_RECONNECT',
    'WEBTMUX_RECONNECT_INTERVAL', 'WEBTMUX_BUFFER_SIZE', 'WEBTMUX_FONT_SIZE',
    'WEBTMUX_INTERCEPT_CLIPBOARD', 'WEBTMUX_TITLE_FORMAT',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('SHELL', '/bin/zsh')


class TestMultiplexerKind:

    def test_default_is_none(self):
        assert MultiplexerKind.from_env() == MultiplexerKind.NONE

    def test_case_insensitive(self, monkeypatch):
        monkeypatch.setenv('WEBTMUX_MULTIPLEXER', 'TMux')
        assert MultiplexerKind.from_env() == MultiplexerKind.TMUX

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv('WEBTMUX_MULTIPLEXER', 'screen')
        with pytest.raises(ValueError, match='Must be one of'):
            MultiplexerKind.from_env()


class TestDefaultCommand:

    def test_plain_shell(self):
        assert default_command(MultiplexerKind.NONE, 'main') == ['/bin/zsh']

    def test_shell_fallback(self, monkeypatch):
        monkeypatch.delenv('SHELL')
        assert default_command(MultiplexerKind.NONE, 'main') == ['bash']

    @pytest.mark.parametrize('kind', [MultiplexerKind.TMUX, MultiplexerKind.PSMUX])
    def test_multiplexer_attaches_or_creates(self, kind):
        assert default_command(kind, 'work') == [kind.value, 'new-session', '-A', '-s', 'work']


class TestBridgeConfig:

    def test_defaults(self):
        config = BridgeConfig()
        assert config.command == ['/bin/zsh']
        assert config.multiplexer == MultiplexerKind.NONE
        assert config.session_name == 'main'
        assert config.credential is None
        assert config.auth_enabled is False
        assert config.permit_write is True
        assert config.permit_arguments is False
        assert config.pass_headers == []
        assert config.close_timeout == 10.0
        assert config.reconnect is False
        assert config.reconnect_interval == 10
        assert config.buffer_size == 1024
        assert config.preferences == {}
        assert config.ws_path == '/ws'

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv('WEBTMUX_COMMAND', "htop -d '10'")
        monkeypatch.setenv('WEBTMUX_CREDENTIAL', 'admin:pw')
        monkeypatch.setenv('WEBTMUX_PERMIT_WRITE', 'false')
        monkeypatch.setenv('WEBTMUX_PASS_HEADERS', 'X-User, X-Team,')
        monkeypatch.setenv('WEBTMUX_CLOSE_TIMEOUT', '-1')
        monkeypatch.setenv('WEBTMUX_RECONNECT', 'yes')
        monkeypatch.setenv('WEBTMUX_FONT_SIZE', '16')
        config = BridgeConfig()
        assert config.command == ['htop', '-d', '10']
        assert config.auth_enabled is True
        assert config.permit_write is False
        assert config.pass_headers == ['X-User', 'X-Team']
        assert config.close_timeout == -1.0
        assert config.reconnect is True
        assert config.preferences == {'fontSize': 16}

    def test_multiplexer_string_coerced(self):
        config = BridgeConfig(multiplexer='psmux', session_name='dev')
        assert config.multiplexer is MultiplexerKind.PSMUX
        assert config.command == ['psmux', 'new-session', '-A', '-s', 'dev']

    def test_explicit_command_kept(self):
        config = BridgeConfig(command=['vim'], multiplexer='tmux')
        assert config.command == ['vim']


class TestValidateStartup:

    def test_valid(self):
        BridgeConfig(credential='admin:pw').validate_startup()

    def test_credential_without_colon(self):
        with pytest.raises(ValueError, match='user:pass'):
            BridgeConfig(credential='admin').validate_startup()

    def test_collects_every_problem(self):
        config = BridgeConfig(buffer_size=0, reconnect_interval=-5, session_name='x')
        config.command = ['']
        config.session_name = ''
        with pytest.raises(ValueError) as exc:
            config.validate_startup()
        message = str(exc.value)
        assert 'WEBTMUX_COMMAND' in message
        assert 'WEBTMUX_BUFFER_SIZE' in message
        assert 'WEBTMUX_RECONNECT_INTERVAL' in message
        assert 'WEBTMUX_SESSION' in message
