"""PTY process backend.

Owns one child process attached to a pseudo-terminal (via ptyprocess)
and exposes async byte-stream read/write, resize and a bounded close.

A background task waits for the child to exit; whatever the outcome it
closes the terminal handle and sets the one-shot ``closed`` event.
``close()`` signals the child and waits on that same event, giving up
after ``close_timeout`` seconds (negative waits forever).

Blocking calls run on a small executor owned by each backend, so a
session parked in wait or read never holds a thread another session
needs.
"""
from __future__ import annotations

import asyncio
import os
import re
import signal
import socket
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import ptyprocess

from ....observability import get_logger
from ...errors import BackendIOError, SpawnError

logger = get_logger(__name__)

DEFAULT_CLOSE_TIMEOUT = 10.0
DEFAULT_READ_SIZE = 1024
DEFAULT_DIMENSIONS = (24, 80)  # rows, cols
TERM = 'xterm-256color'
HEADER_ENV_PREFIX = 'HTTP_'

_NON_ALNUM = re.compile(r'[^A-Z0-9]')


def build_environment(
    headers: Mapping[str, Sequence[str]] | None = None,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Inherited environment plus TERM plus one HTTP_* variable per header.

    Header names are upper-cased with every non-alphanumeric character
    replaced by ``_``; multiple values are joined with ``,``.
    """
    env = dict(os.environ if base is None else base)
    env['TERM'] = TERM
    for name, values in (headers or {}).items():
        key = HEADER_ENV_PREFIX + _NON_ALNUM.sub('_', name.upper())
        env[key] = ','.join(values)
    return env


class PTYBackend:
    """One PTY-backed child process."""

    def __init__(
        self,
        process: Any,
        command: str,
        argv: Sequence[str] = (),
        *,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        close_signal: int = signal.SIGHUP,
    ):
        self._process = process
        self.command = command
        self.argv = list(argv)
        self.close_timeout = close_timeout
        self.close_signal = close_signal
        self.exit_status: int | None = None
        self._closed = asyncio.Event()
        self._close_requested = False
        self._wait_task: asyncio.Task | None = None
        # one thread each for wait, read and write
        self._executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix='webtmux-pty')

    @classmethod
    async def start(
        cls,
        command: str,
        argv: Sequence[str] = (),
        headers: Mapping[str, Sequence[str]] | None = None,
        *,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        dimensions: tuple[int, int] = DEFAULT_DIMENSIONS,
        cwd: str | None = None,
    ) -> 'PTYBackend':
        """Spawn ``command argv...`` on a new PTY.

        Raises:
            SpawnError: If the process cannot be started.
        """
        full_command = [command, *argv]
        try:
            process = ptyprocess.PtyProcess.spawn(
                full_command,
                cwd=cwd,
                env=build_environment(headers),
                dimensions=dimensions,
            )
        except (OSError, ptyprocess.PtyProcessError) as exc:
            raise SpawnError(
                f'failed to start command `{command}`: {exc}',
                command=full_command,
            ) from exc

        backend = cls(process, command, argv, close_timeout=close_timeout)
        backend._wait_task = asyncio.create_task(backend._wait_for_exit())
        logger.info('pty_started', command=command, argv=list(argv), pid=process.pid)
        return backend

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _wait_for_exit(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self.exit_status = await loop.run_in_executor(self._executor, self._process.wait)
        except (ptyprocess.PtyProcessError, OSError) as exc:
            logger.debug('pty_wait_failed', pid=self.pid, error=str(exc))
        finally:
            try:
                self._process.close(force=True)
            except (ptyprocess.PtyProcessError, OSError) as exc:
                logger.debug('pty_handle_close_failed', pid=self.pid, error=str(exc))
            self._closed.set()
            self._executor.shutdown(wait=False)
            logger.info('pty_exited', pid=self.pid, exit_status=self.exit_status)

    async def read(self, size: int = DEFAULT_READ_SIZE) -> bytes:
        """Read up to ``size`` bytes; ``b''`` means the process is gone."""
        if self._closed.is_set():
            return b''
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, self._process.read, size)
        except EOFError:
            return b''
        except RuntimeError:
            # executor already shut down by the exit watcher
            return b''
        except (OSError, ValueError) as exc:
            if self._closed.is_set():
                return b''
            raise BackendIOError(f'pty read failed: {exc}', operation='read') from exc

    async def write(self, data: bytes) -> int:
        if self._closed.is_set():
            raise BackendIOError('pty is closed', operation='write')
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, self._process.write, data)
        except RuntimeError as exc:
            raise BackendIOError('pty is closed', operation='write') from exc
        except (OSError, ValueError) as exc:
            raise BackendIOError(f'pty write failed: {exc}', operation='write') from exc

    async def resize(self, columns: int, rows: int) -> None:
        if self._closed.is_set():
            raise BackendIOError('pty is closed', operation='resize')
        try:
            self._process.setwinsize(rows, columns)
        except (OSError, ValueError) as exc:
            raise BackendIOError(f'pty resize failed: {exc}', operation='resize') from exc

    async def close(self, timeout: float | None = None) -> None:
        """Ask the child to exit and wait for the closed event.

        Never raises and never waits past ``timeout``. Idempotent.
        """
        timeout = self.close_timeout if timeout is None else timeout
        if not self._closed.is_set() and not self._close_requested:
            self._close_requested = True
            try:
                os.kill(self.pid, self.close_signal)
            except ProcessLookupError:
                pass

        try:
            if timeout < 0:
                await self._closed.wait()
            else:
                await asyncio.wait_for(self._closed.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning('pty_close_timeout', pid=self.pid, timeout=timeout)

    def window_title_variables(self) -> dict[str, Any]:
        return {
            'command': self.command,
            'argv': self.argv,
            'pid': self.pid,
            'hostname': socket.gethostname(),
        }
