"""Supervised subprocess execution with streamed line output.

``ProcessRunner`` spawns one child process, merges its stderr into stdout,
and feeds the output to a per-line callback in production order.

Output travels as ``OutputChunk`` messages: complete lines (``eol=True``)
and continuation pieces of lines longer than ``max_line_length``
(``eol=False``).  ``LineAssembler`` joins continuation pieces and calls the
callback once per full line.

The exit status arrives on the same queue as the output.  The two are not
ordered relative to each other, so after the exit status the runner waits
a bounded time for the output reader to reach EOF and flushes whatever is
left before returning.

Usage:
    from db_backup.runner import ProcessRunner

    runner = ProcessRunner()
    status = await runner.run(
        "/usr/bin/pg_dump",
        ["--verbose", "--file", "out.db"],
        {"PGDATABASE": "app", "PGPASSFILE": None},
        on_line=print,
    )
"""

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINE_LENGTH = 1024
_READ_SIZE = 65536


@dataclass(frozen=True)
class OutputChunk:
    """A piece of child output.

    ``eol`` is True when the chunk ends a line (the newline itself is not
    included) and False for a continuation piece.
    """

    data: bytes
    eol: bool


@dataclass(frozen=True)
class ExitStatus:
    """The child's exit status."""

    code: int


class ChunkSplitter:
    """Splits a raw byte stream into ``OutputChunk`` messages.

    Lines longer than ``max_line_length`` are cut into continuation chunks
    of at most that many bytes.
    """

    def __init__(self, max_line_length: int = DEFAULT_MAX_LINE_LENGTH) -> None:
        if max_line_length < 1:
            raise ValueError(f"max_line_length must be positive, got {max_line_length}")
        self.max_line_length = max_line_length
        self._pending = b""

    def feed(self, data: bytes) -> list[OutputChunk]:
        self._pending += data
        chunks: list[OutputChunk] = []
        while self._pending:
            newline = self._pending.find(b"\n")
            if 0 <= newline <= self.max_line_length:
                chunks.append(OutputChunk(self._pending[:newline], eol=True))
                self._pending = self._pending[newline + 1:]
            elif len(self._pending) > self.max_line_length:
                chunks.append(OutputChunk(self._pending[: self.max_line_length], eol=False))
                self._pending = self._pending[self.max_line_length:]
            else:
                break
        return chunks

    def finish(self) -> list[OutputChunk]:
        """Return the unterminated tail, if any, as a continuation chunk."""
        if not self._pending:
            return []
        tail, self._pending = self._pending, b""
        return [OutputChunk(tail, eol=False)]


class LineAssembler:
    """Buffers continuation chunks and emits complete lines.

    Args:
        on_line: Called with each decoded line (no trailing newline).
        encoding: Used to decode the joined bytes; undecodable bytes are
            replaced.
    """

    def __init__(self, on_line: Callable[[str], None], encoding: str = "utf-8") -> None:
        self._on_line = on_line
        self._encoding = encoding
        self._buffer: list[bytes] = []

    def feed(self, chunk: OutputChunk) -> None:
        data = chunk.data if isinstance(chunk.data, bytes) else chunk.data.encode(self._encoding)
        self._buffer.append(data)
        if chunk.eol:
            self._emit()

    def flush(self) -> None:
        """Emit any buffered partial line as a final line."""
        if any(self._buffer):
            self._emit()
        self._buffer.clear()

    def _emit(self) -> None:
        raw = b"".join(self._buffer)
        self._buffer.clear()
        line = raw.decode(self._encoding, errors="replace").removesuffix("\r")
        self._on_line(line)


def build_child_env(
    env: Mapping[str, str | int | None], base: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Child environment: ``base`` (default ``os.environ``) updated with ``env``.

    A ``None`` value removes the variable.
    """
    child = dict(os.environ if base is None else base)
    for key, value in env.items():
        if value is None:
            child.pop(key, None)
        else:
            child[key] = str(value)
    return child


class ProcessRunner:
    """Runs a subprocess and streams its output line by line.

    Args:
        max_line_length: Longest piece delivered as one chunk; longer lines
            are split into continuation chunks and reassembled.
        exit_drain_timeout: Seconds to wait for trailing output after the
            exit status is received.
    """

    def __init__(
        self,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
        exit_drain_timeout: float = 1.0,
    ) -> None:
        self.max_line_length = max_line_length
        self.exit_drain_timeout = exit_drain_timeout

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        env: Mapping[str, str | int | None],
        on_line: Callable[[str], None],
    ) -> int:
        """Run ``executable`` to completion and return its exit status.

        A non-zero status is returned, not raised.  If ``on_line`` raises,
        the child is killed and reaped before the exception propagates.

        Raises:
            FileNotFoundError: If ``executable`` cannot be spawned.
        """
        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=build_child_env(env),
        )
        logger.debug("Started %s (pid %s)", executable, process.pid)

        queue: asyncio.Queue[OutputChunk | ExitStatus] = asyncio.Queue()
        reader = asyncio.create_task(self._pump_output(process.stdout, queue))
        watcher = asyncio.create_task(self._watch_exit(process, queue))
        assembler = LineAssembler(on_line)

        try:
            while True:
                message = await queue.get()
                if isinstance(message, ExitStatus):
                    await self._drain(reader, queue, assembler)
                    logger.debug("%s exited with status %s", executable, message.code)
                    return message.code
                assembler.feed(message)
        finally:
            pending = [task for task in (reader, watcher) if not task.done()]
            for task in pending:
                task.cancel()
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _pump_output(
        self, stream: asyncio.StreamReader, queue: asyncio.Queue
    ) -> None:
        splitter = ChunkSplitter(self.max_line_length)
        while True:
            data = await stream.read(_READ_SIZE)
            if not data:
                break
            for chunk in splitter.feed(data):
                queue.put_nowait(chunk)
        for chunk in splitter.finish():
            queue.put_nowait(chunk)

    @staticmethod
    async def _watch_exit(process: asyncio.subprocess.Process, queue: asyncio.Queue) -> None:
        code = await process.wait()
        queue.put_nowait(ExitStatus(code))

    async def _drain(
        self, reader: asyncio.Task, queue: asyncio.Queue, assembler: LineAssembler
    ) -> None:
        """Flush output that arrived after the exit status."""
        try:
            await asyncio.wait_for(asyncio.shield(reader), self.exit_drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Output still open %.1fs after process exit, discarding the rest",
                self.exit_drain_timeout,
            )
            reader.cancel()

        while not queue.empty():
            message = queue.get_nowait()
            if isinstance(message, OutputChunk):
                assembler.feed(message)
        assembler.flush()
