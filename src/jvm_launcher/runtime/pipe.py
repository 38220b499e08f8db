"""Threaded byte pipe between two streams.

Forwarding is best-effort: a broken pipe or a closed stream ends the copy
loop of that pipe and is only logged at DEBUG level. Nothing is raised to the
caller of start() or stop().
"""

from __future__ import annotations

import io
import logging
import select
import sys
import threading
from typing import IO

__all__ = ["Pipe"]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_CHUNK_SIZE = 8192
DEFAULT_POLL_INTERVAL = 0.1  # seconds between stop checks while idle


class Pipe:
    """Copies bytes from ``source`` to ``sink`` on a daemon thread.

    Example:
        pipe = Pipe(process.stdout, sys.stdout.buffer).start("Out pipe")
        ...
        pipe.stop()

    Attributes:
        source: Readable binary stream
        sink: Writable binary stream
        close_sink_on_eof: Close ``sink`` once ``source`` is exhausted
    """

    def __init__(
        self,
        source: IO[bytes],
        sink: IO[bytes],
        *,
        close_sink_on_eof: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.source = source
        self.sink = sink
        self.close_sink_on_eof = close_sink_on_eof
        self.chunk_size = chunk_size
        self.poll_interval = poll_interval
        self.label = ""
        self._running = False
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def is_alive(self) -> bool:
        """Whether the copy thread is still executing."""
        return self._thread is not None and self._thread.is_alive()

    def start(self, label: str) -> Pipe:
        """Start the copy loop on a new daemon thread.

        Raises:
            RuntimeError: If the pipe was already started
        """
        if self._thread is not None:
            raise RuntimeError(f"Pipe already started: {self.label}")

        self.label = label
        self._running = True
        self._thread = threading.Thread(target=self._pump, name=label, daemon=True)
        try:
            self._thread.start()
        except BaseException:
            self._running = False
            raise
        logger.debug(f"Started pipe '{label}'")
        return self

    def stop(self) -> None:
        """Ask the copy loop to exit. Does not wait for the thread."""
        if self._running:
            logger.debug(f"Stopping pipe '{self.label}'")
        self._running = False

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the copy thread to exit.

        Returns:
            True if the thread has exited (or was never started)
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _pump(self) -> None:
        try:
            while self._running:
                if not self._wait_readable():
                    continue
                chunk = self._read_chunk()
                if not chunk:
                    logger.debug(f"Pipe '{self.label}' reached end of stream")
                    if self.close_sink_on_eof:
                        self._close_sink()
                    break
                self._write_all(chunk)
        except (OSError, ValueError) as e:
            logger.debug(f"Pipe '{self.label}' stopped on error: {e}")
        finally:
            self._running = False

    def _wait_readable(self) -> bool:
        """Block up to ``poll_interval`` until the source has data.

        Sources without a selectable descriptor are treated as always
        readable, so the following read may block.
        """
        if IS_WINDOWS:
            return True
        try:
            fd = self.source.fileno()
        except (AttributeError, io.UnsupportedOperation):
            return True
        readable, _, _ = select.select([fd], [], [], self.poll_interval)
        return bool(readable)

    def _read_chunk(self) -> bytes:
        read1 = getattr(self.source, "read1", None)
        if read1 is not None:
            return read1(self.chunk_size)
        return self.source.read(self.chunk_size)

    def _write_all(self, chunk: bytes) -> None:
        # Raw (unbuffered) sinks may accept only part of a chunk
        view = memoryview(chunk)
        while view:
            written = self.sink.write(view)
            view = view[len(view) if written is None else written:]
        self.sink.flush()

    def _close_sink(self) -> None:
        try:
            self.sink.close()
        except (OSError, ValueError) as e:
            logger.debug(f"Pipe '{self.label}' could not close sink: {e}")

    def __repr__(self) -> str:
        return f"Pipe(label={self.label!r}, running={self._running})"
