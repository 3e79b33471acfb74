"""
Log Stream
==========
Turns the raw output chunks of an in-container command into log lines.

Chunks arrive in whatever sizes the Docker daemon flushes them: a chunk
may hold several lines or end mid-line (or mid UTF-8 sequence). The
splitter buffers the incomplete tail until the next chunk or the end of
the stream. Blank lines are dropped; order is preserved.
"""
import codecs
import logging
from typing import Callable, Iterable, Iterator, Optional, Union

from build_worker.core.constants import BUILD_OUTPUT_LOGGER

LineCallback = Callable[[str], None]

output_logger = logging.getLogger(BUILD_OUTPUT_LOGGER)


class LineSplitter:
    """Incremental chunk → line splitter."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: Union[bytes, str]) -> list[str]:
        """Add a chunk and return every line it completed."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []
        self._pending += text.replace("\r\n", "\n")
        if "\n" not in self._pending:
            return []
        complete, self._pending = self._pending.rsplit("\n", 1)
        return _non_empty(complete.split("\n"))

    def flush(self) -> list[str]:
        """Return the trailing partial line, if any, at end of stream."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return _non_empty([tail])


def _non_empty(lines: list[str]) -> list[str]:
    return [line.rstrip("\r") for line in lines if line.strip()]


def iter_lines(chunks: Iterable[Union[bytes, str]]) -> Iterator[str]:
    """Lazily yield non-empty lines from a stream of output chunks."""
    splitter = LineSplitter()
    for chunk in chunks:
        yield from splitter.feed(chunk)
    yield from splitter.flush()


class BuildLogSink:
    """
    Line callback for one execution: records each line and mirrors it to
    the build output logger. Appending and logging never wait on anything,
    so the command's output stream is drained as fast as it arrives.
    """

    def __init__(self, job_id: str, lines: Optional[list[str]] = None) -> None:
        self.job_id = job_id
        self.lines = lines if lines is not None else []

    def __call__(self, line: str) -> None:
        self.lines.append(line)
        output_logger.info("[job %s] %s", self.job_id, line)
