"""Ordered, thread-safe console output for concurrent workers.

Workers hand complete batches of styled text to an OutputChannel. A single
consumer thread renders batches one at a time in the order they were
enqueued, so the output of two workers never interleaves inside a batch.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from rich.console import Console
from rich.style import Style
from rich.text import Text

from .errors import ChannelClosedError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1024

_CLOSE = object()


@dataclass(frozen=True)
class StyledFragment:
    """A piece of text with optional rich foreground/background colors."""

    text: str
    fg: str | None = None
    bg: str | None = None

    @property
    def style(self) -> Style | None:
        if self.fg is None and self.bg is None:
            return None
        return Style(color=self.fg, bgcolor=self.bg)


OutputBatch = tuple[StyledFragment, ...]


def render_batch(batch: OutputBatch) -> Text:
    """Combine a batch into one Text; each fragment keeps its own style."""
    text = Text()
    for fragment in batch:
        text.append(fragment.text, style=fragment.style)
    return text


class OutputChannel:
    """Queue of output batches drained by one background thread."""

    def __init__(self, console: Console | None = None, capacity: int = DEFAULT_CAPACITY):
        self.console = console or Console()
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._lock = threading.Lock()
        self._closed = False
        self._worker = threading.Thread(target=self._consume, name="output-channel", daemon=True)
        self._worker.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, batch: Iterable[StyledFragment]) -> None:
        """Add a batch. Safe to call from any thread."""
        frozen: OutputBatch = tuple(batch)
        with self._lock:
            if self._closed:
                raise ChannelClosedError("output channel is closed")
            self._queue.put(frozen)

    def enqueue_exception(self, exc: BaseException, message: str | None = None) -> None:
        """Enqueue an error report for ``exc``, optionally prefixed by ``message``."""
        fragments = []
        if message:
            fragments.append(StyledFragment(f"{message}: "))
        fragments.append(StyledFragment(f"{exc}\n", fg="red"))
        self.enqueue(fragments)

    def flush(self) -> None:
        """Block until every batch enqueued so far has been rendered."""
        self._queue.join()

    def close(self) -> None:
        """Stop accepting batches and wait until all pending ones are rendered."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSE)
        self._worker.join()

    def _consume(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is _CLOSE:
                    return
                self._render(batch)
            finally:
                self._queue.task_done()

    def _render(self, batch: OutputBatch) -> None:
        try:
            self.console.print(render_batch(batch), end="", soft_wrap=True, highlight=False)
        except Exception:
            logger.exception("failed to render output batch")

    def __enter__(self) -> OutputChannel:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
