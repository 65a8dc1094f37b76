"""
Delta Coalescer - frame-aligned batching of streamed text.

Network frames can arrive far faster than a UI can render. The coalescer
accumulates text deltas per step and emits at most one update per rendering
frame (leading-edge: the first delta after a flush schedules the next one,
further deltas before that frame only append to the buffer).

Completion events force a synchronous final flush so trailing text is never
lost even when no frame boundary occurred after the last delta.
"""

import asyncio
from collections.abc import Callable
from typing import Protocol

TextUpdateCallback = Callable[[str, str], None]


class FrameHandle(Protocol):
    def cancel(self) -> None: ...


class FrameScheduler(Protocol):
    """Runs a callback at the next rendering frame."""

    def schedule(self, callback: Callable[[], None]) -> FrameHandle: ...


class LoopFrameScheduler:
    """
    Timer-tick scheduler for asyncio hosts.

    Args:
        interval: Seconds per frame (defaults to ~60 frames per second)
    """

    def __init__(self, interval: float = 0.016):
        self.interval = interval

    def schedule(self, callback: Callable[[], None]) -> FrameHandle:
        return asyncio.get_running_loop().call_later(self.interval, callback)


class _ManualHandle:
    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualFrameScheduler:
    """Scheduler driven by explicit tick() calls (tests, non-UI hosts)."""

    def __init__(self):
        self._pending: list[_ManualHandle] = []

    def schedule(self, callback: Callable[[], None]) -> FrameHandle:
        handle = _ManualHandle(callback)
        self._pending.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._pending if not handle.cancelled)

    def tick(self) -> int:
        """Run every callback scheduled for this frame; return how many ran."""
        due, self._pending = self._pending, []
        ran = 0
        for handle in due:
            if not handle.cancelled:
                handle.callback()
                ran += 1
        return ran


class DeltaCoalescer:
    """
    Batches text deltas of in-flight steps into one UI update per frame.

    Example:
        >>> scheduler = ManualFrameScheduler()
        >>> updates = []
        >>> coalescer = DeltaCoalescer(scheduler, lambda s, t: updates.append((s, t)))
        >>> for part in ("Hel", "lo", "!"):
        ...     coalescer.push("n1", part)
        >>> scheduler.tick()
        1
        >>> updates
        [('n1', ''), ('n1', 'Hello!')]
    """

    def __init__(self, scheduler: FrameScheduler, on_text_update: TextUpdateCallback):
        self.scheduler = scheduler
        self.on_text_update = on_text_update
        self._buffers: dict[str, str] = {}
        self._dirty: dict[str, None] = {}
        self._texts: dict[str, str] = {}
        self._frame: FrameHandle | None = None
        self._closed = False

    @property
    def texts(self) -> dict[str, str]:
        """Last rendered text per step (open and closed buffers)."""
        return {**self._texts, **self._buffers}

    def push(self, step_id: str, delta: str) -> None:
        if self._closed:
            return

        if step_id not in self._buffers:
            # Fresh step: give the UI a placeholder to anchor to right away
            self._buffers[step_id] = ""
            self.on_text_update(step_id, "")

        self._buffers[step_id] += delta
        self._dirty[step_id] = None

        if self._frame is None:
            self._frame = self.scheduler.schedule(self._on_frame)

    def flush_step(self, step_id: str) -> None:
        """Final synchronous flush of one step; later deltas open a new buffer."""
        if step_id not in self._buffers:
            return
        text = self._buffers.pop(step_id)
        self._texts[step_id] = text
        if step_id in self._dirty:
            self._dirty.pop(step_id, None)
            self.on_text_update(step_id, text)
        if not self._dirty:
            self._cancel_frame()

    def flush_all(self) -> None:
        """Final synchronous flush of every open buffer."""
        for step_id in list(self._buffers):
            self.flush_step(step_id)
        self._cancel_frame()

    def close(self) -> None:
        """Drop pending frames and ignore further input (superseded attempts)."""
        self._closed = True
        self._cancel_frame()
        self._dirty.clear()

    def _on_frame(self) -> None:
        self._frame = None
        dirty, self._dirty = self._dirty, {}
        for step_id in dirty:
            if step_id in self._buffers:
                self.on_text_update(step_id, self._buffers[step_id])

    def _cancel_frame(self) -> None:
        if self._frame is not None:
            self._frame.cancel()
            self._frame = None
