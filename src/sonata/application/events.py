"""Event emitter connecting the library core to its subscribers.

Hey future me - the core never reaches into rendering. The repository and the
playback engine emit events here; the presentation layer (and the statistics
tracker) subscribe. Usage:

    events = EventEmitter()
    unsubscribe = events.subscribe(LibraryEvent.SONGS_CHANGED, rerender_song_list)
    ...
    unsubscribe()

Listeners are called synchronously in subscription order. A listener that
returns an awaitable (async def) is scheduled as a background task, so emit()
never blocks the emitting operation. drain() waits for those tasks.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class LibraryEvent(str, Enum):
    """Events emitted by the library core."""

    SONGS_CHANGED = "songs_changed"
    PLAYLISTS_CHANGED = "playlists_changed"
    LIBRARY_CLEARED = "library_cleared"
    CASCADE_INCOMPLETE = "cascade_incomplete"  # payload: song_id, playlist_ids
    PLAYBACK_CHANGED = "playback_changed"  # payload: state
    TRACK_LOADED = "track_loaded"  # payload: song_id, loaded_at


class EventEmitter:
    """Explicit callback registration keyed by LibraryEvent."""

    def __init__(self) -> None:
        self._listeners: dict[LibraryEvent, list[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, event: LibraryEvent, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it again."""
        self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event, listener)

        return _unsubscribe

    def unsubscribe(self, event: LibraryEvent, listener: Listener) -> None:
        """Remove a listener (no-op if it isn't registered)."""
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: LibraryEvent) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: LibraryEvent, **payload: Any) -> None:
        """Notify every listener of `event`.

        A failing listener is logged and skipped; the emitting operation and
        the remaining listeners are not affected.
        """
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(**payload)
            except Exception:
                logger.exception("Listener %r failed for event %s", listener, event.value)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background listener failed: %s", exc, exc_info=(type(exc), exc, exc.__traceback__)
            )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until every background listener task has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
