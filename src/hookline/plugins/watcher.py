"""File watching for plugin and configuration hot reload.

A :mod:`watchdog` observer thread reports raw file-system events. Each event
hops onto the asyncio loop with ``call_soon_threadsafe`` and restarts a
per-path debounce timer. When a timer fires, the path is put on a bounded
queue that a single consumer task drains, so at most one reload runs at a
time and a burst of saves to one file produces one reload.

:class:`DebouncedFileWatcher` is the generic machinery; :class:`PluginWatcher`
adds plugin semantics on top (classifying changes through
:meth:`PluginLoader.handle_change` and fanning the resulting
:class:`HotReloadEvent` out to subscribers).
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from hookline.plugins.loader import HotReloadEvent, PluginLoader

logger = logging.getLogger(__name__)

_RELEVANT_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)

HotReloadListener = Callable[[HotReloadEvent], Union[None, Any, Awaitable[Any]]]


class _ForwardingHandler(FileSystemEventHandler):
    """Forwards file events from the observer thread to a callback."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        super().__init__()
        self._callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT_EVENTS:
            return
        self._callback(str(event.src_path))
        dest = getattr(event, "dest_path", "")
        if dest:
            self._callback(str(dest))


class DebouncedFileWatcher:
    """Watch directories and deliver debounced per-path changes to *callback*.

    Args:
        paths: Directories to watch. Missing directories are skipped.
        callback: Coroutine function called with each changed path.
        debounce: Quiet period in seconds before a path is delivered.
        max_pending: Queue bound. Paths arriving while the queue is full
            are dropped with a warning.
        recursive: Watch subdirectories too.
        path_filter: Optional predicate; paths it rejects are ignored.
    """

    def __init__(
        self,
        paths: Iterable[Union[str, Path]],
        callback: Callable[[Path], Awaitable[Any]],
        *,
        debounce: float = 0.3,
        max_pending: int = 64,
        recursive: bool = True,
        path_filter: Optional[Callable[[Path], bool]] = None,
    ) -> None:
        self.paths = [Path(p) for p in paths]
        self.callback = callback
        self.debounce = debounce
        self.max_pending = max_pending
        self.recursive = recursive
        self.path_filter = path_filter
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue[Path]] = None
        self._consumer: Optional[asyncio.Task] = None
        self._observer: Optional[Any] = None
        self._timers: dict[Path, asyncio.TimerHandle] = {}

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        """Start the observer thread and the consumer task."""
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.max_pending)
        self._consumer = asyncio.create_task(self._consume())

        observer = Observer()
        handler = _ForwardingHandler(self._on_fs_event)
        for path in self.paths:
            if path.is_dir():
                observer.schedule(handler, str(path), recursive=self.recursive)
            else:
                logger.debug("Not watching %s: not a directory", path)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", ", ".join(str(p) for p in self.paths))

    async def stop(self) -> None:
        """Stop the observer, cancel pending timers and the consumer task."""
        if self._observer is not None:
            observer, self._observer = self._observer, None
            observer.stop()
            await asyncio.to_thread(observer.join, 3)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        self._queue = None

    def _on_fs_event(self, src_path: str) -> None:
        # Runs on the observer thread.
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(self.notify, src_path)

    def notify(self, path: Union[str, Path]) -> None:
        """Record a change to *path*. Must be called on the event loop."""
        if self._loop is None or self._queue is None:
            raise RuntimeError("Watcher is not running")
        path = Path(path)
        if self.path_filter is not None and not self.path_filter(path):
            return
        existing = self._timers.pop(path, None)
        if existing is not None:
            existing.cancel()
        self._timers[path] = self._loop.call_later(self.debounce, self._flush, path)

    def _flush(self, path: Path) -> None:
        self._timers.pop(path, None)
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(path)
        except asyncio.QueueFull:
            logger.warning("Change queue full, dropping change to %s", path)

    async def _consume(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            path = await queue.get()
            try:
                await self.callback(path)
            except Exception:
                logger.exception("Error handling change to %s", path)
            finally:
                queue.task_done()

    async def wait_idle(self) -> None:
        """Wait until no debounce timer is pending and the queue is drained."""
        while self._timers:
            await asyncio.sleep(max(self.debounce / 2, 0.01))
        if self._queue is not None:
            await self._queue.join()


class PluginWatcher:
    """Hot reload for plugin files.

    Subscribers receive one :class:`HotReloadEvent` per debounced change.
    Pass :meth:`PluginRegistry.apply_hot_reload` to keep a registry in sync::

        watcher = PluginWatcher(loader)
        watcher.subscribe(registry.apply_hot_reload)
        await watcher.start()

    Args:
        loader: The loader used to classify and reload changed files.
        debounce: Quiet period in seconds. Defaults to the loader's
            ``hot_reload_debounce`` setting.
        max_pending: Bound on queued changes.
    """

    def __init__(
        self,
        loader: PluginLoader,
        debounce: Optional[float] = None,
        max_pending: int = 64,
    ) -> None:
        self.loader = loader
        self.debounce = loader.settings.hot_reload_debounce if debounce is None else debounce
        self.max_pending = max_pending
        self._subscribers: list[HotReloadListener] = []
        self._watcher: Optional[DebouncedFileWatcher] = None

    @property
    def is_running(self) -> bool:
        return self._watcher is not None and self._watcher.is_running

    def subscribe(self, listener: HotReloadListener) -> None:
        self._subscribers.append(listener)

    def unsubscribe(self, listener: HotReloadListener) -> bool:
        try:
            self._subscribers.remove(listener)
        except ValueError:
            return False
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        self._watcher = DebouncedFileWatcher(
            self.loader.search_roots,
            self._handle_path,
            debounce=self.debounce,
            max_pending=self.max_pending,
            recursive=self.loader.settings.recursive,
            path_filter=lambda path: path.suffix == ".py",
        )
        await self._watcher.start()

    async def stop(self) -> None:
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None

    def notify(self, path: Union[str, Path]) -> None:
        """Feed a change as if the observer had reported it."""
        if self._watcher is None:
            raise RuntimeError("PluginWatcher is not running")
        self._watcher.notify(path)

    async def wait_idle(self) -> None:
        if self._watcher is not None:
            await self._watcher.wait_idle()

    async def _handle_path(self, path: Path) -> None:
        event = await self.loader.handle_change(path)
        if event is None:
            return
        logger.info("Plugin %s: %s (%s)", event.type, event.name or "?", event.path)
        for listener in list(self._subscribers):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Hot reload listener failed for %s", event.path)
