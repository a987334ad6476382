"""
Directory watcher turning raw filesystem notifications into one callback per
fully-written file.

watchdog delivers events on its observer thread; they are handed to the
asyncio loop with ``call_soon_threadsafe`` and all bookkeeping happens on the
loop thread.
"""
import asyncio
import inspect
import logging
import os
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Trailing-edge debounce: the callback runs ``delay`` seconds after the
    last trigger, with the arguments of that last trigger.

    With ``per_key=False`` every trigger shares one timer, so a burst across
    different keys still yields a single call.
    """

    def __init__(self, delay: float, callback: Callable[..., Any], per_key: bool = False):
        self.delay = delay
        self.callback = callback
        self.per_key = per_key
        self._handles: Dict[Optional[Hashable], asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def trigger(self, key: Hashable, *args) -> None:
        slot = key if self.per_key else None
        handle = self._handles.pop(slot, None)
        if handle is not None:
            handle.cancel()
        loop = asyncio.get_running_loop()
        self._handles[slot] = loop.call_later(self.delay, self._fire, slot, args)

    def _fire(self, slot: Optional[Hashable], args: tuple) -> None:
        self._handles.pop(slot, None)
        result = self.callback(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._handles)

    def cancel(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()


async def wait_until_stable(path: str, threshold: float = 1.0, poll_interval: float = 0.1) -> bool:
    """
    Wait until ``path`` has kept the same size and mtime for ``threshold``
    seconds.

    Returns:
        True once stable, False if the file disappeared while waiting
    """
    last_signature = None
    stable_since = time.monotonic()

    while True:
        try:
            stat = os.stat(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Cannot stat {path} while waiting for write to finish: {e}")
            return False

        signature = (stat.st_size, stat.st_mtime_ns)
        now = time.monotonic()
        if signature != last_signature:
            last_signature = signature
            stable_since = now
        elif now - stable_since >= threshold:
            return True

        await asyncio.sleep(poll_interval)


def _is_hidden(path: str, root: Path) -> bool:
    try:
        parts = Path(path).relative_to(root).parts
    except ValueError:
        parts = (Path(path).name,)
    return any(part.startswith(".") for part in parts)


class _IngestEventHandler(FileSystemEventHandler):
    """Forwards file events from the observer thread to the loop."""

    def __init__(self, watcher: "DirectoryWatcher", loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.watcher = watcher
        self.loop = loop

    def _forward(self, path: str) -> None:
        if _is_hidden(path, self.watcher.root):
            return
        try:
            self.loop.call_soon_threadsafe(self.watcher.notify, path)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def on_created(self, event):
        if not event.is_directory:
            self._forward(os.fsdecode(event.src_path))

    def on_modified(self, event):
        if not event.is_directory:
            self._forward(os.fsdecode(event.src_path))

    def on_moved(self, event):
        if not event.is_directory:
            self._forward(os.fsdecode(event.dest_path))

    def on_deleted(self, event):
        if os.fsdecode(event.src_path) == str(self.watcher.root):
            logger.error(f"Watched directory was removed: {self.watcher.root}")


class DirectoryWatcher:
    """
    Recursive watcher for one session root.

    Every created, modified or moved-in file is polled until stable, passed
    through the debouncer and finally handed to ``on_file_ready``. Files that
    already exist when the watcher starts are ignored.
    """

    def __init__(
        self,
        root: str,
        on_file_ready: Callable[[str], Awaitable[None]],
        stability_threshold: float = 1.0,
        poll_interval: float = 0.1,
        debounce_seconds: float = 1.0,
        debounce_per_path: bool = False
    ):
        self.root = Path(root).resolve()
        self.on_file_ready = on_file_ready
        self.stability_threshold = stability_threshold
        self.poll_interval = poll_interval
        self.debouncer = Debouncer(debounce_seconds, self._dispatch, per_key=debounce_per_path)

        self.observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stabilizing: Dict[str, asyncio.Task] = {}
        self._dispatched: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        handler = _IngestEventHandler(self, self._loop)
        observer = Observer()
        observer.schedule(handler, str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        self.observer = observer
        logger.info(f"Watching {self.root} for new files", extra={'root': str(self.root)})

    async def stop(self) -> None:
        """Stop observing. Relays already dispatched run to completion."""
        self.debouncer.cancel()
        for task in self._stabilizing.values():
            task.cancel()
        self._stabilizing.clear()

        observer = self.observer
        self.observer = None
        if observer is not None:
            observer.stop()
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, observer.join, 5)
            logger.info(f"Stopped watching {self.root}")
        self._loop = None

    def notify(self, path: str) -> None:
        """Record a raw "file changed" notification. Loop thread only."""
        if self.observer is None or path in self._stabilizing:
            return
        task = asyncio.ensure_future(self._await_stable(path))
        self._stabilizing[path] = task

    async def _await_stable(self, path: str) -> None:
        try:
            stable = await wait_until_stable(path, self.stability_threshold, self.poll_interval)
        finally:
            self._stabilizing.pop(path, None)
        if stable:
            self.debouncer.trigger(path, path)
        else:
            logger.debug(f"File vanished before it settled: {path}")

    def _dispatch(self, path: str) -> None:
        task = asyncio.ensure_future(self._run_callback(path))
        self._dispatched.add(task)
        task.add_done_callback(self._dispatched.discard)

    async def _run_callback(self, path: str) -> None:
        try:
            await self.on_file_ready(path)
        except Exception as e:
            logger.error(f"Error handling new file {path}: {e}", exc_info=True, extra={'path': path})
