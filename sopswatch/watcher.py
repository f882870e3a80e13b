"""
Turn watchdog notifications into events on the dispatcher's queue.

Only files are considered. Opens, modifications, creations and closes are
passed on; moves, deletions and attribute changes are ignored, since a
deleted file is noticed the next time anything looks at its path.
"""

import logging
import pathlib
import queue
import time
import typing

import attr
from watchdog.events import (
    FileClosedEvent,
    FileClosedNoWriteEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileOpenedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .events import Event, EventKind
from .utils import WatchSetupError, in_directory, is_ignored

log = logging.getLogger(__name__)

EVENT_KINDS: typing.Dict[type, EventKind] = {
    FileOpenedEvent: EventKind.OPENED,
    FileModifiedEvent: EventKind.MODIFIED,
    FileCreatedEvent: EventKind.CREATED,
    FileClosedEvent: EventKind.CLOSED,
    FileClosedNoWriteEvent: EventKind.CLOSED,
}


def normalise(
        event: FileSystemEvent,
        root: pathlib.Path,
        timestamp: typing.Optional[float] = None) -> typing.Optional[Event]:
    """Convert a watchdog event, or return None if it should be ignored."""
    if event.is_directory:
        return None

    kind = EVENT_KINDS.get(type(event))
    if kind is None:
        return None

    path = pathlib.Path(event.src_path)
    if not in_directory(path, root) or is_ignored(path.relative_to(root)):
        return None

    return Event(
        kind,
        path,
        timestamp=time.monotonic() if timestamp is None else timestamp,
        nowrite=isinstance(event, FileClosedNoWriteEvent))


class QueueingHandler(FileSystemEventHandler):
    """
    Put normalised events on a bounded queue.

    When the queue is full this blocks the observer thread rather than
    dropping anything, as a lost open would leave a file encrypted.
    """

    def __init__(self, events: queue.Queue, root: pathlib.Path) -> None:
        super().__init__()
        self.events = events
        self.root = root

    def on_any_event(self, event: FileSystemEvent) -> None:
        normalised = normalise(event, self.root)
        if normalised is not None:
            log.debug(f"Received {normalised}")
            self.events.put(normalised)


@attr.s
class Watcher:
    root: pathlib.Path = attr.ib(converter=lambda p: pathlib.Path(p).resolve())
    events: queue.Queue = attr.ib()
    observer: typing.Optional[Observer] = attr.ib(default=None, init=False, repr=False)

    def start(self) -> None:
        """Start watching the root directory recursively, in a background thread."""
        if not self.root.is_dir():
            raise WatchSetupError(f"Can't watch {self.root}, it is not a directory")

        observer = Observer()
        try:
            observer.schedule(QueueingHandler(self.events, self.root), str(self.root), recursive=True)
            observer.daemon = True
            observer.start()
        except OSError as error:
            raise WatchSetupError(f"Can't watch {self.root}: {error}") from error

        self.observer = observer
        log.info(f"Watching {self.root}")

    def stop(self) -> None:
        if self.observer is not None:
            self.observer.stop()
            self.observer.join(timeout=5)
            self.observer = None
            log.info(f"Stopped watching {self.root}")
