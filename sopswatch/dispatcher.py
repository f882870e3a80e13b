import collections
import concurrent.futures
import logging
import pathlib
import queue
import threading
import time
import typing

import attr

from .events import Event, EventKind
from .state import ManagedFile, StateStore
from .tracker import Tracker, Transition
from .utils import SopswatchError, ToolInvocationError, fingerprint

log = logging.getLogger(__name__)

# Put on the queue to stop the consumer loop.
STOP = object()

# Seconds between sweeps of the store for files that are not managed.
PRUNE_INTERVAL = 30.0


@attr.s(frozen=True)
class DispatcherConfig:
    workers: int = attr.ib(default=4)
    queue_size: int = attr.ib(default=1024)
    quiet_period: float = attr.ib(default=0.5)
    seal_on_exit: bool = attr.ib(default=True)


@attr.s
class Dispatcher:
    """
    Consume events and apply them to files, one transition per path at a time.

    Events for a path are handled in the order they arrived. Events for
    different paths are handled concurrently by a small pool of workers, so
    one slow sops call doesn't hold up every other file.
    """

    tracker: Tracker = attr.ib()
    config: DispatcherConfig = attr.ib(factory=DispatcherConfig)
    store: StateStore = attr.ib(factory=StateStore)
    clock: typing.Callable[[], float] = attr.ib(default=time.monotonic, repr=False)

    events: queue.Queue = attr.ib(init=False, repr=False)
    executor: concurrent.futures.ThreadPoolExecutor = attr.ib(init=False, repr=False)
    _pending: typing.Dict[pathlib.Path, typing.Deque[Event]] = attr.ib(init=False, factory=dict, repr=False)
    _pending_lock: threading.Lock = attr.ib(init=False, factory=threading.Lock, repr=False)
    _consumer: typing.Optional[threading.Thread] = attr.ib(init=False, default=None, repr=False)
    _next_prune: float = attr.ib(init=False, default=float('-inf'), repr=False)

    def __attrs_post_init__(self):
        self.events = queue.Queue(maxsize=self.config.queue_size)
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.workers,
            thread_name_prefix='sopswatch')

    def start(self) -> None:
        self._consumer = threading.Thread(target=self.run, name='sopswatch-dispatcher', daemon=True)
        self._consumer.start()

    def run(self) -> None:
        """Drain the queue until STOP is received."""
        log.debug("Dispatcher started")
        while True:
            event = self.events.get()
            try:
                if event is STOP:
                    break
                self.dispatch(event)
            finally:
                self.events.task_done()
        log.debug("Dispatcher stopped")

    def stop(self) -> None:
        """Finish outstanding work, seal anything left decrypted, and forget all state."""
        if self._consumer is not None:
            self.events.put(STOP)
            self._consumer.join()
            self._consumer = None
        self.executor.shutdown(wait=True)
        if self.config.seal_on_exit:
            self.seal_all()
        self.store.clear()

    def dispatch(self, event: Event) -> None:
        """Queue an event behind any others for the same path."""
        path = event.path.resolve()
        with self._pending_lock:
            pending = self._pending.get(path)
            if pending is not None:
                pending.append(event)
                return
            self._pending[path] = collections.deque([event])
        self.executor.submit(self._drain, path)
        self.prune()

    def _drain(self, path: pathlib.Path) -> None:
        while True:
            with self._pending_lock:
                pending = self._pending[path]
                if not pending:
                    del self._pending[path]
                    return
                event = pending.popleft()
            try:
                self.handle(event)
            except Exception:
                log.exception(f"Unexpected error handling {event}")

    def handle(self, event: Event) -> Transition:
        """Apply a single event, logging rather than raising per-file errors."""
        try:
            return self._apply(event.path, event.kind, event=event)
        except ToolInvocationError as error:
            log.error(
                f"Failed to {error.verb} {error.path} after {event.kind} "
                f"(exit status {error.invocation.status}): {error.stderr.strip()}")
        except SopswatchError as error:
            log.error(f"Failed to handle {event}: {error.format_message()}")
        return Transition.NOTHING

    def apply(self, path: pathlib.Path, kind: EventKind) -> Transition:
        """Apply an explicit request, raising per-file errors to the caller."""
        return self._apply(pathlib.Path(path), kind)

    def _apply(
            self,
            path: pathlib.Path,
            kind: EventKind,
            event: typing.Optional[Event] = None) -> Transition:
        managed = self.store.get(path.resolve())
        with managed.lock:
            if event is not None and self.is_echo(managed, event):
                log.debug(f"Ignoring {event}, caused by sopswatch")
                return Transition.NOTHING

            self.begin(managed)
            before = fingerprint(managed.path)
            try:
                transition = self.tracker.apply(managed, kind)
            except SopswatchError:
                # A failed encrypt may have put the original contents back.
                self.quieten(managed, wrote=fingerprint(managed.path) != before)
                raise
            self.quieten(managed, wrote=transition.wrote)
            log.debug(f"{kind} {managed} -> {transition}")

        if transition is Transition.EVICTED:
            self.store.evict(managed)
        return transition

    def is_echo(self, managed: ManagedFile, event: Event) -> bool:
        """
        Check if an event was caused by sopswatch reading or writing the file.

        Our own activity produces notifications during and shortly after each
        transition. These are recognised by the file being exactly as we left
        it; a write by anything else changes the fingerprint. Anything stamped
        before the transition started can't have been caused by it.
        """
        if not managed.started <= event.timestamp <= managed.quiet_until:
            return False
        if not (event.access_only or managed.wrote):
            return False
        if fingerprint(managed.path) != managed.fingerprint:
            return False

        # Our reads open and close the file in pairs, so a close with no
        # unmatched open before it was made by something else.
        if event.kind is EventKind.OPENED:
            managed.echo_opens += 1
        elif event.kind is EventKind.CLOSED:
            if not managed.echo_opens:
                return False
            managed.echo_opens -= 1
        return True

    def begin(self, managed: ManagedFile) -> None:
        """Open a window for echoes, or extend the one still open."""
        now = self.clock()
        if now > managed.quiet_until:
            managed.started = now
            managed.echo_opens = 0
            managed.wrote = False

    def quieten(self, managed: ManagedFile, wrote: bool) -> None:
        managed.fingerprint = fingerprint(managed.path)
        managed.quiet_until = self.clock() + self.config.quiet_period
        managed.wrote = managed.wrote or wrote

    def prune(self) -> None:
        """Every so often, forget files that turned out not to be managed."""
        now = self.clock()
        if now < self._next_prune:
            return
        self._next_prune = now + PRUNE_INTERVAL
        self.store.prune(now)

    def seal_all(self) -> None:
        """Encrypt every file that is still decrypted."""
        for managed in self.store.active():
            log.info(f"Encrypting {managed.path} before exiting")
            try:
                self.apply(managed.path, EventKind.CLOSED)
            except SopswatchError as error:
                log.error(error.format_message())
