import enum
import logging
import pathlib
import threading
import typing

import attr

from .classify import Classification
from .utils import Fingerprint

log = logging.getLogger(__name__)


class State(enum.Enum):
    UNKNOWN = 'unknown'
    AT_REST = 'at-rest-encrypted'
    ACTIVE = 'active-decrypted'

    def __str__(self):
        return self.value


@attr.s(eq=False)
class ManagedFile:
    path: pathlib.Path = attr.ib()
    classification: Classification = attr.ib(default=Classification.UNKNOWN)
    state: State = attr.ib(default=State.UNKNOWN)
    snapshot: typing.Optional[bytes] = attr.ib(default=None, repr=False)
    plaintext_digest: typing.Optional[str] = attr.ib(default=None, repr=False)
    lock: threading.Lock = attr.ib(factory=threading.Lock, repr=False)

    # Used by the dispatcher to recognise notifications caused by itself.
    started: float = attr.ib(default=float('-inf'), repr=False)
    quiet_until: float = attr.ib(default=float('-inf'), repr=False)
    echo_opens: int = attr.ib(default=0, repr=False)
    fingerprint: typing.Optional[Fingerprint] = attr.ib(default=None, repr=False)
    wrote: bool = attr.ib(default=False, repr=False)

    def __str__(self):
        return f"{self.path} ({self.state}, {self.classification})"


@attr.s
class StateStore:
    """
    The map of paths to ManagedFile entries.

    The store's own lock only guards inserting and evicting entries. Changes
    to an entry are made while holding that entry's lock.
    """

    files: typing.Dict[pathlib.Path, ManagedFile] = attr.ib(factory=dict)
    lock: threading.Lock = attr.ib(factory=threading.Lock, repr=False)

    def get(self, path: pathlib.Path) -> ManagedFile:
        with self.lock:
            managed = self.files.get(path)
            if managed is None:
                log.debug(f"Tracking {path}")
                managed = self.files[path] = ManagedFile(path)
            return managed

    def evict(self, managed: ManagedFile) -> None:
        with self.lock:
            if self.files.get(managed.path) is managed:
                log.debug(f"No longer tracking {managed.path}")
                del self.files[managed.path]

    def active(self) -> typing.List[ManagedFile]:
        with self.lock:
            return [m for m in self.files.values() if m.state is State.ACTIVE]

    def prune(self, now: float) -> int:
        """Forget files that are not managed once their quiet period is over."""
        with self.lock:
            stale = [
                path for path, m in self.files.items()
                if m.classification is Classification.NOT_MANAGED
                and m.state is not State.ACTIVE
                and m.quiet_until < now
            ]
            for path in stale:
                del self.files[path]
        if stale:
            log.debug(f"Forgot {len(stale)} files that are not managed")
        return len(stale)

    def clear(self) -> None:
        with self.lock:
            self.files.clear()

    def __contains__(self, path: pathlib.Path) -> bool:
        with self.lock:
            return path in self.files

    def __len__(self) -> int:
        with self.lock:
            return len(self.files)

    def __iter__(self):
        with self.lock:
            files = list(self.files.values())
        return iter(sorted(files, key=lambda m: m.path))
