"""
The small vocabulary of events the dispatcher reacts to.

Both the filesystem watcher and the editor lifecycle hooks are reduced to
these, so the state machine only has one set of inputs to handle.
"""

import enum
import pathlib
import time

import attr


class EventKind(enum.Enum):
    OPENED = 'opened'
    MODIFIED = 'modified'
    CREATED = 'created'
    CLOSED = 'closed'
    # Only produced by the lifecycle hooks, never by the watcher.
    SAVED = 'saved'

    def __str__(self):
        return self.value


@attr.s(frozen=True)
class Event:
    kind: EventKind = attr.ib()
    path: pathlib.Path = attr.ib(converter=pathlib.Path)
    timestamp: float = attr.ib(factory=time.monotonic)
    nowrite: bool = attr.ib(default=False, kw_only=True)

    def __str__(self):
        return f"{self.kind} {self.path}"

    @property
    def access_only(self) -> bool:
        """True if the event can't have been caused by a change to the file."""
        return self.kind is EventKind.OPENED or (self.kind is EventKind.CLOSED and self.nowrite)
