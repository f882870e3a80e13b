"""
Editor lifecycle hooks, for hosts that report opens, saves and closes directly.

These follow the same rules as the filesystem watcher: a managed file is
decrypted on open and encrypted again on save or close. The host owns its
buffers; only the file on disk is read or written.
"""

import logging
import pathlib
import typing

import attr

from .dispatcher import Dispatcher
from .events import EventKind
from .tracker import Transition
from .utils import SopswatchError

log = logging.getLogger(__name__)


@attr.s(frozen=True)
class HookResult:
    ok: bool = attr.ib()
    transition: Transition = attr.ib(default=Transition.NOTHING)
    error: typing.Optional[str] = attr.ib(default=None)

    def __bool__(self):
        return self.ok


@attr.s(frozen=True)
class LifecycleHooks:
    dispatcher: Dispatcher = attr.ib()

    def on_open(self, path: typing.Union[str, pathlib.Path]) -> HookResult:
        return self.call(path, EventKind.OPENED)

    def on_save(self, path: typing.Union[str, pathlib.Path]) -> HookResult:
        return self.call(path, EventKind.SAVED)

    def on_close(self, path: typing.Union[str, pathlib.Path]) -> HookResult:
        return self.call(path, EventKind.CLOSED)

    def call(self, path: typing.Union[str, pathlib.Path], kind: EventKind) -> HookResult:
        try:
            transition = self.dispatcher.apply(pathlib.Path(path), kind)
        except SopswatchError as error:
            log.error(f"Failed to handle {kind} {path}: {error.format_message()}")
            return HookResult(ok=False, error=error.format_message())
        return HookResult(ok=True, transition=transition)
